"""renewals schema

Revision ID: 001_renewals
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "001_renewals"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Plans
    op.create_table(
        "plans",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "interval",
            sa.Enum("month", "year", name="planinterval"),
            nullable=False,
        ),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Customers
    op.create_table(
        "customers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Subscriptions
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("plan_id", sa.UUID(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "active", "past_due", "paused", "canceled", name="subscriptionstatus"
            ),
            nullable=True,
        ),
        sa.Column("renewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_customer_id", "subscriptions", ["customer_id"])
    op.create_index("ix_subscriptions_plan_id", "subscriptions", ["plan_id"])

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("customer_id", sa.UUID(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "status",
            sa.Enum("posted", "paid", name="invoicestatus"),
            nullable=True,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "customer_id",
            "period_start",
            "period_end",
            "currency",
            name="uq_invoices_customer_period",
        ),
    )
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])

    # Charges
    op.create_table(
        "charges",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subscription_id", sa.UUID(), nullable=False),
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "settled", name="chargestatus"),
            nullable=True,
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "subscription_id",
            "due_date",
            "amount_cents",
            "currency",
            name="uq_charges_subscription_due",
        ),
    )
    op.create_index("ix_charges_subscription_id", "charges", ["subscription_id"])
    op.create_index("ix_charges_invoice_id", "charges", ["invoice_id"])

    # Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("charge_id", sa.UUID(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("channel", sa.String(length=40), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "succeeded", "failed", name="paymentstatus"),
            nullable=True,
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=True),
        sa.Column("capture_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["charge_id"], ["charges.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_payments_idempotency_key"),
    )
    op.create_index("ix_payments_charge_id", "payments", ["charge_id"])

    # Outbox
    op.create_table(
        "renewal_outbox",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subscription_id", sa.UUID(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("publish_attempts", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "subscription_id", "due_date", name="uq_renewal_outbox_subscription_due"
        ),
    )
    op.create_index(
        "ix_renewal_outbox_unpublished",
        "renewal_outbox",
        ["published_at", "publish_attempts", "created_at"],
    )

    # Runs
    op.create_table(
        "renewal_runs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("job_name", sa.String(length=80), nullable=False),
        sa.Column("schedule_date", sa.Date(), nullable=False),
        sa.Column("run_key", sa.String(length=80), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("force", sa.Boolean(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("running", "completed", "failed", name="renewalrunstatus"),
            nullable=True,
        ),
        sa.Column("inserted_count", sa.Integer(), nullable=True),
        sa.Column("published_count", sa.Integer(), nullable=True),
        sa.Column("publish_failed_count", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "job_name", "schedule_date", "run_key", name="uq_renewal_runs_instance"
        ),
    )

    # Dead letters
    op.create_table(
        "renewal_dead_letters",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("subscription_id", sa.UUID(), nullable=True),
        sa.Column(
            "reason",
            sa.Enum("malformed", "exhausted", name="deadletterreason"),
            nullable=False,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_renewal_dead_letters_message_id", "renewal_dead_letters", ["message_id"]
    )
    op.create_index(
        "ix_renewal_dead_letters_subscription_id",
        "renewal_dead_letters",
        ["subscription_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_renewal_dead_letters_subscription_id", table_name="renewal_dead_letters"
    )
    op.drop_index("ix_renewal_dead_letters_message_id", table_name="renewal_dead_letters")
    op.drop_table("renewal_dead_letters")

    op.drop_table("renewal_runs")

    op.drop_index("ix_renewal_outbox_unpublished", table_name="renewal_outbox")
    op.drop_table("renewal_outbox")

    op.drop_index("ix_payments_charge_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_charges_invoice_id", table_name="charges")
    op.drop_index("ix_charges_subscription_id", table_name="charges")
    op.drop_table("charges")

    op.drop_index("ix_invoices_customer_id", table_name="invoices")
    op.drop_table("invoices")

    op.drop_index("ix_subscriptions_plan_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_customer_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_table("customers")
    op.drop_table("plans")

    for enum_name in [
        "deadletterreason",
        "renewalrunstatus",
        "paymentstatus",
        "chargestatus",
        "invoicestatus",
        "subscriptionstatus",
        "planinterval",
    ]:
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
