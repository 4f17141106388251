from app.services.renewals.config import RenewalConfig
from app.services.renewals.consumer import ConsumeOutcome, RenewalConsumer, parse_event
from app.services.renewals.dead_letters import DeadLetters, dead_letters
from app.services.renewals.handler import HandleResult, RenewalEventHandler
from app.services.renewals.redelivery import RedeliveryPolicy
from app.services.renewals.relay import OutboxEntries, RelayResult, outbox_entries, relay_outbox
from app.services.renewals.runs import LaunchResult, RenewalRuns, launch_run, renewal_runs
from app.services.renewals.scanner import ScanResult, scan_due_renewals

__all__ = [
    "ConsumeOutcome",
    "DeadLetters",
    "HandleResult",
    "LaunchResult",
    "OutboxEntries",
    "RedeliveryPolicy",
    "RelayResult",
    "RenewalConfig",
    "RenewalConsumer",
    "RenewalEventHandler",
    "RenewalRuns",
    "ScanResult",
    "dead_letters",
    "launch_run",
    "outbox_entries",
    "parse_event",
    "relay_outbox",
    "renewal_runs",
    "scan_due_renewals",
]
