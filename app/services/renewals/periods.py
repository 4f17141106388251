"""Date arithmetic shared by the scanner, relay and handler.

All stored timestamps are UTC. Local-time reasoning (due dates, the scan
window, the renewal anchor) happens in the configured zone.
"""
from __future__ import annotations

from calendar import monthrange
from datetime import UTC, date, datetime, time, timedelta
from typing import TypeVar
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models.billing import PlanInterval

_D = TypeVar("_D", date, datetime)

IDEMPOTENCY_KEY_PREFIX = "sub-"


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def add_months(value: _D, months: int) -> _D:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_interval(value: _D, interval: PlanInterval | str) -> _D:
    if PlanInterval(interval) == PlanInterval.year:
        return add_months(value, 12)
    return add_months(value, 1)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_today(zone: ZoneInfo, now: datetime | None = None) -> date:
    current = as_utc(now) if now is not None else datetime.now(UTC)
    return current.astimezone(zone).date()


def scan_window(today: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open local window [today 00:00, tomorrow 00:00)."""
    start = datetime.combine(today, time.min, tzinfo=zone)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


def due_instant(
    renewed_at: datetime, interval: PlanInterval | str, zone: ZoneInfo
) -> datetime:
    """Next due instant in local time: renewed_at + one plan interval.

    The interval is added on the local wall clock so a 09:00 anchor stays at
    09:00 across DST changes.
    """
    local = as_utc(renewed_at).astimezone(zone)
    return add_interval(local, interval)


def billing_period(
    interval: PlanInterval | str,
    today: date,
    period_start: date | None = None,
    period_end: date | None = None,
) -> tuple[date, date]:
    start = period_start if period_start is not None else today
    end = period_end if period_end is not None else add_interval(start, interval)
    return start, end


def derive_idempotency_key(subscription_id: UUID | str, period_start: date) -> str:
    return f"{IDEMPOTENCY_KEY_PREFIX}{subscription_id}|{period_start.isoformat()}"


def parse_derived_key(key: str) -> tuple[str, date] | None:
    """Split a key of the derived ``sub-<id>|<date>`` form, None for opaque keys."""
    if not key.startswith(IDEMPOTENCY_KEY_PREFIX) or "|" not in key:
        return None
    subscription_part, _, date_part = key[len(IDEMPOTENCY_KEY_PREFIX):].partition("|")
    try:
        return subscription_part, date.fromisoformat(date_part)
    except ValueError:
        return None


def renewal_anchor(period_end: date, zone: ZoneInfo, hour: int = 9) -> datetime:
    """period_end at a fixed local wall-clock hour, expressed in UTC."""
    return datetime.combine(period_end, time(hour=hour), tzinfo=zone).astimezone(UTC)
