from __future__ import annotations

from dataclasses import dataclass
from zoneinfo import ZoneInfo

from app.services.renewals.periods import resolve_zone


@dataclass(frozen=True)
class RenewalConfig:
    """Explicit parameters for one renewal batch or handler instance."""

    timezone: str = "Europe/Brussels"
    schedule_cron: str = "0 3 * * *"
    chunk_size: int = 1000
    batch_size: int = 5000
    anchor_hour: int = 9
    capture_timeout_seconds: float = 10.0
    queue: str = "billing.renewals"
    payment_channel_name: str = "CARD"
    job_name: str = "renewalJob"

    def __post_init__(self) -> None:
        resolve_zone(self.timezone)
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if not 0 <= self.anchor_hour <= 23:
            raise ValueError("anchor_hour must be between 0 and 23")
        if self.capture_timeout_seconds <= 0:
            raise ValueError("capture_timeout_seconds must be > 0")
        if len(self.schedule_cron.split()) != 5:
            raise ValueError("schedule_cron must have five fields")

    @property
    def zone(self) -> ZoneInfo:
        return resolve_zone(self.timezone)

    @classmethod
    def from_settings(cls, settings) -> RenewalConfig:
        return cls(
            timezone=settings.renewal_timezone,
            schedule_cron=settings.renewal_schedule_cron,
            chunk_size=settings.renewal_chunk_size,
            batch_size=settings.renewal_batch_size,
            anchor_hour=settings.renewal_anchor_hour,
            capture_timeout_seconds=settings.payment_capture_timeout_seconds,
            queue=settings.renewal_queue,
            payment_channel_name=settings.payment_channel_name,
        )
