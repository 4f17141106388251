"""Payment channel used to capture renewal payments."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureResult:
    succeeded: bool
    reason: str | None = None


class PaymentChannel(Protocol):
    name: str

    def attempt_capture(
        self, payment_id: UUID, amount_cents: int, currency: str, timeout: float
    ) -> CaptureResult:
        """Try to collect the amount. Must return within ``timeout`` seconds."""


class HttpPaymentChannel:
    """Thin wrapper around the payment provider's capture endpoint.

    The payment id doubles as the provider-side idempotency key; retries and
    dedup beyond that belong to the provider.
    """

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        name: str | None = None,
    ) -> None:
        self._base_url = (base_url or settings.payment_channel_url).rstrip("/")
        self._secret_key = secret_key or settings.payment_channel_secret_key
        self.name = name or settings.payment_channel_name

    def _headers(self, payment_id: UUID) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": str(payment_id),
        }

    def is_configured(self) -> bool:
        return bool(self._base_url)

    def attempt_capture(
        self, payment_id: UUID, amount_cents: int, currency: str, timeout: float
    ) -> CaptureResult:
        if not self.is_configured():
            raise RuntimeError("Payment channel is not configured")
        payload: dict[str, Any] = {
            "payment_id": str(payment_id),
            "amount_cents": amount_cents,
            "currency": currency,
        }
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.post(
                    f"{self._base_url}/captures",
                    json=payload,
                    headers=self._headers(payment_id),
                )
        except httpx.TimeoutException:
            logger.warning("Capture timed out for payment %s", payment_id)
            return CaptureResult(succeeded=False, reason="timeout")
        except httpx.HTTPError as exc:
            logger.warning("Capture request failed for payment %s: %s", payment_id, exc)
            return CaptureResult(succeeded=False, reason=f"transport error: {exc}")

        if resp.status_code >= 400:
            logger.error(
                "Capture rejected for payment %s: HTTP %s", payment_id, resp.status_code
            )
            return CaptureResult(succeeded=False, reason=f"http {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            return CaptureResult(succeeded=False, reason="invalid response body")
        if data.get("status") == "succeeded":
            logger.info("Captured payment %s", payment_id)
            return CaptureResult(succeeded=True)
        return CaptureResult(
            succeeded=False, reason=data.get("reason") or data.get("status") or "declined"
        )


class SimulatedPaymentChannel:
    """Accepts every capture. Stand-in until a real provider is wired."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name or settings.payment_channel_name

    def attempt_capture(
        self, payment_id: UUID, amount_cents: int, currency: str, timeout: float
    ) -> CaptureResult:
        logger.info(
            "Simulated capture of %s %s for payment %s", amount_cents, currency, payment_id
        )
        return CaptureResult(succeeded=True)


def build_payment_channel() -> PaymentChannel:
    if settings.payment_channel == "http":
        return HttpPaymentChannel()
    return SimulatedPaymentChannel()
