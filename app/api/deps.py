import hmac

from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.db import get_db
from app.services.renewals.config import RenewalConfig
from app.services.renewals.publisher import CeleryRenewalPublisher, RenewalPublisher


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Shared-secret check for the renewal trigger surface."""
    expected = settings.renewals_api_key
    if not expected or not x_api_key or not hmac.compare_digest(
        x_api_key.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_api_key", "message": "Invalid or missing API key"},
        )


def get_renewal_config() -> RenewalConfig:
    return RenewalConfig.from_settings(settings)


def get_publisher(
    config: RenewalConfig = Depends(get_renewal_config),
) -> RenewalPublisher:
    from app.celery_app import celery_app

    return CeleryRenewalPublisher(celery_app, config.queue)


__all__ = [
    "get_db",
    "get_publisher",
    "get_renewal_config",
    "require_api_key",
]
