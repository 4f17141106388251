"""Unit tests for the payment channel used by renewal captures."""

import uuid
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.services import payment_gateway

PAYMENT_ID = uuid.UUID("6f1c1d2e-0000-4000-8000-000000000001")


@pytest.fixture()
def channel() -> payment_gateway.HttpPaymentChannel:
    return payment_gateway.HttpPaymentChannel(
        base_url="https://pay.example.com/v1/", secret_key="sk_test_abc123", name="CARD"
    )


@pytest.fixture()
def response_factory() -> Callable[..., MagicMock]:
    def _build(payload: Any, status_code: int = 200) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = payload
        return response

    return _build


@pytest.fixture()
def mocked_http_client() -> tuple[MagicMock, MagicMock]:
    with patch("app.services.payment_gateway.httpx.Client") as mock_client_cls:
        mock_client = MagicMock(name="mock_httpx_client")
        mock_client_cls.return_value.__enter__.return_value = mock_client
        yield mock_client_cls, mock_client


def test_successful_capture_posts_with_idempotency_key(
    channel, mocked_http_client, response_factory
):
    mock_client_cls, mock_client = mocked_http_client
    mock_client.post.return_value = response_factory({"status": "succeeded"})

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is True
    mock_client_cls.assert_called_once_with(timeout=5)
    mock_client.post.assert_called_once_with(
        "https://pay.example.com/v1/captures",
        json={"payment_id": str(PAYMENT_ID), "amount_cents": 1999, "currency": "EUR"},
        headers={
            "Authorization": "Bearer sk_test_abc123",
            "Content-Type": "application/json",
            "Idempotency-Key": str(PAYMENT_ID),
        },
    )


def test_declined_capture_reports_reason(channel, mocked_http_client, response_factory):
    _, mock_client = mocked_http_client
    mock_client.post.return_value = response_factory(
        {"status": "failed", "reason": "card_declined"}
    )

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is False
    assert result.reason == "card_declined"


def test_http_error_status_is_a_failure(channel, mocked_http_client, response_factory):
    _, mock_client = mocked_http_client
    mock_client.post.return_value = response_factory({}, status_code=502)

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is False
    assert result.reason == "http 502"


def test_timeout_is_a_failure(channel, mocked_http_client):
    _, mock_client = mocked_http_client
    mock_client.post.side_effect = httpx.ReadTimeout("slow")

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is False
    assert result.reason == "timeout"


def test_transport_error_is_a_failure(channel, mocked_http_client):
    _, mock_client = mocked_http_client
    mock_client.post.side_effect = httpx.ConnectError("refused")

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is False
    assert result.reason.startswith("transport error")


def test_invalid_json_body_is_a_failure(channel, mocked_http_client):
    _, mock_client = mocked_http_client
    response = MagicMock(status_code=200)
    response.json.side_effect = ValueError("no json")
    mock_client.post.return_value = response

    result = channel.attempt_capture(PAYMENT_ID, 1999, "EUR", timeout=5)

    assert result.succeeded is False
    assert result.reason == "invalid response body"


def test_unconfigured_channel_raises(monkeypatch):
    monkeypatch.setattr(payment_gateway.settings, "payment_channel_url", "")
    channel = payment_gateway.HttpPaymentChannel()

    assert channel.is_configured() is False
    with pytest.raises(RuntimeError):
        channel.attempt_capture(PAYMENT_ID, 1, "EUR", timeout=1)


def test_simulated_channel_always_succeeds():
    result = payment_gateway.SimulatedPaymentChannel().attempt_capture(
        PAYMENT_ID, 1, "EUR", timeout=1
    )
    assert result.succeeded is True


def test_build_payment_channel_follows_settings(monkeypatch):
    monkeypatch.setattr(payment_gateway.settings, "payment_channel", "http")
    monkeypatch.setattr(payment_gateway.settings, "payment_channel_url", "https://x")
    assert isinstance(
        payment_gateway.build_payment_channel(), payment_gateway.HttpPaymentChannel
    )

    monkeypatch.setattr(payment_gateway.settings, "payment_channel", "simulated")
    assert isinstance(
        payment_gateway.build_payment_channel(), payment_gateway.SimulatedPaymentChannel
    )
