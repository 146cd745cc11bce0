"""
Tests for configuration, money helpers, exceptions and error rendering.
"""
from decimal import Decimal
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import ValidationError as PydanticValidationError

from parcin.core.config import Settings
from parcin.core.database import engine_options
from parcin.core.error_handler import ErrorSanitizationMiddleware, sanitize_error_message
from parcin.core.exceptions import (
    ArrivalWindowExpired,
    InvalidStateError,
    NoCapacityError,
    LotUnavailableError,
    NotFoundError,
    PaymentProviderError,
    UpstreamFailure,
    VehicleCatalogError,
)
from parcin.core.rate_limit import get_client_ip, retry_after_seconds
from parcin.core.security import access_subject
from parcin.core.utils import ensure_aware, money_to_cents, to_money


class TestSettings:

    def _settings(self, **overrides):
        fields = dict(
            DATABASE_URL="postgresql+asyncpg://app:pw@db.internal:5432/parcin",
            SECRET_KEY="kJ8s7dHq2mN4pV9xL1zR6tY3wB5cE0fG",
            ENVIRONMENT="development",
        )
        fields.update(overrides)
        return Settings(**fields)

    def test_fee_defaults(self):
        settings = self._settings()

        assert settings.RESERVATION_FEE_PCT == Decimal("0.12")
        assert settings.RESERVATION_FEE_MINIMUM == Decimal("0.50")
        assert settings.PENDING_RESERVATION_TTL_MINUTES == 10
        assert settings.PAYMENT_CURRENCY == "brl"

    def test_fee_pct_must_be_fraction(self):
        with pytest.raises(PydanticValidationError):
            self._settings(RESERVATION_FEE_PCT=Decimal("12"))

    def test_debug_forbidden_in_production(self):
        with pytest.raises(PydanticValidationError):
            self._settings(ENVIRONMENT="production", DEBUG=True)

    def test_localhost_database_forbidden_in_production(self):
        with pytest.raises(PydanticValidationError):
            self._settings(
                ENVIRONMENT="production",
                DATABASE_URL="postgresql+asyncpg://app:pw@localhost:5432/parcin",
            )

    def test_cors_comma_separated(self):
        settings = self._settings(CORS_ORIGINS="https://a.example, https://b.example")

        assert settings.CORS_ORIGINS == ["https://a.example", "https://b.example"]

    def test_cors_json(self):
        settings = self._settings(CORS_ORIGINS='["https://a.example"]')

        assert settings.CORS_ORIGINS == ["https://a.example"]


class TestMoney:

    def test_to_money_rounds_half_up(self):
        assert to_money("1.005") == Decimal("1.01")
        assert to_money(2) == Decimal("2.00")

    def test_cents_round_trip(self):
        assert money_to_cents(Decimal("1.20")) == 120
        assert money_to_cents(None) == 0

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2025, 3, 10, 15, 0)

        assert ensure_aware(naive).tzinfo == timezone.utc


class TestExceptions:

    def test_to_dict(self):
        exc = InvalidStateError("Cannot confirm", current_state="CONFIRMED", event="confirm")

        assert exc.to_dict() == {
            "error": "INVALID_STATE",
            "message": "Cannot confirm",
            "details": {"current_state": "CONFIRMED", "event": "confirm"},
        }
        assert exc.status_code == 400

    def test_hierarchy(self):
        assert issubclass(ArrivalWindowExpired, InvalidStateError)
        assert issubclass(NoCapacityError, LotUnavailableError)
        assert issubclass(PaymentProviderError, UpstreamFailure)
        assert issubclass(VehicleCatalogError, UpstreamFailure)
        assert NotFoundError("x").status_code == 404
        assert ArrivalWindowExpired("late").code == "ARRIVAL_WINDOW_EXPIRED"

    def test_provider_code_in_details(self):
        exc = PaymentProviderError("declined", provider_code="card_declined", details={"intent": "pi_1"})

        assert exc.details == {"intent": "pi_1", "provider_code": "card_declined"}
        assert exc.status_code == 502


class TestErrorSanitization:

    def test_sensitive_message_hidden(self):
        message = sanitize_error_message('asyncpg error near line 4 of File "db.py"')

        assert message == "An internal error occurred. Please try again later."

    def test_long_message_truncated(self):
        message = sanitize_error_message("x" * 300)

        assert len(message) == 203
        assert message.endswith("...")

    def test_plain_message_kept(self):
        assert sanitize_error_message(NotFoundError("Reservation r1 not found")) == "Reservation r1 not found"


def test_client_ip_prefers_forwarded_header():
    request = MagicMock()
    request.headers = {"X-Forwarded-For": "200.1.2.3, 10.0.0.1"}

    assert get_client_ip(request) == "200.1.2.3"


def test_client_ip_falls_back_to_peer():
    request = MagicMock()
    request.headers = {}

    with patch("parcin.core.rate_limit.get_remote_address", return_value="10.0.0.9"):
        assert get_client_ip(request) == "10.0.0.9"


@pytest.mark.parametrize(
    "limit,seconds",
    [("10/minute", 60), ("10 per 1 minute", 60), ("5 per hour", 3600), ("2/second", 1), ("100/days", 86400), ("3/fortnight", 60)],
)
def test_retry_after_follows_limit_window(limit, seconds):
    assert retry_after_seconds(limit) == seconds


class TestAccessSubject:

    def test_access_token_subject(self):
        assert access_subject({"sub": "42", "type": "access"}) == 42
        assert access_subject({"sub": 42, "type": "access"}) == 42

    def test_rejected_claims(self):
        assert access_subject(None) is None
        assert access_subject({"sub": "42", "type": "refresh"}) is None
        assert access_subject({"sub": "driver", "type": "access"}) is None
        assert access_subject({"type": "access"}) is None


def test_engine_options_per_environment():
    production = engine_options("production")
    development = engine_options("development")

    assert production["pool_recycle"] == 3600
    assert development == {"pool_size": 2, "max_overflow": 5, "pool_pre_ping": True}


@pytest.mark.asyncio
async def test_unhandled_exception_becomes_generic_500():
    app = FastAPI()
    app.add_middleware(ErrorSanitizationMiddleware)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("asyncpg connection reset")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        resp = await http.get("/boom")

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "INTERNAL_ERROR"
    assert "asyncpg" not in body["message"]
    assert len(body["details"]["error_id"]) == 12
