"""Middleware tests: request ID, CORS, error handling."""

import pytest
from httpx import AsyncClient

from authlinker.links.errors import CooldownError, CryptoError, InvalidActionError, KeysNotLoadedError
from authlinker.middleware.error_handler import link_error_response
from authlinker.middleware.logging import REDACTED, add_service_fields, redact_secrets


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for a configured origin."""
    response = await client.options(
        "/api/v1/links",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.asyncio
async def test_cors_exposes_retry_after(client: AsyncClient) -> None:
    """Cross-origin callers can read Retry-After on cooldown responses."""
    response = await client.get("/health", headers={"Origin": "http://localhost:3000"})
    exposed = response.headers["access-control-expose-headers"].lower()
    assert "retry-after" in exposed
    assert "x-request-id" in exposed


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_validation_error_shape(client: AsyncClient) -> None:
    """Malformed bodies return 422 with the errors list."""
    response = await client.post("/api/v1/links", json={"action": "login"})
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert isinstance(data["errors"], list)


@pytest.mark.asyncio
async def test_unsafe_request_id_replaced(client: AsyncClient) -> None:
    """Caller ids that are too long or not log-safe are replaced with a fresh UUID."""
    for bad in ("has spaces in it", "x" * 65, "semi;colon"):
        response = await client.get("/health", headers={"X-Request-Id": bad})
        assert response.headers["x-request-id"] != bad
        assert len(response.headers["x-request-id"]) == 36


class TestLogProcessors:
    def test_secrets_redacted(self) -> None:
        event = {"event": "link_issued", "token": "AbCdEf123456", "hash": "ff" * 32, "record_id": "r1"}
        result = redact_secrets(None, "info", event)
        assert result["token"] == REDACTED
        assert result["hash"] == REDACTED
        assert result["record_id"] == "r1"

    def test_service_fields_added(self) -> None:
        processor = add_service_fields("production")
        result = processor(None, "info", {"event": "x"})
        assert result["service"] == "authlinker"
        assert result["environment"] == "production"


class TestLinkErrorResponse:
    def test_invalid_action(self) -> None:
        response = link_error_response(InvalidActionError("nuke"))
        assert response.status_code == 400

    def test_cooldown_sets_retry_after(self) -> None:
        response = link_error_response(CooldownError(42))
        assert response.status_code == 429
        assert response.headers["retry-after"] == "42"

    def test_keys_not_loaded(self) -> None:
        assert link_error_response(KeysNotLoadedError()).status_code == 503

    def test_internal_details_hidden(self) -> None:
        response = link_error_response(CryptoError("padding oracle details"))
        assert response.status_code == 500
        assert b"padding oracle" not in response.body
        assert b"crypto_failure" in response.body
