"""
Tests for the application shell: health endpoints, request correlation,
the shared error envelope and the expired-offer sweep.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from httpx import AsyncClient

from mtaani_gas import main
from mtaani_gas.database.models import UserRole


class TestHealthEndpoints:
    """Test operational endpoints."""

    async def test_health_check_returns_200(self, client: AsyncClient):
        """Test health endpoint reports the service."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["environment"] == "test"

    async def test_liveness_check(self, client: AsyncClient):
        """Test liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    async def test_readiness_check_reaches_database(self, client: AsyncClient):
        """Test readiness performs a database round-trip."""
        response = await client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["database"] == "healthy"


class TestRequestCorrelation:
    """Test request id propagation."""

    async def test_response_carries_generated_request_id(self, client: AsyncClient):
        """Test a request id is generated when none is sent."""
        response = await client.get("/health")

        assert response.headers.get("X-Request-ID")

    async def test_custom_request_id_is_preserved(self, client: AsyncClient):
        """Test a caller-provided request id is echoed back."""
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestErrorEnvelope:
    """Test that every error uses the failure envelope."""

    async def test_missing_credentials_returns_401_envelope(self, client: AsyncClient):
        """Test unauthenticated access is rejected."""
        response = await client.get("/api/orders")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Could not validate credentials"
        assert "request_id" in body

    async def test_invalid_token_returns_401(self, client: AsyncClient):
        """Test a garbage bearer token is rejected."""
        response = await client.get(
            "/api/orders", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_wrong_role_returns_403(self, client: AsyncClient, dealer, auth_headers):
        """Test a dealer cannot use customer order endpoints."""
        response = await client.get("/api/orders", headers=auth_headers(dealer))

        assert response.status_code == 403
        assert response.json()["error"] == "Insufficient permissions"

    async def test_customer_cannot_use_dealer_endpoints(
        self, client: AsyncClient, customer, auth_headers
    ):
        """Test a customer cannot browse dealer offers."""
        response = await client.get("/api/agent-orders/available", headers=auth_headers(customer))

        assert response.status_code == 403

    async def test_inactive_user_returns_403(self, client: AsyncClient, make_user, auth_headers):
        """Test deactivated accounts cannot authenticate."""
        user = await make_user(UserRole.CLIENT, is_active=False)

        response = await client.get("/api/orders", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["error"] == "Inactive user account"

    async def test_validation_error_returns_400_envelope(
        self, client: AsyncClient, customer, auth_headers
    ):
        """Test malformed bodies are reported as 400 with details."""
        response = await client.post(
            "/api/orders",
            json={"payment_method": "cash"},
            headers=auth_headers(customer),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "delivery_location" in body["error"]
        assert body["details"]

    async def test_unknown_route_returns_404_envelope(self, client: AsyncClient):
        """Test unknown routes use the envelope too."""
        response = await client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.json()["success"] is False


class TestExpiredOfferSweep:
    """Test the background sweep loop."""

    async def test_sweep_runs_and_survives_failures(self):
        """Test a failing pass is logged and the loop keeps its schedule."""
        # Arrange
        session = AsyncMock()
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)
        service = Mock()
        service.expire_stale_offers = AsyncMock(side_effect=[RuntimeError("db down"), 2])
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        # Act
        with patch.object(main, "get_session", return_value=session_cm), patch.object(
            main, "OrderService", return_value=service
        ), patch.object(main.asyncio, "sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await main.sweep_expired_offers(60)

        # Assert
        assert service.expire_stale_offers.await_count == 2
        assert [c.args[0] for c in sleep.await_args_list] == [60, 60]
