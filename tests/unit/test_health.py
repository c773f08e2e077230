"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_DB = {"healthy": True, "pool_stats": {"pool_size": 2}}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("app.routes.health.cache_store.ping", new=AsyncMock(return_value=True)),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["redis"]["ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_stats"] == {"pool_size": 2}


def test_readyz_endpoint_redis_unhealthy():
    """Test readiness endpoint when Redis is down."""
    with (
        patch("app.routes.health.cache_store.ping", new=AsyncMock(return_value=False)),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database check raises."""
    with (
        patch("app.routes.health.cache_store.ping", new=AsyncMock(return_value=True)),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(side_effect=RuntimeError("Connection failed")),
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "RuntimeError: Connection failed"
