"""Unit tests for health endpoints and the app factory."""

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from catalog_sync.config import Settings
from catalog_sync.main import create_app


def test_health_check(client: TestClient) -> None:
    """Test basic health check returns healthy status."""
    response = client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "environment" in data
    assert "timestamp" in data


def test_liveness_check(client: TestClient) -> None:
    """Test liveness check returns alive status."""
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "alive"


@pytest.mark.asyncio
async def test_readiness_check(async_client: httpx.AsyncClient) -> None:
    """Database reachable makes the service ready; Redis is reported."""
    response = await async_client.get("/api/v1/health/ready")
    assert response.status_code == 200

    data = response.json()
    assert data["ready"] is True
    assert data["checks"] == {"database": True, "redis": True}


def test_media_is_served_from_a_fresh_media_root(
    test_settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    """The media mount exists even when media_root is created after startup."""
    monkeypatch.setattr("catalog_sync.main.get_settings", lambda: test_settings)
    media_root = Path(test_settings.media_root)
    assert not media_root.exists()

    client = TestClient(create_app())
    (media_root / "logo.png").write_bytes(b"png")

    response = client.get(f"{test_settings.media_url_path}/logo.png")
    assert response.status_code == 200
    assert response.content == b"png"
