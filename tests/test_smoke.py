"""Smoke tests for the application module and configuration."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import ValidationError

from previewguard.config import Settings
from previewguard.main import app, build_scan_engine
from previewguard.engines import ClamdAdapter, ClamdscanAdapter


@pytest_asyncio.fixture
async def client():
    """Async HTTP client connected to the module-level app (no real I/O)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoint:
    async def test_healthz_returns_ok_status(self, client: AsyncClient):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_convert_health_banner(self, client: AsyncClient):
        response = await client.get("/convert/health")
        assert response.json()["status"] == "healthy"


class TestConfiguration:
    def test_api_key_loaded_from_environment(self):
        from previewguard.config import settings

        assert settings.api_key == "test-api-key"

    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.max_file_size == 52_428_800
        assert s.conversion_concurrency == 2
        assert s.conversion_timeout_seconds == 120
        assert s.scan_timeout_seconds == 30
        assert s.local_store_ttl_seconds == 300
        assert s.local_sink_prefix == "/convert/"

    def test_log_level_is_upper_cased(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"scan_backend": "sophos"},
            {"local_sink_prefix": "convert/"},
            {"max_file_size": 0},
            {"scan_timeout_seconds": 0},
        ],
    )
    def test_invalid_values_are_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)

    def test_scan_backend_selects_adapter(self):
        assert isinstance(build_scan_engine(Settings(scan_backend="clamd")), ClamdAdapter)
        assert isinstance(
            build_scan_engine(Settings(scan_backend="CLAMDSCAN")), ClamdscanAdapter
        )
