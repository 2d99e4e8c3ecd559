"""Shared pytest configuration and fixtures for PreviewGuard tests.

Sets environment variables before any previewguard module is imported, so
that ``previewguard.config.get_settings()`` and the module-level app in
``previewguard.main`` never point at real system directories.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
from PIL import Image

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="previewguard-tests-"))

# Set env vars before any previewguard module is imported
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("UPLOAD_DIR", str(_TEST_ROOT / "uploads"))
os.environ.setdefault("WORK_DIR", str(_TEST_ROOT / "work"))
os.environ.setdefault("LOCAL_STORE_DIR", str(_TEST_ROOT / "store"))
os.environ.setdefault("ENVIRONMENT", "test")

from previewguard.config import Settings  # noqa: E402
from tests.fakes import FakeRenderer, FakeScanEngine  # noqa: E402


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_key="test-api-key",
        upload_dir=str(tmp_path / "uploads"),
        work_dir=str(tmp_path / "work"),
        local_store_dir=str(tmp_path / "store"),
        scan_timeout_seconds=5,
        conversion_timeout_seconds=10,
    )


@pytest.fixture()
def scan_engine() -> FakeScanEngine:
    return FakeScanEngine()


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def png_file(tmp_path: Path) -> Path:
    path = tmp_path / "photo.png"
    Image.new("RGBA", (40, 30), (255, 0, 0, 128)).save(path)
    return path
