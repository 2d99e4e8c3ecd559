"""Application configuration via Pydantic Settings.

All configuration is driven by environment variables. Invalid values raise a
``ValidationError`` at startup so misconfigured deployments fail fast.

Usage::

    from previewguard.config import get_settings

    settings = get_settings()
    print(settings.max_file_size)

The ``get_settings`` function is cached with ``functools.lru_cache``. To override
settings in tests, construct :class:`Settings` directly and pass it to
:func:`previewguard.main.create_app`, or set the relevant environment variables
before calling ``get_settings()`` for the first time.
"""
from __future__ import annotations

import functools

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCAN_BACKENDS = frozenset({"clamd", "clamdscan"})


class Settings(BaseSettings):
    """PreviewGuard application settings.

    Environment variables are read case-insensitively. A ``.env`` file in the
    working directory is loaded automatically when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Security
    api_key: str | None = Field(
        default=None,
        description="Shared API key required on POST /convert. Unset means every conversion is refused",
    )

    # Transport limits
    max_file_size: int = Field(
        default=52_428_800,
        ge=1,
        description="Maximum accepted upload size in bytes (default 50 MiB)",
    )
    upload_dir: str = Field(
        default="/tmp/uploads",
        description="Directory where incoming uploads are spooled before a pipeline run",
    )

    # Conversion
    work_dir: str = Field(
        default="/tmp/libreoffice",
        description="Scratch directory for generated PDFs and renderer working copies",
    )
    soffice_binary: str = Field(default="soffice", description="LibreOffice executable")
    conversion_concurrency: int = Field(
        default=2,
        ge=1,
        description="Maximum simultaneous image/document conversions",
    )
    conversion_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Watchdog for the render work of one conversion, started once a slot is held",
    )

    # Scanning
    scan_backend: str = Field(
        default="clamd",
        description="Scan engine adapter: 'clamd' (daemon socket) or 'clamdscan' (CLI)",
    )
    clamav_host: str = Field(default="localhost", description="clamd TCP host")
    clamav_port: int = Field(default=3310, ge=1, le=65535, description="clamd TCP port")
    clamav_socket: str | None = Field(
        default=None,
        description="clamd UNIX socket path; takes precedence over host/port when set",
    )
    clamav_instream: bool = Field(
        default=False,
        description="Stream file bytes to clamd (INSTREAM) instead of sharing the upload path",
    )
    clamdscan_binary: str = Field(default="clamdscan", description="clamdscan executable")
    scan_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Hard timeout for a single scan",
    )
    scan_max_workers: int = Field(
        default=2,
        ge=1,
        description="Thread pool size for blocking scan calls",
    )

    # Sinks
    upload_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single PUT to a pre-authorized remote URL",
    )
    local_sink_prefix: str = Field(
        default="/convert/",
        description="Destination prefix routed to the local ephemeral store",
    )
    allow_local_sink: bool = Field(
        default=True,
        description="Accept local ephemeral destinations (disable in production)",
    )
    local_store_dir: str = Field(
        default="/tmp/convert-test",
        description="Directory backing the local ephemeral store",
    )
    local_store_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Lifetime of a local ephemeral entry (default 5 minutes)",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never set True in production)",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("scan_backend")
    @classmethod
    def validate_scan_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _SCAN_BACKENDS:
            raise ValueError(f"scan_backend must be one of {sorted(_SCAN_BACKENDS)}")
        return v

    @field_validator("local_sink_prefix")
    @classmethod
    def validate_local_sink_prefix(cls, v: str) -> str:
        if not (v.startswith("/") and v.endswith("/")):
            raise ValueError("local_sink_prefix must start and end with '/'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    The first call reads environment variables (and ``.env``). Subsequent calls
    return the cached instance. Clear the cache with ``get_settings.cache_clear()``
    between tests.
    """
    return Settings()


settings = get_settings()
