"""Unit tests for ScanClient: tri-state results, timeouts and engine errors."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from previewguard.core.exceptions import ScanError
from previewguard.core.scan_client import ScanClient
from previewguard.engines.base import ScanEngine, ScanVerdict
from tests.fakes import EICAR_SIGNATURE, FakeScanEngine


class _SlowEngine(ScanEngine):
    name = "slow"

    def scan(self, file_path: Path) -> ScanVerdict:
        time.sleep(0.5)
        return ScanVerdict(infected=False, signature="OK")

    def ping(self) -> bool:
        return True


class _StuckEngine(FakeScanEngine):
    """Hangs on files whose name starts with ``stuck``."""

    def scan(self, file_path: Path) -> ScanVerdict:
        if file_path.name.startswith("stuck"):
            time.sleep(0.6)
        return super().scan(file_path)


class _BrokenEngine(FakeScanEngine):
    def scan(self, file_path: Path) -> ScanVerdict:
        raise RuntimeError("segfault in libclamav")


@pytest.fixture()
def clean_file(tmp_path: Path) -> Path:
    path = tmp_path / "clean.txt"
    path.write_bytes(b"nothing to see")
    return path


@pytest.fixture()
def infected_file(tmp_path: Path) -> Path:
    path = tmp_path / "eicar.com.txt"
    path.write_bytes(b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*")
    return path


@pytest.mark.asyncio
async def test_clean_scan(clean_file: Path) -> None:
    client = ScanClient(FakeScanEngine())
    outcome = await client.scan(clean_file)
    assert outcome.clean is True
    assert outcome.engine == "fake"
    client.shutdown()


@pytest.mark.asyncio
async def test_infected_scan_reports_signature(infected_file: Path) -> None:
    client = ScanClient(FakeScanEngine())
    outcome = await client.scan(infected_file)
    assert outcome.clean is False
    assert outcome.detail == EICAR_SIGNATURE
    client.shutdown()


@pytest.mark.asyncio
async def test_engine_error_is_scan_error(clean_file: Path) -> None:
    client = ScanClient(FakeScanEngine(error=True))
    with pytest.raises(ScanError, match="engine unavailable"):
        await client.scan(clean_file)
    client.shutdown()


@pytest.mark.asyncio
async def test_unexpected_exception_is_scan_error(clean_file: Path) -> None:
    client = ScanClient(_BrokenEngine())
    with pytest.raises(ScanError, match="segfault"):
        await client.scan(clean_file)
    client.shutdown()


@pytest.mark.asyncio
async def test_timeout_is_scan_error_not_clean(clean_file: Path) -> None:
    client = ScanClient(_SlowEngine(), timeout=0.05)
    with pytest.raises(ScanError, match="timed out after 0.05s"):
        await client.scan(clean_file)
    client.shutdown()


@pytest.mark.asyncio
async def test_ping_delegates_to_engine() -> None:
    assert await ScanClient(FakeScanEngine()).ping() is True
    assert await ScanClient(FakeScanEngine(error=True)).ping() is False


@pytest.mark.asyncio
async def test_queue_wait_is_not_charged_to_timeout(tmp_path: Path, clean_file: Path) -> None:
    stuck = []
    for i in range(2):
        path = tmp_path / f"stuck-{i}.bin"
        path.write_bytes(b"\x00")
        stuck.append(path)
    client = ScanClient(_StuckEngine(), timeout=0.3, max_workers=2)

    outcomes = await asyncio.gather(
        *(client.scan(path) for path in stuck),
        client.scan(clean_file),
        return_exceptions=True,
    )

    assert isinstance(outcomes[0], ScanError)
    assert isinstance(outcomes[1], ScanError)
    assert outcomes[2].clean is True
    client.shutdown(wait=True)
