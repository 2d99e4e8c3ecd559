"""Unit tests for the TTL-keyed ephemeral store.

A mutable fake clock drives expiry so no test sleeps for real TTLs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from previewguard.services.ephemeral_store import EphemeralStore


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock) -> EphemeralStore:
    return EphemeralStore(tmp_path / "store", ttl_seconds=300, clock=clock)


@pytest.fixture()
def artifact(tmp_path: Path) -> Path:
    path = tmp_path / "artifact.pdf"
    path.write_bytes(b"%PDF-1.4 first")
    return path


@pytest.mark.asyncio
async def test_entry_lives_for_exactly_the_ttl(
    store: EphemeralStore, clock: FakeClock, artifact: Path
) -> None:
    await store.put("preview", "a.pdf", artifact, "application/pdf")

    clock.advance(4 * 60 + 59)
    entry = store.get("preview", "a.pdf")
    assert entry is not None
    assert entry.content_type == "application/pdf"
    assert entry.storage_path.read_bytes() == b"%PDF-1.4 first"

    clock.advance(2)
    assert store.get("preview", "a.pdf") is None
    assert not entry.storage_path.exists()
    assert len(store) == 0


@pytest.mark.asyncio
async def test_put_copies_source(store: EphemeralStore, artifact: Path) -> None:
    entry = await store.put("original", "a.pdf", artifact, "application/pdf")
    artifact.unlink()
    assert entry.storage_path.exists()


@pytest.mark.asyncio
async def test_kinds_are_separate_namespaces(store: EphemeralStore, artifact: Path) -> None:
    await store.put("original", "same", artifact, "text/plain")
    assert store.get("preview", "same") is None
    assert store.get("original", "same") is not None


@pytest.mark.asyncio
async def test_overwrite_resets_expiry_and_survives_stale_eviction(
    store: EphemeralStore, clock: FakeClock, artifact: Path, tmp_path: Path
) -> None:
    await store.put("preview", "k.pdf", artifact, "application/pdf")
    clock.advance(200)

    second = tmp_path / "second.pdf"
    second.write_bytes(b"%PDF-1.4 second")
    await store.put("preview", "k.pdf", second, "application/pdf")

    # The first upload's scheduled expiry falls due now.
    clock.advance(101)
    assert store.evict_expired() == 0
    entry = store.get("preview", "k.pdf")
    assert entry is not None
    assert entry.storage_path.read_bytes() == b"%PDF-1.4 second"

    clock.advance(200)
    assert store.evict_expired() == 1
    assert store.get("preview", "k.pdf") is None
    assert not entry.storage_path.exists()


@pytest.mark.asyncio
async def test_overwrite_removes_superseded_file(store: EphemeralStore, artifact: Path) -> None:
    first = await store.put("preview", "k", artifact, "application/pdf")
    second = await store.put("preview", "k", artifact, "application/pdf")
    assert first.storage_path != second.storage_path
    assert not first.storage_path.exists()
    assert second.storage_path.exists()


@pytest.mark.asyncio
async def test_evict_expired_keeps_live_entries(
    store: EphemeralStore, clock: FakeClock, artifact: Path
) -> None:
    await store.put("preview", "old", artifact, "application/pdf")
    clock.advance(100)
    await store.put("preview", "new", artifact, "application/pdf")
    clock.advance(250)

    assert store.evict_expired() == 1
    assert store.get("preview", "old") is None
    assert store.get("preview", "new") is not None
    assert store.next_expiry() == clock.now + 50


@pytest.mark.asyncio
async def test_put_rejects_unknown_kind(store: EphemeralStore, artifact: Path) -> None:
    with pytest.raises(ValueError):
        await store.put("thumbnail", "k", artifact, "image/png")
    with pytest.raises(ValueError):
        await store.put("preview", "", artifact, "image/png")


@pytest.mark.asyncio
async def test_key_is_sanitised_into_storage_dir(
    store: EphemeralStore, artifact: Path, tmp_path: Path
) -> None:
    entry = await store.put("original", "../../etc/passwd", artifact, "text/plain")
    assert entry.storage_path.parent == tmp_path / "store" / "original"
    assert store.get("original", "../../etc/passwd") is not None


@pytest.mark.asyncio
async def test_clear_drops_everything(store: EphemeralStore, artifact: Path) -> None:
    entry = await store.put("preview", "a", artifact, "application/pdf")
    store.clear()
    assert len(store) == 0
    assert not entry.storage_path.exists()
    assert store.next_expiry() is None


@pytest.mark.asyncio
async def test_scheduler_evicts_when_due(tmp_path: Path, artifact: Path) -> None:
    store = EphemeralStore(tmp_path / "store", ttl_seconds=0.05)
    store.start()
    try:
        entry = await store.put("preview", "soon", artifact, "application/pdf")
        for _ in range(50):
            if len(store) == 0:
                break
            await asyncio.sleep(0.02)
        assert len(store) == 0
        assert not entry.storage_path.exists()
    finally:
        await store.stop()


@pytest.mark.asyncio
async def test_stop_leaves_live_entries(tmp_path: Path, artifact: Path) -> None:
    store = EphemeralStore(tmp_path / "store", ttl_seconds=300)
    store.start()
    await store.put("preview", "keep", artifact, "application/pdf")
    await store.stop()
    assert store.get("preview", "keep") is not None
