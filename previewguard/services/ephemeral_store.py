"""EphemeralStore: a TTL-keyed local file store for test destinations.

Uploads routed to the local sink are copied into ``storage_dir`` and recorded
as :class:`EphemeralEntry` objects keyed by ``(kind, key)``, where *kind* is
``"original"`` or ``"preview"`` and *key* is the final segment of the
destination path.  Entries live for a fixed TTL with no refresh on read.

Expiry is enforced twice:

1. **Lazily on read**: :meth:`EphemeralStore.get` treats an entry whose
   ``expires_at`` has passed as absent and evicts it on the spot.
2. **By a scheduler**: a single asyncio task owns a min-heap of
   ``(expires_at, generation, kind, key)`` and evicts each entry when it
   falls due.

Every put bumps a per-store generation counter.  A heap item only evicts the
entry whose generation it carries, so re-uploading a key supersedes the
pending eviction of the old entry instead of racing it.

The mapping is guarded by one ``threading.Lock``; reads, inserts and
evictions may come from any thread.

Usage::

    store = EphemeralStore(storage_dir="/tmp/convert-test", ttl_seconds=300)
    store.start()                     # inside a running event loop
    await store.put("preview", "a.pdf", Path("/tmp/x.pdf"), "application/pdf")
    entry = store.get("preview", "a.pdf")
    await store.stop()
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

STORE_KINDS: frozenset[str] = frozenset({"original", "preview"})

# Upper bound on a single scheduler sleep, so a clock jump is noticed.
_MAX_SLEEP_SECONDS = 60.0


@dataclass(frozen=True)
class EphemeralEntry:
    """A stored artifact and its lifetime.

    Attributes:
        storage_path: Location of the stored copy.
        content_type: MIME type served back on retrieval.
        expires_at: Unix timestamp after which the entry is gone.
        generation: Monotonic put counter used to match scheduled evictions.
    """

    storage_path: Path
    content_type: str
    expires_at: float
    generation: int


def _safe_name(key: str) -> str:
    """Sanitise *key* into a single path component."""
    safe = "".join(c for c in key if c.isalnum() or c in "-_.")
    return safe.lstrip(".") or "_"


class EphemeralStore:
    """Thread-safe TTL store backing the local test sink.

    Args:
        storage_dir: Directory for stored copies; one subdirectory per kind.
        ttl_seconds: Lifetime of each entry.
        clock: Returns the current Unix time.  Injected by tests.
    """

    def __init__(
        self,
        storage_dir: str | Path,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage_dir = Path(storage_dir)
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], EphemeralEntry] = {}
        self._heap: list[tuple[float, int, str, str]] = []
        self._generation = 0
        self._wakeup: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def put(
        self,
        kind: str,
        key: str,
        source: Path,
        content_type: str,
    ) -> EphemeralEntry:
        """Copy *source* into the store under ``(kind, key)``.

        The copy runs in a worker thread.  An existing entry for the same key
        is replaced and its expiry reset.

        Raises:
            ValueError: If *kind* is not a known store kind or *key* is empty.
            OSError: If the copy fails.
        """
        if kind not in STORE_KINDS:
            raise ValueError(f"Unknown store kind: {kind!r}")
        if not key:
            raise ValueError("Store key must not be empty")

        # One file per put, so evicting a superseded entry never touches its
        # replacement.
        storage_path = self._storage_dir / kind / f"{uuid.uuid4().hex}-{_safe_name(key)}"
        await asyncio.to_thread(self._copy, source, storage_path)
        return self._insert(kind, key, storage_path, content_type)

    def get(self, kind: str, key: str) -> EphemeralEntry | None:
        """Return the live entry for ``(kind, key)`` or ``None``.

        ``None`` covers both an absent key and an expired one; an expired
        entry is evicted before returning.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get((kind, key))
            if entry is None:
                return None
            if now < entry.expires_at:
                return entry
            del self._entries[(kind, key)]

        self._remove_file(entry.storage_path)
        logger.info("Evicted expired entry on read kind=%s key=%s", kind, key)
        return None

    def evict_expired(self) -> int:
        """Evict every entry whose scheduled expiry has passed.

        Returns:
            The number of entries removed.
        """
        now = self._clock()
        expired: list[tuple[str, str, EphemeralEntry]] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                _, generation, kind, key = heapq.heappop(self._heap)
                entry = self._entries.get((kind, key))
                # A re-upload superseded this heap item.
                if entry is None or entry.generation != generation:
                    continue
                del self._entries[(kind, key)]
                expired.append((kind, key, entry))

        for kind, key, entry in expired:
            self._remove_file(entry.storage_path)
            logger.info("Cleaned up expired entry kind=%s key=%s", kind, key)
        return len(expired)

    def next_expiry(self) -> float | None:
        """Return the earliest pending expiry timestamp, if any."""
        with self._lock:
            return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        """Drop every entry and its stored file."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            self._heap.clear()
        for entry in entries:
            self._remove_file(entry.storage_path)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the eviction scheduler on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = self._loop.create_task(self._run_scheduler())
        logger.info("Ephemeral store scheduler started ttl=%ss", self._ttl)

    async def stop(self) -> None:
        """Cancel the scheduler task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Ephemeral store scheduler stopped")

    async def _run_scheduler(self) -> None:
        assert self._wakeup is not None
        while True:
            self.evict_expired()
            due = self.next_expiry()
            delay = _MAX_SLEEP_SECONDS if due is None else max(0.0, due - self._clock())
            self._wakeup.clear()
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(), timeout=min(delay, _MAX_SLEEP_SECONDS)
                )
            except asyncio.TimeoutError:
                pass

    def _notify_scheduler(self) -> None:
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wakeup.set()
        else:
            loop.call_soon_threadsafe(wakeup.set)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _insert(
        self, kind: str, key: str, storage_path: Path, content_type: str
    ) -> EphemeralEntry:
        with self._lock:
            self._generation += 1
            entry = EphemeralEntry(
                storage_path=storage_path,
                content_type=content_type,
                expires_at=self._clock() + self._ttl,
                generation=self._generation,
            )
            previous = self._entries.get((kind, key))
            self._entries[(kind, key)] = entry
            heapq.heappush(self._heap, (entry.expires_at, entry.generation, kind, key))

        if previous is not None:
            self._remove_file(previous.storage_path)
        self._notify_scheduler()
        logger.info(
            "Stored local entry kind=%s key=%s path=%s expires_at=%.0f",
            kind,
            key,
            storage_path,
            entry.expires_at,
        )
        return entry

    @staticmethod
    def _copy(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error cleaning up file %s: %r", path, exc)
