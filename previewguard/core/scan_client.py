"""Scan client: bounded, timed, tri-state access to the scan engine.

:class:`ScanClient` wraps a blocking :class:`~previewguard.engines.base.ScanEngine`
and turns every call into exactly one of:

* ``ScanOutcome(clean=True, ...)``: the engine completed and found nothing;
* ``ScanOutcome(clean=False, detail=<signature>, ...)``: the engine signalled
  a detection;
* :class:`~previewguard.core.exceptions.ScanError`: anything else, including
  a timeout, an unreachable engine, or an unexpected exception.

Engine calls run in a dedicated ``ThreadPoolExecutor`` so a slow scan never
blocks the event loop.  The timeout starts when a worker picks the job up, so
time spent queued behind other scans is never charged to it.  A timed-out
engine call keeps its worker thread until the engine returns; the adapters
carry their own socket / process timeouts so that thread is freed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from prometheus_client import Counter

from previewguard.core.exceptions import ScanError
from previewguard.engines.base import ScanEngine, ScanEngineError

logger = logging.getLogger(__name__)

#: Labels: ``result`` ("clean" | "infected" | "error").
scan_results_total = Counter(
    "previewguard_scan_results_total",
    "Total number of completed or failed scans by result",
    ["result"],
)


@dataclass(frozen=True)
class ScanOutcome:
    """Result of a completed scan.

    Attributes:
        clean: ``True`` when no threat was detected.
        detail: Signature name for an infected file; engine summary otherwise.
        engine: Name of the engine adapter that produced the result.
        duration_ms: Wall-clock scan time in milliseconds.
    """

    clean: bool
    detail: str
    engine: str
    duration_ms: int = 0


class ScanClient:
    """Run scans off the event loop with a hard timeout.

    Args:
        engine: Blocking scan engine adapter.
        timeout: Seconds before a scan is abandoned with :class:`ScanError`.
        max_workers: Size of the scan thread pool.
        executor: Pre-built executor to use (useful for testing/injection).
            When supplied, *max_workers* is ignored.
    """

    def __init__(
        self,
        engine: ScanEngine,
        *,
        timeout: float = 30.0,
        max_workers: int = 2,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._engine = engine
        self._timeout = timeout
        if executor is not None:
            self._executor = executor
            self._owns_executor = False
        else:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="scan"
            )
            self._owns_executor = True

    @property
    def engine(self) -> ScanEngine:
        return self._engine

    async def scan(self, path: Path) -> ScanOutcome:
        """Scan *path* and return a :class:`ScanOutcome`.

        Raises:
            ScanError: If the scan cannot be completed within the timeout or
                the engine fails in any way.
        """
        loop = asyncio.get_running_loop()
        picked_up = asyncio.Event()

        def job():
            loop.call_soon_threadsafe(picked_up.set)
            return self._engine.scan(path)

        future = loop.run_in_executor(self._executor, job)
        await _wait_until_started(picked_up, future)
        start = time.monotonic()
        try:
            verdict = await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            scan_results_total.labels(result="error").inc()
            logger.error(
                "Scan timed out path=%s engine=%s timeout=%.1fs",
                path,
                self._engine.name,
                self._timeout,
            )
            raise ScanError(
                f"Antivirus scan failed: timed out after {self._timeout:g}s"
            ) from exc
        except ScanEngineError as exc:
            scan_results_total.labels(result="error").inc()
            logger.error("Scan engine error path=%s error=%s", path, exc)
            raise ScanError(f"Antivirus scan failed: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            scan_results_total.labels(result="error").inc()
            logger.exception("Unexpected scan failure path=%s", path)
            raise ScanError(f"Antivirus scan failed: {exc}") from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        outcome = ScanOutcome(
            clean=not verdict.infected,
            detail=verdict.signature,
            engine=self._engine.name,
            duration_ms=duration_ms,
        )
        scan_results_total.labels(result="clean" if outcome.clean else "infected").inc()
        logger.info(
            "Scan complete path=%s engine=%s clean=%s duration_ms=%d",
            path,
            outcome.engine,
            outcome.clean,
            duration_ms,
        )
        return outcome

    async def ping(self) -> bool:
        """Return the engine's liveness without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._engine.ping)

    def shutdown(self, *, wait: bool = False) -> None:
        """Shut down the thread pool if this client created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)


async def _wait_until_started(picked_up: asyncio.Event, future: asyncio.Future) -> None:
    """Return once a worker has started *future*'s job (or it already finished).

    Cancelling the caller while the job is still queued drops the job.
    """
    waiter = asyncio.ensure_future(picked_up.wait())
    try:
        await asyncio.wait({waiter, future}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        future.cancel()
        raise
    finally:
        waiter.cancel()
