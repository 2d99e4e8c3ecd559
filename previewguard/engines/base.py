"""Abstract scan engine adapter interface.

All antivirus engine integrations implement :class:`ScanEngine`.  Two ClamAV
adapters ship with PreviewGuard: :class:`~previewguard.engines.clamav.ClamdAdapter`
(talks to a running ``clamd`` over a socket) and
:class:`~previewguard.engines.clamav.ClamdscanAdapter` (runs the ``clamdscan``
client and interprets its exit status).

Usage::

    from previewguard.engines.base import ScanEngine, ScanVerdict

    class MyEngine(ScanEngine):
        name = "my-engine"

        def scan(self, file_path: Path) -> ScanVerdict:
            ...

        def ping(self) -> bool:
            ...
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ScanVerdict:
    """Raw verdict reported by an engine for one completed scan.

    Attributes:
        infected: ``True`` when the engine signalled a detection.
        signature: Engine-reported signature name for a detection
            (e.g. ``"Win.Test.EICAR_HDB-1"``); the engine's own summary
            line or ``"OK"`` for a clean file.
    """

    infected: bool
    signature: str


class ScanEngineError(Exception):
    """Raised when the engine is unreachable or returns an unexpected result.

    Callers must treat this exception as a scan failure: the file is neither
    clean nor infected, and the request must not proceed.
    """


class ScanEngine(ABC):
    """Abstract interface for antivirus scan engine adapters.

    Implementations wrap a specific backend and expose a uniform blocking
    ``scan`` / ``ping`` contract.  The :class:`~previewguard.core.scan_client.ScanClient`
    calls ``scan`` from a ``ThreadPoolExecutor``, so implementations must be
    safe for concurrent use from multiple threads.

    Example: minimal stub for unit tests::

        class FakeEngine(ScanEngine):
            name = "fake"

            def scan(self, file_path: Path) -> ScanVerdict:
                return ScanVerdict(infected=False, signature="OK")

            def ping(self) -> bool:
                return True
    """

    name: str = "unknown"

    @abstractmethod
    def scan(self, file_path: Path) -> ScanVerdict:
        """Scan *file_path* and return the engine's verdict.

        Args:
            file_path: Absolute path to the file to scan.  The file must
                exist and be readable by the engine process.

        Returns:
            A :class:`ScanVerdict`.

        Raises:
            ScanEngineError: If the engine is unreachable, times out, or
                returns a response that is neither clean nor a detection.
        """

    @abstractmethod
    def ping(self) -> bool:
        """Return ``True`` if the engine is reachable and ready to scan.

        All exceptions must be caught internally; the method must never raise.
        """
