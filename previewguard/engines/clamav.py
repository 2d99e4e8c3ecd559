"""ClamAV engine adapters.

Two ways of reaching ClamAV are supported:

* :class:`ClamdAdapter` talks to a running ``clamd`` daemon over a TCP or
  UNIX socket using the ``clamd`` library.  With ``instream=True`` the file
  bytes are streamed to the daemon, so no shared filesystem is required.
* :class:`ClamdscanAdapter` runs the ``clamdscan`` client binary and reads its
  exit status: ``0`` clean, ``1`` virus found, anything else an error.

Both adapters are stateless beyond their connection parameters and are safe
to call from multiple threads.
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path

import clamd

from previewguard.engines.base import ScanEngine, ScanEngineError, ScanVerdict

logger = logging.getLogger(__name__)

_STATUS_OK = "OK"
_STATUS_FOUND = "FOUND"

# clamdscan exit codes.
_EXIT_CLEAN = 0
_EXIT_VIRUS = 1


def _parse_clamd_response(response: dict[str, tuple[str, str | None]] | None) -> ScanVerdict:
    """Reduce a clamd ``{path: (status, detail)}`` response to a verdict.

    Raises:
        ScanEngineError: On an ``ERROR`` status, an empty response, or any
            status other than ``OK`` / ``FOUND``.
    """
    if not response:
        raise ScanEngineError("ClamAV returned an empty response")

    signatures: list[str] = []
    for path, (status, detail) in response.items():
        if status == _STATUS_FOUND:
            signatures.append(detail or "UNKNOWN")
        elif status != _STATUS_OK:
            raise ScanEngineError(f"ClamAV reported {status} for {path}: {detail}")

    if signatures:
        return ScanVerdict(infected=True, signature=", ".join(signatures))
    return ScanVerdict(infected=False, signature=_STATUS_OK)


def _parse_clamdscan_output(stdout: str) -> str:
    """Extract signature names from ``<path>: <signature> FOUND`` lines."""
    signatures = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line.endswith(f" {_STATUS_FOUND}"):
            continue
        _, _, rest = line.rpartition(": ")
        signatures.append(rest[: -len(_STATUS_FOUND) - 1].strip())
    return ", ".join(s for s in signatures if s) or "UNKNOWN"


class ClamdAdapter(ScanEngine):
    """Antivirus adapter for the ClamAV daemon (``clamd``).

    A new client is created for each call because ``clamd`` does not support
    multiplexed requests on a single connection.

    Args:
        host: Hostname of the ``clamd`` daemon (TCP mode).
        port: TCP port of the ``clamd`` daemon.
        socket_path: UNIX socket path.  When set, takes precedence over
            *host* / *port*.
        timeout: Socket timeout in seconds.
        instream: Stream file contents with ``INSTREAM`` instead of asking
            the daemon to read the path with ``SCAN``.
    """

    name = "clamd"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3310,
        socket_path: str | None = None,
        timeout: float = 30.0,
        instream: bool = False,
    ) -> None:
        self._host = host
        self._port = port
        self._socket_path = socket_path
        self._timeout = timeout
        self._instream = instream

    def scan(self, file_path: Path) -> ScanVerdict:
        if not file_path.exists():
            raise ScanEngineError(f"File not found: {file_path}")

        try:
            client = self._get_client()
            if self._instream:
                with open(file_path, "rb") as fh:
                    response = client.instream(fh)
            else:
                response = client.scan(str(file_path))
        except clamd.ConnectionError as exc:
            raise ScanEngineError(f"ClamAV daemon unreachable at {self._address}") from exc
        except Exception as exc:  # noqa: BLE001
            raise ScanEngineError(f"ClamAV scan failed: {exc}") from exc

        verdict = _parse_clamd_response(response)
        if verdict.infected:
            logger.warning(
                "ClamAV detected threat",
                extra={"file": str(file_path), "threat": verdict.signature},
            )
        return verdict

    def ping(self) -> bool:
        try:
            return self._get_client().ping() == "PONG"
        except Exception as exc:  # noqa: BLE001
            logger.warning("ClamAV ping failed: %r", exc)
            return False

    @property
    def _address(self) -> str:
        return self._socket_path or f"{self._host}:{self._port}"

    def _get_client(self) -> clamd.ClamdNetworkSocket | clamd.ClamdUnixSocket:
        if self._socket_path:
            return clamd.ClamdUnixSocket(path=self._socket_path, timeout=self._timeout)
        return clamd.ClamdNetworkSocket(
            host=self._host,
            port=self._port,
            timeout=self._timeout,
        )


class ClamdscanAdapter(ScanEngine):
    """Antivirus adapter that shells out to ``clamdscan``.

    Args:
        binary: ``clamdscan`` executable name or path.
        timeout: Seconds before the child process is killed.
    """

    name = "clamdscan"

    def __init__(self, binary: str = "clamdscan", timeout: float = 30.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def scan(self, file_path: Path) -> ScanVerdict:
        try:
            proc = subprocess.run(
                [self._binary, "--no-summary", str(file_path)],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ScanEngineError(f"clamdscan timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise ScanEngineError(f"clamdscan could not be started: {exc}") from exc

        if proc.returncode == _EXIT_CLEAN:
            return ScanVerdict(infected=False, signature=proc.stdout.strip() or _STATUS_OK)

        if proc.returncode == _EXIT_VIRUS:
            signature = _parse_clamdscan_output(proc.stdout)
            logger.warning(
                "clamdscan detected threat",
                extra={"file": str(file_path), "threat": signature},
            )
            return ScanVerdict(infected=True, signature=signature)

        raise ScanEngineError(
            f"clamdscan exited with status {proc.returncode}: "
            f"{(proc.stderr or proc.stdout).strip()}"
        )

    def ping(self) -> bool:
        try:
            proc = subprocess.run(
                [self._binary, "--version"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("clamdscan ping failed: %r", exc)
            return False
        return proc.returncode == 0
