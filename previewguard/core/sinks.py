"""Upload sinks: where originals and previews are written.

A :data:`SinkDestination` is an explicit, discriminated value:

* :class:`RemoteDestination`: an opaque pre-authorized write URL (for example
  an S3 presigned PUT URL).  Written by :class:`RemoteSink` with one HTTP PUT.
* :class:`LocalDestination`: a ``(kind, key)`` slot in the
  :class:`~previewguard.services.ephemeral_store.EphemeralStore`.  Written by
  :class:`LocalEphemeralSink`.

:func:`parse_destination` builds one from the raw request string.  Callers
should pass an explicit ``sink`` (``"remote"`` / ``"local"``); when it is
omitted the kind is inferred from the string prefix.

:class:`SinkRouter` hands each destination to the matching sink.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import httpx

from previewguard.core.exceptions import PipelineValidationError, UploadError
from previewguard.services.ephemeral_store import STORE_KINDS, EphemeralStore

logger = logging.getLogger(__name__)

SINK_REMOTE = "remote"
SINK_LOCAL = "local"
_SINK_KINDS = frozenset({SINK_REMOTE, SINK_LOCAL})

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class RemoteDestination:
    """Pre-authorized write URL."""

    url: str

    def __str__(self) -> str:
        # Presigned URLs embed credentials in the query string.
        return self.url.split("?", 1)[0]


@dataclass(frozen=True)
class LocalDestination:
    """Slot in the local ephemeral store."""

    kind: str
    key: str

    def __str__(self) -> str:
        return f"local:{self.kind}/{self.key}"


SinkDestination = Union[RemoteDestination, LocalDestination]


@dataclass(frozen=True)
class UploadAck:
    """Acknowledgement of a successful upload.

    Attributes:
        destination: Where the artifact was written.
        size: Number of bytes written.
        status_code: HTTP status of the remote PUT; ``None`` for local writes.
    """

    destination: SinkDestination
    size: int
    status_code: int | None = None

    @property
    def local(self) -> bool:
        return isinstance(self.destination, LocalDestination)


def parse_destination(
    value: str,
    *,
    role: str,
    sink: str | None = None,
    local_prefix: str = "/convert/",
    allow_local: bool = True,
) -> SinkDestination:
    """Build a :data:`SinkDestination` from a request field.

    Args:
        value: Raw destination string from the request.
        role: ``"original"`` or ``"preview"``; the store kind used when a
            local path does not name one itself.
        sink: Explicit sink kind.  When ``None`` the kind is inferred:
            strings starting with *local_prefix* are local, everything else
            is remote.
        local_prefix: Routing prefix of local destinations.
        allow_local: When ``False`` a local destination is refused.

    Raises:
        PipelineValidationError: For an unknown sink kind, a disallowed or
            malformed local destination, or an empty value.
    """
    value = value.strip()
    if not value:
        raise PipelineValidationError(f"Missing {role} destination")

    if sink is None:
        kind = SINK_LOCAL if value.startswith(local_prefix) else SINK_REMOTE
    else:
        kind = sink.strip().lower()
        if kind not in _SINK_KINDS:
            raise PipelineValidationError(
                f"Invalid sink kind {sink!r} for {role}; expected 'remote' or 'local'"
            )

    if kind == SINK_REMOTE:
        return RemoteDestination(url=value)

    if not allow_local:
        raise PipelineValidationError("Local destinations are disabled")

    path = value[len(local_prefix):] if value.startswith(local_prefix) else value
    segments = [s for s in path.split("?", 1)[0].split("/") if s]
    if not segments:
        raise PipelineValidationError(f"Local {role} destination has no file name")
    store_kind = segments[0] if len(segments) == 2 and segments[0] in STORE_KINDS else role
    return LocalDestination(kind=store_kind, key=segments[-1])


class RemoteSink:
    """Write an artifact to a pre-authorized URL with a single PUT.

    No retries: the URL is assumed single-use and time-boxed, so a failure
    is final for the request.

    Args:
        timeout: Seconds allowed for the whole request.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            ``None`` a client is created per upload.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._http_client = http_client

    async def upload(
        self,
        destination: RemoteDestination,
        source: Path,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> UploadAck:
        """PUT the file at *source* to *destination*.

        Raises:
            UploadError: On a non-2xx status (``upstream_status`` set) or any
                transport error.
        """
        body = await asyncio.to_thread(source.read_bytes)
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(len(body)),
        }
        try:
            response = await self._put(destination.url, body, headers)
        except httpx.HTTPError as exc:
            logger.error("Upload to %s failed: %r", destination, exc)
            raise UploadError(f"Upload failed: {exc}") from exc

        if not response.is_success:
            logger.error(
                "Upload to %s rejected with status %d", destination, response.status_code
            )
            raise UploadError(
                f"Upload failed with status {response.status_code}",
                status_code=response.status_code,
            )

        logger.info("Upload successful: %d %s", response.status_code, destination)
        return UploadAck(
            destination=destination, size=len(body), status_code=response.status_code
        )

    async def _put(
        self, url: str, body: bytes, headers: dict[str, str]
    ) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.put(
                url, content=body, headers=headers, timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.put(url, content=body, headers=headers)


class LocalEphemeralSink:
    """Copy an artifact into the local ephemeral store."""

    def __init__(self, store: EphemeralStore) -> None:
        self._store = store

    async def upload(
        self,
        destination: LocalDestination,
        source: Path,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> UploadAck:
        """Store a copy of *source* under *destination*.

        Raises:
            UploadError: If the copy fails.
        """
        logger.info("Storing file locally for test destination %s", destination)
        try:
            await self._store.put(destination.kind, destination.key, source, content_type)
            size = source.stat().st_size
        except (OSError, ValueError) as exc:
            raise UploadError(f"Local store write failed: {exc}") from exc
        return UploadAck(destination=destination, size=size)


class SinkRouter:
    """Dispatch a :data:`SinkDestination` to the sink that handles it."""

    def __init__(self, remote: RemoteSink, local: LocalEphemeralSink) -> None:
        self._remote = remote
        self._local = local

    async def upload(
        self,
        destination: SinkDestination,
        source: Path,
        content_type: str | None = None,
    ) -> UploadAck:
        content_type = content_type or DEFAULT_CONTENT_TYPE
        if isinstance(destination, LocalDestination):
            return await self._local.upload(destination, source, content_type)
        return await self._remote.upload(destination, source, content_type)
