"""Unit tests for destination parsing and the upload sinks.

Remote uploads go through :class:`httpx.MockTransport`, so no network is used.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from previewguard.core.exceptions import PipelineValidationError, UploadError
from previewguard.core.sinks import (
    LocalDestination,
    LocalEphemeralSink,
    RemoteDestination,
    RemoteSink,
    SinkRouter,
    parse_destination,
)
from previewguard.services.ephemeral_store import EphemeralStore

PRESIGNED = "https://bucket.s3.amazonaws.com/o/a.pdf?X-Amz-Signature=secret"


@pytest.fixture()
def artifact(tmp_path: Path) -> Path:
    path = tmp_path / "a.pdf"
    path.write_bytes(b"%PDF-1.4 body")
    return path


# ---------------------------------------------------------------------------
# parse_destination
# ---------------------------------------------------------------------------


def test_plain_url_is_remote() -> None:
    dest = parse_destination(PRESIGNED, role="original")
    assert dest == RemoteDestination(url=PRESIGNED)
    assert "secret" not in str(dest)


def test_prefix_infers_local_with_kind_and_key() -> None:
    dest = parse_destination("/convert/preview/report.pdf", role="preview")
    assert dest == LocalDestination(kind="preview", key="report.pdf")


def test_local_path_without_kind_uses_role() -> None:
    assert parse_destination("/convert/report.pdf", role="original") == LocalDestination(
        kind="original", key="report.pdf"
    )


def test_explicit_sink_overrides_prefix() -> None:
    assert isinstance(
        parse_destination("/convert/preview/x.pdf", role="preview", sink="remote"),
        RemoteDestination,
    )
    assert parse_destination("uploads/x.pdf", role="preview", sink="LOCAL") == LocalDestination(
        kind="preview", key="x.pdf"
    )


def test_custom_prefix() -> None:
    dest = parse_destination("/test-sink/original/in.docx", role="original", local_prefix="/test-sink/")
    assert dest == LocalDestination(kind="original", key="in.docx")


@pytest.mark.parametrize(
    "value, kwargs, match",
    [
        ("", {}, "Missing original destination"),
        ("/convert/a", {"sink": "ftp"}, "Invalid sink kind"),
        ("/convert/a", {"allow_local": False}, "disabled"),
        ("/convert/", {}, "no file name"),
    ],
)
def test_invalid_destinations(value: str, kwargs: dict, match: str) -> None:
    with pytest.raises(PipelineValidationError, match=match):
        parse_destination(value, role="original", **kwargs)


# ---------------------------------------------------------------------------
# RemoteSink
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_remote_upload_puts_body_with_headers(artifact: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ack = await RemoteSink(http_client=client).upload(
            RemoteDestination(PRESIGNED), artifact, "application/pdf"
        )

    assert ack.status_code == 200
    assert ack.size == len(b"%PDF-1.4 body")
    assert ack.local is False
    request = seen[0]
    assert request.method == "PUT"
    assert str(request.url) == PRESIGNED
    assert request.headers["content-type"] == "application/pdf"
    assert request.headers["content-length"] == str(len(b"%PDF-1.4 body"))
    assert request.content == b"%PDF-1.4 body"


@pytest.mark.asyncio
async def test_remote_non_2xx_is_upload_error(artifact: Path) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(403, text="SignatureDoesNotMatch"))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(UploadError, match="status 403") as exc_info:
            await RemoteSink(http_client=client).upload(RemoteDestination(PRESIGNED), artifact)
    assert exc_info.value.upstream_status == 403
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_remote_transport_error_is_upload_error(artifact: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UploadError, match="connection refused"):
            await RemoteSink(http_client=client).upload(RemoteDestination(PRESIGNED), artifact)


# ---------------------------------------------------------------------------
# LocalEphemeralSink / SinkRouter
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_sink_stores_in_ephemeral_store(artifact: Path, tmp_path: Path) -> None:
    store = EphemeralStore(tmp_path / "store")
    ack = await LocalEphemeralSink(store).upload(
        LocalDestination("preview", "a.pdf"), artifact, "application/pdf"
    )
    assert ack.local is True
    entry = store.get("preview", "a.pdf")
    assert entry is not None
    assert entry.storage_path.read_bytes() == b"%PDF-1.4 body"


@pytest.mark.asyncio
async def test_local_sink_wraps_store_errors(tmp_path: Path) -> None:
    sink = LocalEphemeralSink(EphemeralStore(tmp_path / "store"))
    with pytest.raises(UploadError, match="Local store write failed"):
        await sink.upload(LocalDestination("preview", "a.pdf"), tmp_path / "missing")


@pytest.mark.asyncio
async def test_router_dispatches_by_destination_type(artifact: Path, tmp_path: Path) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.headers["content-type"])
        return httpx.Response(204)

    store = EphemeralStore(tmp_path / "store")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        router = SinkRouter(RemoteSink(http_client=client), LocalEphemeralSink(store))
        await router.upload(RemoteDestination(PRESIGNED), artifact)
        await router.upload(LocalDestination("original", "a.pdf"), artifact, None)

    assert calls == ["application/octet-stream"]
    entry = store.get("original", "a.pdf")
    assert entry is not None
    assert entry.content_type == "application/octet-stream"
