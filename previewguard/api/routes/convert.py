"""API routes for upload conversion and local artifact retrieval.

Endpoints
---------
POST /convert
    Multipart upload (``file``, ``originalUrl``, ``previewUrl`` and optional
    ``originalSink`` / ``previewSink``).  The upload is spooled to
    ``UPLOAD_DIR`` under a size cap, then handed to the
    :class:`~previewguard.core.pipeline.ConversionPipeline`.  Requires the API
    key (enforced by :class:`~previewguard.api.middleware.auth.ApiKeyMiddleware`).

GET /convert/health
    Service banner with the current timestamp.

GET /convert/{kind}/{filename}
    Serve an artifact written to the local ephemeral store, inline, with the
    content type it was stored with.  ``kind`` is ``original`` or ``preview``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator
from urllib.parse import quote

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.requests import Request

from previewguard import __version__
from previewguard.core.exceptions import PayloadTooLarge
from previewguard.core.pipeline import PipelineRequest, UploadedFile
from previewguard.schemas.convert import ConvertResponse, ErrorResponse, ServiceHealth
from previewguard.services.ephemeral_store import STORE_KINDS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/convert", tags=["convert"])

# Allowance for multipart boundaries and the text fields on top of the file.
_MULTIPART_OVERHEAD_BYTES = 64 * 1024
_CHUNK_SIZE = 1024 * 1024


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorResponse(message=message).to_json_dict(), status_code=status_code)


def _form_text(form, name: str) -> str | None:
    value = form.get(name)
    if value is None or isinstance(value, UploadFile):
        return None
    return value.strip() or None


def _spool(source: BinaryIO, destination: Path, limit: int) -> int:
    """Copy *source* to *destination*, refusing more than *limit* bytes.

    A partially written file is removed before :class:`PayloadTooLarge`
    propagates.
    """
    written = 0
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        with destination.open("wb") as out:
            while chunk := source.read(_CHUNK_SIZE):
                written += len(chunk)
                if written > limit:
                    raise PayloadTooLarge(limit)
                out.write(chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    return written


async def _spool_upload(upload: UploadFile, destination: Path, limit: int) -> int:
    """Spool *upload* to *destination* in a worker thread.

    If the caller is cancelled the copy is allowed to finish and the file is
    removed before the cancellation propagates.
    """
    spooling = asyncio.ensure_future(asyncio.to_thread(_spool, upload.file, destination, limit))
    try:
        return await asyncio.shield(spooling)
    except asyncio.CancelledError:
        with contextlib.suppress(Exception):
            await asyncio.shield(spooling)
        destination.unlink(missing_ok=True)
        raise


def _iter_file(fh: BinaryIO) -> Iterator[bytes]:
    with fh:
        while chunk := fh.read(_CHUNK_SIZE):
            yield chunk


@router.post("", summary="Scan, store and preview an uploaded file")
async def convert(request: Request) -> JSONResponse:
    settings = request.app.state.settings
    pipeline = request.app.state.pipeline
    limit = settings.max_file_size

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit + _MULTIPART_OVERHEAD_BYTES:
        logger.warning("Rejected upload with Content-Length=%s (limit %d)", declared, limit)
        return _error(413, PayloadTooLarge(limit).message)

    async with request.form(max_files=1) as form:
        upload = form.get("file")
        if not isinstance(upload, UploadFile) or not upload.filename:
            return _error(400, "No file uploaded")

        original_url = _form_text(form, "originalUrl")
        preview_url = _form_text(form, "previewUrl")
        if not original_url or not preview_url:
            return _error(400, "Missing presigned URLs (originalUrl, previewUrl)")

        spool_path = Path(settings.upload_dir) / uuid.uuid4().hex
        try:
            size = await _spool_upload(upload, spool_path, limit)
        except PayloadTooLarge as exc:
            logger.warning("Upload %s exceeded %d bytes", upload.filename, limit)
            return _error(exc.status_code, exc.message)

        # Once the run task exists the pipeline owns spool_path.
        try:
            pipeline_request = PipelineRequest(
                file=UploadedFile(
                    path=spool_path,
                    declared_name=upload.filename,
                    declared_size=size,
                    declared_content_type=upload.content_type,
                ),
                original_url=original_url,
                preview_url=preview_url,
                original_sink=_form_text(form, "originalSink"),
                preview_sink=_form_text(form, "previewSink"),
            )
            run = asyncio.ensure_future(pipeline.run(pipeline_request))
        except BaseException:
            spool_path.unlink(missing_ok=True)
            raise

    # The run keeps going (and cleans up) if the client disconnects.
    result = await asyncio.shield(run)
    request.state.run_id = result.run_id
    return JSONResponse(
        ConvertResponse.from_result(result).to_json_dict(),
        status_code=result.http_status,
    )


@router.get("/health", response_model=ServiceHealth)
async def service_health() -> ServiceHealth:
    return ServiceHealth(
        service="previewguard",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/{kind}/{filename}", summary="Serve a locally stored artifact")
async def get_local_artifact(kind: str, filename: str, request: Request) -> StreamingResponse:
    """Return the live ephemeral entry for ``(kind, filename)``.

    Raises:
        :class:`fastapi.HTTPException`: 400 for an unknown *kind*, 404 when the
            entry is absent or expired.
    """
    if kind not in STORE_KINDS:
        raise HTTPException(status_code=400, detail="Invalid type. Must be 'original' or 'preview'")

    entry = request.app.state.store.get(kind, filename)
    if entry is None:
        raise HTTPException(status_code=404, detail="File not found or expired")

    try:
        fh = await asyncio.to_thread(entry.storage_path.open, "rb")
    except FileNotFoundError:
        # Evicted between lookup and read.
        raise HTTPException(status_code=404, detail="File not found or expired")

    logger.info("Serving local %s file: %s", kind, filename)
    # The open handle keeps the bytes readable even if the entry is evicted
    # while streaming.
    return StreamingResponse(
        _iter_file(fh),
        media_type=entry.content_type,
        headers={
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(filename)}",
            "Content-Length": str(os.fstat(fh.fileno()).st_size),
        },
    )
