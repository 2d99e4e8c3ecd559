"""ConversionPipeline: the scan-first state machine for one upload.

:class:`ConversionPipeline` sequences the stages of a single run::

    RECEIVED -> CLASSIFIED -> SCANNED -> ORIGINAL_UPLOADED
             -> CONVERTED -> PREVIEW_UPLOADED -> DONE

with two absorbing states:

* ``REJECTED``: blocked file type (400) or malware detected (403);
* ``FAILED``: missing fields (400) or any delegated operation erroring
  (scan engine, upload, conversion watchdog, unexpected exception: 500).

**Scan-first contract**: nothing is written to a sink before the scan engine
has returned a clean verdict.  A scan that cannot complete is a failure, never
a pass.

**Cleanup contract**: every path created during the run is registered in a
:class:`~previewguard.core.tempfiles.TempFileSet` that is emptied in a
``finally`` block, so the uploaded file and any generated PDF are removed on
every exit branch, including cancellation.

Each stage is wrapped in a named OpenTelemetry span under a root
``previewguard.convert`` span.

Usage::

    pipeline = ConversionPipeline(
        scan_client=ScanClient(ClamdAdapter()),
        converter=ConverterDispatcher("/tmp/libreoffice", LibreOfficeRenderer()),
        sinks=SinkRouter(RemoteSink(), LocalEphemeralSink(store)),
    )
    result = await pipeline.run(PipelineRequest(file=uploaded, ...))
    print(result.http_status, result.scan_result)
"""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter

from previewguard.core.classifier import FileCategory, classify, extension_of
from previewguard.core.converter import ConversionKind, ConverterDispatcher
from previewguard.core.exceptions import (
    BlockedFileType,
    InfrastructureError,
    PipelineError,
    PipelineValidationError,
    SecurityRejection,
)
from previewguard.core.scan_client import ScanClient
from previewguard.core.sinks import SinkDestination, SinkRouter, parse_destination
from previewguard.core.tempfiles import TempFileSet

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "previewguard.pipeline",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

#: Labels: ``status`` ("success" | "rejected" | "error") and ``category``.
pipeline_runs_total = Counter(
    "previewguard_pipeline_runs_total",
    "Total number of pipeline runs by terminal status and file category",
    ["status", "category"],
)

_PDF_CONTENT_TYPE = "application/pdf"

# Renderer errors stay in the server log.
_DEGRADED_DETAIL = "Preview could not be rendered; a placeholder was generated"


class PipelineState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    SCANNED = "scanned"
    ORIGINAL_UPLOADED = "original_uploaded"
    CONVERTED = "converted"
    PREVIEW_UPLOADED = "preview_uploaded"
    DONE = "done"
    REJECTED = "rejected"
    FAILED = "failed"


class ScanResultStatus(str, Enum):
    """Scan result reported on every terminal response."""

    CLEAN = "clean"
    INFECTED = "infected"
    NOT_SCANNED = "not_scanned"


class RunStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class UploadedFile:
    """A fully received upload, spooled to a path owned by one run."""

    path: Path
    declared_name: str
    declared_size: int
    declared_content_type: str | None = None


@dataclass(frozen=True)
class PipelineRequest:
    """Logical inbound request.

    Attributes:
        file: The received upload, or ``None`` when the payload was missing.
        original_url: Destination for the original file.
        preview_url: Destination for the preview PDF.
        original_sink: Explicit sink kind for *original_url*
            (``"remote"`` / ``"local"``); inferred from the prefix when ``None``.
        preview_sink: Explicit sink kind for *preview_url*.
    """

    file: UploadedFile | None
    original_url: str | None
    preview_url: str | None
    original_sink: str | None = None
    preview_sink: str | None = None


@dataclass
class PipelineResult:
    """Terminal outcome of a run, ready to be rendered by the transport."""

    run_id: str
    status: RunStatus
    state: PipelineState
    http_status: int
    message: str
    scan_result: ScanResultStatus = ScanResultStatus.NOT_SCANNED
    original_uploaded: bool = False
    preview_generated: bool = False
    file_category: FileCategory | None = None
    preview_kind: ConversionKind | None = None
    details: str | None = None
    processing_time_ms: int = 0


@dataclass
class _Run:
    """Mutable bookkeeping for one run."""

    run_id: str
    started: float
    temp_files: TempFileSet = field(default_factory=TempFileSet)
    state: PipelineState = PipelineState.RECEIVED
    category: FileCategory | None = None
    scan_result: ScanResultStatus = ScanResultStatus.NOT_SCANNED
    original_uploaded: bool = False
    preview_generated: bool = False
    preview_kind: ConversionKind | None = None

    def transition(self, new_state: PipelineState) -> None:
        logger.debug("run_id=%s state %s -> %s", self.run_id, self.state.value, new_state.value)
        self.state = new_state

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class ConversionPipeline:
    """Scan-first conversion pipeline for a single upload per :meth:`run`.

    All collaborators are injected so tests can replace the scan engine,
    renderer and sinks without touching ClamAV, LibreOffice or the network.

    Args:
        scan_client: Timed, tri-state scan client.
        converter: Converter dispatcher producing the preview PDF.
        sinks: Router writing to the remote or local sink.
        local_prefix: Destination prefix inferred as a local sink.
        allow_local: Accept local destinations.
    """

    def __init__(
        self,
        *,
        scan_client: ScanClient,
        converter: ConverterDispatcher,
        sinks: SinkRouter,
        local_prefix: str = "/convert/",
        allow_local: bool = True,
    ) -> None:
        self._scan_client = scan_client
        self._converter = converter
        self._sinks = sinks
        self._local_prefix = local_prefix
        self._allow_local = allow_local

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """Run the pipeline for *request* and return its terminal result.

        Never raises for pipeline-level failures: every outcome, including
        unexpected exceptions, is reported through :class:`PipelineResult`.
        Temp files are removed before this method returns.
        """
        run = _Run(run_id=uuid.uuid4().hex, started=time.monotonic())

        with tracer.start_as_current_span("previewguard.convert") as root_span:
            root_span.set_attribute("run.id", run.run_id)
            try:
                result = await self._execute(request, run, root_span)
            except PipelineError as exc:
                result = self._terminal_failure(run, exc)
                root_span.record_exception(exc)
                root_span.set_status(Status(StatusCode.ERROR, exc.message))
            except Exception as exc:  # noqa: BLE001
                logger.exception("Error processing file run_id=%s", run.run_id)
                result = self._terminal_failure(run, InfrastructureError(str(exc) or type(exc).__name__))
                root_span.record_exception(exc)
                root_span.set_status(Status(StatusCode.ERROR, str(exc)))
            finally:
                run.temp_files.cleanup()

            root_span.set_attribute("run.state", result.state.value)
            root_span.set_attribute("run.http_status", result.http_status)
            root_span.set_attribute("run.scan_result", result.scan_result.value)

        pipeline_runs_total.labels(
            status=result.status.value,
            category=result.file_category.value if result.file_category else "none",
        ).inc()
        log = logger.info if result.status is RunStatus.SUCCESS else logger.warning
        log(
            "Pipeline finished run_id=%s state=%s http_status=%d scan_result=%s "
            "category=%s duration_ms=%d",
            run.run_id,
            result.state.value,
            result.http_status,
            result.scan_result.value,
            result.file_category.value if result.file_category else None,
            result.processing_time_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _execute(
        self, request: PipelineRequest, run: _Run, root_span: trace.Span
    ) -> PipelineResult:
        uploaded = request.file
        if uploaded is None:
            raise PipelineValidationError("No file uploaded")
        run.temp_files.add(uploaded.path)

        if not request.original_url or not request.preview_url:
            raise PipelineValidationError(
                "Missing presigned URLs (originalUrl, previewUrl)"
            )
        original_dest = self._destination(request.original_url, "original", request.original_sink)
        preview_dest = self._destination(request.preview_url, "preview", request.preview_sink)

        root_span.set_attribute("file.size_bytes", uploaded.declared_size)
        logger.info(
            "Processing file: %s (%d bytes) run_id=%s",
            uploaded.declared_name,
            uploaded.declared_size,
            run.run_id,
        )

        with self._stage("classify", run):
            run.category = classify(uploaded.declared_name)
            root_span.set_attribute("file.category", run.category.value)
            if run.category is FileCategory.BLOCKED:
                raise BlockedFileType(
                    f"File type not allowed: .{extension_of(uploaded.declared_name)}"
                )
            run.transition(PipelineState.CLASSIFIED)

        with self._stage("scan", run):
            outcome = await self._scan_client.scan(uploaded.path)
            if not outcome.clean:
                run.scan_result = ScanResultStatus.INFECTED
                logger.error("MALWARE DETECTED - File rejected run_id=%s", run.run_id)
                raise SecurityRejection(
                    "File rejected due to malware detection", signature=outcome.detail
                )
            run.scan_result = ScanResultStatus.CLEAN
            run.transition(PipelineState.SCANNED)

        with self._stage("upload_original", run):
            await self._sinks.upload(
                original_dest, uploaded.path, uploaded.declared_content_type
            )
            run.original_uploaded = True
            run.transition(PipelineState.ORIGINAL_UPLOADED)

        with self._stage("convert", run):
            try:
                conversion = await self._converter.convert(
                    uploaded.path,
                    uploaded.declared_name,
                    uploaded.declared_size,
                    run.category,
                    run.temp_files,
                )
            except PipelineError:
                raise
            except Exception as exc:
                raise InfrastructureError(f"Conversion failed: {exc}") from exc
            run.temp_files.add(conversion.pdf_path)
            run.preview_kind = conversion.kind
            run.transition(PipelineState.CONVERTED)

        with self._stage("upload_preview", run):
            await self._sinks.upload(preview_dest, conversion.pdf_path, _PDF_CONTENT_TYPE)
            run.preview_generated = True
            run.transition(PipelineState.PREVIEW_UPLOADED)

        run.transition(PipelineState.DONE)
        return PipelineResult(
            run_id=run.run_id,
            status=RunStatus.SUCCESS,
            state=run.state,
            http_status=200,
            message="File processed successfully",
            scan_result=run.scan_result,
            original_uploaded=True,
            preview_generated=True,
            file_category=run.category,
            preview_kind=run.preview_kind,
            details=_DEGRADED_DETAIL if conversion.degraded else None,
            processing_time_ms=run.elapsed_ms(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _destination(self, value: str, role: str, sink: str | None) -> SinkDestination:
        return parse_destination(
            value,
            role=role,
            sink=sink,
            local_prefix=self._local_prefix,
            allow_local=self._allow_local,
        )

    @contextlib.contextmanager
    def _stage(self, name: str, run: _Run) -> Iterator[trace.Span]:
        """Open a ``previewguard.<name>`` span and record failures on it."""
        with tracer.start_as_current_span(f"previewguard.{name}") as span:
            span.set_attribute("run.id", run.run_id)
            start = time.monotonic()
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                span.set_attribute("step.error", type(exc).__name__)
                raise
            finally:
                span.set_attribute("step.duration_ms", int((time.monotonic() - start) * 1000))

    @staticmethod
    def _terminal_failure(run: _Run, exc: PipelineError) -> PipelineResult:
        rejected = isinstance(exc, (BlockedFileType, SecurityRejection))
        run.transition(PipelineState.REJECTED if rejected else PipelineState.FAILED)
        details = exc.signature if isinstance(exc, SecurityRejection) else None
        return PipelineResult(
            run_id=run.run_id,
            status=RunStatus.REJECTED if rejected else RunStatus.ERROR,
            state=run.state,
            http_status=exc.status_code,
            message=exc.message,
            scan_result=run.scan_result,
            original_uploaded=run.original_uploaded,
            preview_generated=run.preview_generated,
            file_category=run.category,
            preview_kind=run.preview_kind,
            details=details,
            processing_time_ms=run.elapsed_ms(),
        )
