"""Converter dispatcher: route an accepted upload to a preview strategy.

:class:`ConverterDispatcher` turns an already-scanned source file into a PDF:

+----------------------------------------+---------------------------------+
| Category                               | Strategy                        |
+========================================+=================================+
| image                                  | Pillow + ReportLab, native size |
+----------------------------------------+---------------------------------+
| document                               | LibreOffice headless            |
+----------------------------------------+---------------------------------+
| video, audio, archive, unsupported     | placeholder PDF                 |
+----------------------------------------+---------------------------------+
| blocked                                | :class:`ConversionRefused`      |
+----------------------------------------+---------------------------------+

Conversion is not a security gate.  A renderer or encoder failure degrades to
a placeholder (``ConversionKind.DEGRADED``) instead of failing the run, so an
original that has already been uploaded is never orphaned by a bad preview.

Image and document conversions hold a slot of an ``asyncio.Semaphore`` sized
to ``conversion_concurrency``; excess runs wait their turn instead of failing.
The CPU work itself runs in a ``ThreadPoolExecutor`` of the same size.

The watchdog (``timeout``) starts only once a slot is held, so it bounds
render time and never queueing time.  Worker threads cannot be interrupted:
when the watchdog fires the dispatcher keeps the slot until the thread
returns, then raises :class:`ConversionTimeout`.  Everything the thread wrote
is therefore on disk before the run's temp files are removed, and the slot
count always matches the number of busy workers.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from previewguard.core.classifier import FileCategory, extension_of
from previewguard.core.exceptions import ConversionRefused, ConversionTimeout
from previewguard.core.pdf import build_image_pdf, build_placeholder_pdf
from previewguard.core.tempfiles import TempFileSet
from previewguard.engines.libreoffice import LibreOfficeRenderer

logger = logging.getLogger(__name__)

_RENDERED_CATEGORIES = frozenset({FileCategory.IMAGE, FileCategory.DOCUMENT})


class ConversionKind(str, Enum):
    """How the preview PDF was produced."""

    RENDERED = "rendered"
    PLACEHOLDER = "placeholder"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of :meth:`ConverterDispatcher.convert`.

    Attributes:
        pdf_path: Location of the generated PDF.  Already registered in the
            run's :class:`~previewguard.core.tempfiles.TempFileSet`.
        kind: Whether the PDF is a real rendering, a placeholder for a
            category without a renderer, or a placeholder substituted after a
            renderer failure.
        reason: Renderer error message for a degraded conversion.
    """

    pdf_path: Path
    kind: ConversionKind
    reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.kind is ConversionKind.DEGRADED


class ConverterDispatcher:
    """Produce a preview PDF for an accepted upload.

    Args:
        work_dir: Directory for generated PDFs and renderer working copies.
        renderer: Office document renderer.  Anything with a
            ``render(source, out_dir) -> Path`` method is accepted.
        concurrency: Maximum simultaneous image/document conversions.
        timeout: Watchdog for the work of one conversion, in seconds.
        executor: Pre-built executor to use (useful for testing/injection).
    """

    def __init__(
        self,
        work_dir: str | Path,
        renderer: LibreOfficeRenderer,
        *,
        concurrency: int = 2,
        timeout: float = 120.0,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._work_dir = Path(work_dir)
        self._renderer = renderer
        self._slots = asyncio.Semaphore(concurrency)
        self._timeout = timeout
        if executor is not None:
            self._executor = executor
            self._owns_executor = False
        else:
            self._executor = ThreadPoolExecutor(
                max_workers=concurrency, thread_name_prefix="convert"
            )
            self._owns_executor = True

    async def convert(
        self,
        source: Path,
        file_name: str,
        size: int,
        category: FileCategory,
        temp_files: TempFileSet,
    ) -> ConversionResult:
        """Convert *source* to a PDF according to *category*.

        Raises:
            ConversionRefused: If *category* is ``blocked``.
            ConversionTimeout: If the work outlives the watchdog.
        """
        if category is FileCategory.BLOCKED:
            raise ConversionRefused(f"File type not allowed: .{extension_of(file_name)}")

        self._work_dir.mkdir(parents=True, exist_ok=True)
        destination = temp_files.add(self._work_dir / f"{uuid.uuid4().hex}.pdf")

        if category not in _RENDERED_CATEGORIES:
            logger.info(
                "Creating placeholder PDF for %s file: %s", category.value, file_name
            )
            await self._in_pool(
                build_placeholder_pdf,
                destination,
                file_name=file_name,
                category=category.value,
                size=size,
            )
            return ConversionResult(pdf_path=destination, kind=ConversionKind.PLACEHOLDER)

        async with self._slots:
            try:
                if category is FileCategory.IMAGE:
                    logger.info("Converting image to PDF: %s", file_name)
                    await self._in_pool(build_image_pdf, source, destination)
                    return ConversionResult(pdf_path=destination, kind=ConversionKind.RENDERED)

                logger.info("Converting document to PDF: %s", file_name)
                rendered = await self._in_pool(
                    self._render_document, source, file_name, temp_files
                )
                return ConversionResult(pdf_path=rendered, kind=ConversionKind.RENDERED)
            except ConversionTimeout:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "%s conversion failed for %s, creating placeholder: %r",
                    category.value.capitalize(),
                    file_name,
                    exc,
                )
                reason = str(exc) or type(exc).__name__

        await self._in_pool(
            build_placeholder_pdf,
            destination,
            file_name=file_name,
            category=f"{category.value} (conversion failed)",
            size=size,
        )
        return ConversionResult(
            pdf_path=destination, kind=ConversionKind.DEGRADED, reason=reason
        )

    def shutdown(self, *, wait: bool = False) -> None:
        """Shut down the thread pool if this dispatcher created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    async def _in_pool(self, fn: Callable, *args, **kwargs):
        """Run *fn* in the pool under the watchdog.

        On timeout or cancellation the worker is awaited before control
        returns, so no file is written after the caller cleans up.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Conversion exceeded %gs, waiting for worker to finish", self._timeout
            )
            await _settle(future)
            raise ConversionTimeout(
                f"Conversion timed out after {self._timeout:g}s"
            ) from None
        except asyncio.CancelledError:
            await _settle(future)
            raise

    def _render_document(
        self, source: Path, file_name: str, temp_files: TempFileSet
    ) -> Path:
        """Copy *source* under its declared extension and render it.

        LibreOffice picks its import filter from the extension, while spooled
        uploads carry random names.
        """
        job_dir = temp_files.add(self._work_dir / f"job-{uuid.uuid4().hex}")
        job_dir.mkdir(parents=True)
        ext = extension_of(file_name)
        working_copy = job_dir / (f"source.{ext}" if ext else "source")
        shutil.copyfile(source, working_copy)
        return self._renderer.render(working_copy, job_dir)


async def _settle(future: asyncio.Future) -> None:
    """Wait for *future* to finish, ignoring its outcome."""
    with contextlib.suppress(Exception):
        await asyncio.shield(future)
