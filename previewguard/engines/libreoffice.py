"""LibreOffice headless document renderer.

Runs ``soffice --headless --convert-to pdf`` on a source file and returns the
path of the generated PDF.  Every invocation gets its own
``-env:UserInstallation`` profile directory so that concurrent conversions do
not fight over the shared LibreOffice profile lock.
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class RenderError(Exception):
    """Raised when the renderer fails to produce a PDF."""


class LibreOfficeRenderer:
    """Convert office documents to PDF with a headless LibreOffice.

    Args:
        binary: ``soffice`` executable name or path.
        timeout: Seconds before the child process is killed.
    """

    def __init__(self, binary: str = "soffice", timeout: float = 120.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def render(self, source: Path, out_dir: Path) -> Path:
        """Render *source* into ``out_dir/<stem>.pdf``.

        *source* must carry its real extension so LibreOffice can pick an
        import filter.  *out_dir* is also used for the throwaway profile.

        Raises:
            RenderError: On a non-zero exit, a timeout, a missing binary, or
                when no PDF appears in *out_dir*.
        """
        profile_dir = out_dir / "profile"
        cmd = [
            self._binary,
            f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
            "--headless",
            "--norestore",
            "--nolockcheck",
            "--convert-to",
            "pdf",
            "--outdir",
            str(out_dir),
            str(source),
        ]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RenderError(f"LibreOffice timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise RenderError(f"LibreOffice could not be started: {exc}") from exc

        if proc.returncode != 0:
            raise RenderError(
                f"LibreOffice exited with status {proc.returncode}: {proc.stderr.strip()}"
            )

        pdf_path = out_dir / f"{source.stem}.pdf"
        if not pdf_path.is_file() or pdf_path.stat().st_size == 0:
            raise RenderError(f"LibreOffice produced no output for {source.name}")

        logger.debug("LibreOffice rendered %s -> %s", source, pdf_path)
        return pdf_path

