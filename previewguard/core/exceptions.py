"""Exception taxonomy for the conversion pipeline.

Each exception carries the HTTP status the transport layer should answer with.
Validation and security rejections are raised where they are detected and
short-circuit the run; infrastructure errors propagate to the orchestrator,
which cleans up before the response is built.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error that terminates a pipeline run."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PipelineValidationError(PipelineError):
    """The request is malformed or names a disallowed file type or sink."""

    status_code = 400


class BlockedFileType(PipelineValidationError):
    """The declared file name has an extension that is never accepted."""


class SecurityRejection(PipelineError):
    """The scan engine detected malware in the upload."""

    status_code = 403

    def __init__(self, message: str, *, signature: str) -> None:
        super().__init__(message)
        self.signature = signature


class InfrastructureError(PipelineError):
    """A delegated operation (scan, upload, conversion) could not complete."""

    status_code = 500


class PayloadTooLarge(PipelineError):
    """The upload exceeds the configured size limit.

    Raised by the transport boundary before a run is created.
    """

    status_code = 413

    def __init__(self, limit: int) -> None:
        super().__init__(f"File too large. Maximum size: {limit} bytes")
        self.limit = limit


class ScanError(InfrastructureError):
    """The scan could not be completed (timeout, engine down, bad output).

    Never equivalent to *clean* and never equivalent to *infected*.
    """


class UploadError(InfrastructureError):
    """A sink rejected or failed to store an artifact."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = status_code


class ConversionTimeout(InfrastructureError):
    """The conversion watchdog expired."""


class ConversionRefused(PipelineValidationError):
    """The converter was handed a category it must never process."""
