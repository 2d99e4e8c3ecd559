"""Pydantic schemas for the ``/convert`` HTTP surface.

Responses are serialised with camelCase keys::

    {
      "status": "success",
      "scanResult": "clean",
      "originalUploaded": true,
      "previewGenerated": true,
      "fileCategory": "image",
      "previewKind": "rendered",
      "message": "File processed successfully",
      "processingTime": 412
    }

Fields that do not apply to an outcome (``details`` on success,
``processingTime`` on failure) are omitted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from previewguard.core.pipeline import PipelineResult, RunStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConvertResponse(_CamelModel):
    """Terminal outcome of ``POST /convert``."""

    status: Literal["success", "rejected", "error"]
    scan_result: Literal["clean", "infected", "not_scanned"]
    original_uploaded: bool = False
    preview_generated: bool = False
    file_category: str | None = None
    preview_kind: str | None = None
    details: str | None = None
    message: str
    processing_time: int | None = Field(
        default=None, ge=0, description="Wall-clock run time in milliseconds"
    )

    @classmethod
    def from_result(cls, result: PipelineResult) -> "ConvertResponse":
        success = result.status is RunStatus.SUCCESS
        return cls(
            status=result.status.value,
            scan_result=result.scan_result.value,
            original_uploaded=result.original_uploaded,
            preview_generated=result.preview_generated,
            file_category=result.file_category.value if result.file_category else None,
            preview_kind=result.preview_kind.value if result.preview_kind else None,
            details=result.details,
            message=result.message,
            processing_time=result.processing_time_ms if success else None,
        )


class ErrorResponse(_CamelModel):
    """Failure raised at the transport boundary, before a run exists."""

    status: Literal["error"] = "error"
    scan_result: Literal["not_scanned"] = "not_scanned"
    message: str


class ServiceHealth(BaseModel):
    status: Literal["healthy"] = "healthy"
    service: str
    version: str
    timestamp: datetime
