"""Scan and render engine adapters for PreviewGuard.

Public re-exports for the engines package. Import adapters via this
module to avoid coupling to internal module layout::

    from previewguard.engines import ClamdAdapter, ScanEngine, ScanVerdict
"""

from previewguard.engines.base import ScanEngine, ScanEngineError, ScanVerdict
from previewguard.engines.clamav import ClamdAdapter, ClamdscanAdapter
from previewguard.engines.libreoffice import LibreOfficeRenderer, RenderError

__all__ = [
    "ClamdAdapter",
    "ClamdscanAdapter",
    "LibreOfficeRenderer",
    "RenderError",
    "ScanEngine",
    "ScanEngineError",
    "ScanVerdict",
]
