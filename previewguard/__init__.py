"""PreviewGuard: scan-first upload conversion service."""

__version__ = "1.0.0"
