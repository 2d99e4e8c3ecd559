"""Extension-based file category classification.

:func:`classify` maps a declared filename to a :class:`FileCategory` using a
static partition of known extensions.  It is pure and total: every input,
including an empty string, yields exactly one category.

``blocked`` is checked before every other set, so an extension that ends up in
two sets by mistake is still refused.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath


class FileCategory(str, Enum):
    """Category of an uploaded file, derived from its extension."""

    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"
    ARCHIVE = "archive"
    BLOCKED = "blocked"
    UNSUPPORTED = "unsupported"


# Checked in this order; BLOCKED must stay first.
_EXTENSIONS: tuple[tuple[FileCategory, frozenset[str]], ...] = (
    (
        FileCategory.BLOCKED,
        frozenset({
            "exe", "dll", "bat", "cmd", "com", "scr", "pif",
            "vbs", "js", "jar", "app", "deb", "rpm", "msi",
            "sh", "bash", "ps1",
        }),
    ),
    (
        FileCategory.IMAGE,
        frozenset({
            "jpg", "jpeg", "png", "webp", "gif", "tiff", "tif",
            "avif", "heic", "heif", "svg",
        }),
    ),
    (
        FileCategory.DOCUMENT,
        frozenset({
            "doc", "docx", "odt", "rtf", "txt",
            "xls", "xlsx", "ods", "csv",
            "ppt", "pptx", "odp",
        }),
    ),
    (
        FileCategory.VIDEO,
        frozenset({"mp4", "avi", "mov", "mkv", "webm", "flv", "wmv", "m4v"}),
    ),
    (
        FileCategory.AUDIO,
        frozenset({"mp3", "wav", "ogg", "flac", "m4a", "aac", "wma"}),
    ),
    (
        FileCategory.ARCHIVE,
        frozenset({"zip", "rar", "7z", "tar", "gz", "bz2"}),
    ),
)


def extension_of(filename: str) -> str:
    """Return the lower-cased extension of *filename* without the dot.

    Only the final path component is considered.  Returns ``""`` when there is
    no extension (``"README"``, ``"archive."``, ``".bashrc"``).
    """
    name = PurePosixPath(filename.replace("\\", "/")).name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem or not ext:
        return ""
    return ext.lower()


def classify(filename: str) -> FileCategory:
    """Return the :class:`FileCategory` for *filename*."""
    ext = extension_of(filename)
    if not ext:
        return FileCategory.UNSUPPORTED
    for category, extensions in _EXTENSIONS:
        if ext in extensions:
            return category
    return FileCategory.UNSUPPORTED
