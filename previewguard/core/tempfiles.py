"""Per-run temporary file bookkeeping."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class TempFileSet:
    """Paths created during one pipeline run, removed together by :meth:`cleanup`.

    Registered paths may be files or directories.  Cleanup is idempotent: a
    path that is already gone is skipped, and each path is forgotten once it
    has been handled so a second :meth:`cleanup` does nothing.  OS errors
    during removal are logged, never raised, so cleanup cannot mask the
    outcome of the run.
    """

    def __init__(self) -> None:
        self._paths: list[Path] = []

    def add(self, path: str | Path) -> Path:
        """Register *path* for cleanup and return it as a :class:`Path`."""
        p = Path(path)
        if p not in self._paths:
            self._paths.append(p)
        return p

    def __contains__(self, path: object) -> bool:
        return Path(path) in self._paths  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self):
        return iter(list(self._paths))

    def cleanup(self) -> None:
        """Remove every registered path, most recent first."""
        while self._paths:
            path = self._paths.pop()
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Failed to remove temp path=%s error=%r", path, exc)
            else:
                logger.debug("Removed temp path=%s", path)

    def __enter__(self) -> "TempFileSet":
        return self

    def __exit__(self, *_: object) -> None:
        self.cleanup()
