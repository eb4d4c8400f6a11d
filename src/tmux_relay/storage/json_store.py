"""Whole-file JSON persistence with atomic replace."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonFileStore:
    """Read and rewrite a single JSON document.

    Reads never raise: a missing, unreadable or malformed file yields the
    provided default. Writes go through a temporary file in the same
    directory followed by ``os.replace`` so readers never observe a partial
    document. There is no cross-process locking.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, default: Any) -> Any:
        if not self._path.exists():
            return default
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error(
                "Failed to load JSON document",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return default
        if not isinstance(document, type(default)):
            logger.error(
                "Unexpected JSON document shape",
                extra={"path": str(self._path), "expected": type(default).__name__},
            )
            return default
        return document

    def save(self, document: Any) -> bool:
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(tmp_name, self._path)
            tmp_name = None
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.error(
                "Failed to save JSON document",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


__all__ = ["JsonFileStore"]
