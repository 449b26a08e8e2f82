"""
core/storage.py

Storage gateway: resolves the shared directory read by both this process and
the host content filter, creating it on first use.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


def stage_text(path: Path, text: str) -> Path:
    """Write *text* to a temporary sibling of *path* and return the temp path."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


def atomic_write_text(path: Path, text: str) -> None:
    """Replace *path* with *text* so readers see either the old or the new file."""
    tmp = stage_text(path, text)
    try:
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class StorageGateway:
    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self) -> Path:
        """Return the shared directory, creating it (with parents) if absent."""
        if self._root.is_dir():
            return self._root
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"Unable to access shared directory {self._root}: {exc}") from exc
        logger.info("Created shared directory: %s", self._root)
        return self._root
