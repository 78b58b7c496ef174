from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from docgate.core.config import get_settings
from docgate.core.errors import FileStoreError


logger = logging.getLogger(__name__)


class LocalFileStore:
    """Reads document blobs from a directory tree; paths are relative to ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, relative_path: str) -> Path:
        # Refuse absolute paths and anything that escapes the root via "..".
        candidate = (self.root / relative_path).resolve()
        if Path(relative_path).is_absolute() or not candidate.is_relative_to(self.root):
            raise FileStoreError()
        return candidate

    def _read(self, relative_path: str) -> bytes:
        path = self._resolve(relative_path)
        try:
            return path.read_bytes()
        except OSError as exc:
            # Full detail stays server-side; callers only see an opaque error.
            logger.error("file_store_read_failed path=%s error=%s", path, exc)
            raise FileStoreError() from exc

    async def fetch(self, relative_path: str) -> bytes:
        # File I/O runs off the event loop.
        return await asyncio.to_thread(self._read, relative_path)


def get_file_store() -> LocalFileStore:
    return LocalFileStore(get_settings().file_store_root)
