"""Raster object storage."""
import asyncio
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class RasterStore(Protocol):
    async def download(self, path: str) -> bytes: ...

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str: ...


def doodle_path(uid: str, date_key: str) -> str:
    return f"doodles/{uid}/{date_key}.png"


class LocalRasterStore:
    """Stores objects as files under a root directory.

    Object paths are relative, slash-separated keys; anything resolving outside
    the root is rejected.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        if not path or path.startswith("/"):
            raise StorageError(f"Invalid storage path: {path!r}")
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise StorageError(f"Storage path escapes root: {path!r}")
        return full

    async def download(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except FileNotFoundError:
            raise StorageError(f"No object at {path}") from None
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        full = self._resolve(path)

        def _write():
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {path}")
        return path
