"""
File and in-memory blob store implementations.
"""

import logging
import os
import re
from pathlib import Path
from threading import RLock
from typing import Optional

from .base import BlobStore

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^0-9A-Za-z._-]+")


def resolve_user_path(path_text: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(str(path_text).strip()))
    return Path(expanded)


class JsonFileBlobStore(BlobStore):
    """
    Stores each key as <data_dir>/<key>.json.

    Writes go through a temp file and an atomic replace.
    """

    def __init__(self, data_dir: Path | str):
        self.data_dir = resolve_user_path(str(data_dir))

    def _path_for(self, key: str) -> Path:
        safe_key = _UNSAFE_KEY_CHARS.sub("_", key.strip()) or "default"
        return self.data_dir / f"{safe_key}.json"

    def describe(self, key: str) -> str:
        return str(self._path_for(key))

    def load(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_bytes().decode("utf-8")

    def save(self, key: str, blob: str) -> bool:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            # surrogateescape restores the original bytes of a quarantined non-UTF-8 blob
            tmp_path.write_bytes(blob.encode("utf-8", errors="surrogateescape"))
            tmp_path.replace(path)
            return True
        except OSError as e:
            logger.error(f"Failed to write blob {path}: {e}")
            return False


class MemoryBlobStore(BlobStore):
    """Dictionary backed store, mostly for tests and dry runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._lock = RLock()
        self._blobs: dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[str]:
        with self._lock:
            return self._blobs.get(key)

    def save(self, key: str, blob: str) -> bool:
        with self._lock:
            self._blobs[key] = blob
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)
