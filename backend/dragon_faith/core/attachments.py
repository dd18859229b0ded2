from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from threading import RLock

from ..models import AttachmentInfo

DEFAULT_MAX_ATTACHMENTS = 10


@dataclass(frozen=True, slots=True)
class UploadedFile:
    name: str
    mime_type: str
    data: str  # base64, no data-URI prefix
    size: int

    @property
    def previewable(self) -> bool:
        return self.mime_type.startswith("image/")

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def decoded_text(self) -> str:
        return base64.b64decode(self.data).decode("utf-8", errors="replace")


def guess_mime_type(name: str, declared: str | None = None) -> str:
    value = (declared or "").strip().lower()
    if value and value != "application/octet-stream":
        return value
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


def encode_upload(name: str, content: bytes, mime_type: str | None = None) -> UploadedFile:
    return UploadedFile(
        name=name or "upload",
        mime_type=guess_mime_type(name, mime_type),
        data=base64.b64encode(content).decode("ascii"),
        size=len(content),
    )


class AttachmentTray:
    """Files queued for the next autofill call; oldest are evicted past max_items."""

    def __init__(self, max_items: int = DEFAULT_MAX_ATTACHMENTS) -> None:
        self._lock = RLock()
        self._items: list[UploadedFile] = []
        self.max_items = max_items

    def add(self, files: list[UploadedFile]) -> list[UploadedFile]:
        with self._lock:
            self._items = [*self._items, *files][-self.max_items :]
            return list(self._items)

    def resize(self, max_items: int) -> None:
        """Apply a new limit, evicting the oldest files that no longer fit."""
        with self._lock:
            self.max_items = max_items
            self._items = self._items[-max_items:] if max_items > 0 else []

    def remove(self, index: int) -> bool:
        with self._lock:
            if index < 0 or index >= len(self._items):
                return False
            del self._items[index]
            return True

    def clear(self) -> None:
        with self._lock:
            self._items = []

    def snapshot(self) -> list[UploadedFile]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def describe(self) -> list[AttachmentInfo]:
        with self._lock:
            return [
                AttachmentInfo(
                    index=i,
                    name=item.name,
                    mime_type=item.mime_type,
                    size=item.size,
                    previewable=item.previewable,
                )
                for i, item in enumerate(self._items)
            ]
