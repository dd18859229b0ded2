"""
Record store for daily sentiment records.

Keeps the archive ordered by date descending with exactly one record per
date, and persists it as a single JSON array through a BlobStore.
"""

import json
import logging
from datetime import datetime
from threading import RLock
from typing import Any

from pydantic import ValidationError

from .models import SentimentRecord
from .providers.base import BlobStore
from .providers.file_blob_store import JsonFileBlobStore, MemoryBlobStore

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "dragon_faith_system_v27_5"


class RecordStoreError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RecordStore:
    """
    Date-keyed archive of SentimentRecord.

    Provides thread-safe access; every save rewrites the whole blob.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        storage_key: str = DEFAULT_STORAGE_KEY,
        strict: bool = False,
    ):
        """
        Initialize record store and load the persisted archive.

        Args:
            blob_store: Key/value backend holding the archive blob
            storage_key: Key the archive lives under
            strict: Raise on an unreadable blob instead of quarantining it
        """
        self.blob_store = blob_store
        self.storage_key = storage_key
        self.strict = strict
        self._lock = RLock()
        self._records: list[SentimentRecord] = []
        self.reload()

    # Queries
    def list_records(self) -> list[SentimentRecord]:
        """All records, date descending."""
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records]

    def recent(self, count: int) -> list[SentimentRecord]:
        """The count most recently dated records."""
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records[: max(0, count)]]

    def get(self, date: str) -> SentimentRecord | None:
        with self._lock:
            for record in self._records:
                if record.date == date:
                    return record.model_copy(deep=True)
            return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # Mutation
    def save(self, record: SentimentRecord) -> SentimentRecord:
        """
        Insert record, replacing any stored record with the same date.

        Raises:
            RecordStoreError: the blob store refused the write; the
                in-memory archive is left unchanged.
        """
        stored = record.model_copy(deep=True)
        with self._lock:
            updated = [stored, *(item for item in self._records if item.date != stored.date)]
            updated.sort(key=lambda item: item.date, reverse=True)
            self._persist(updated)
            self._records = updated
            logger.info(f"Saved record {stored.date} ({len(updated)} records in {self.storage_key})")
            return stored.model_copy(deep=True)

    def import_records(self, records: list[SentimentRecord]) -> int:
        """Merge many records at once; later entries win on equal dates."""
        with self._lock:
            by_date = {item.date: item for item in self._records}
            for record in records:
                by_date[record.date] = record.model_copy(deep=True)
            updated = sorted(by_date.values(), key=lambda item: item.date, reverse=True)
            self._persist(updated)
            self._records = updated
            return len(records)

    # Persistence
    def reload(self) -> None:
        """Load the archive blob, applying the corrupted-blob policy."""
        with self._lock:
            try:
                raw = self.blob_store.load(self.storage_key)
            except UnicodeDecodeError as e:
                self._handle_corrupted(bytes(e.object).decode("utf-8", errors="surrogateescape"), e)
                self._records = []
                return
            except OSError as e:
                raise RecordStoreError("STORE_READ_FAILED", f"无法读取档案: {e}") from e
            if raw is None or not raw.strip():
                self._records = []
                return
            try:
                payload = json.loads(raw)
                if not isinstance(payload, list):
                    raise ValueError("archive blob is not a JSON array")
            except ValueError as e:
                self._handle_corrupted(raw, e)
                self._records = []
                return
            self._records = self._restore_records(payload)
            logger.info(f"Loaded {len(self._records)} records from {self.blob_store.describe(self.storage_key)}")

    def _restore_records(self, payload: list[Any]) -> list[SentimentRecord]:
        by_date: dict[str, SentimentRecord] = {}
        for index, item in enumerate(payload):
            if not isinstance(item, dict):
                logger.warning(f"Skipping archive entry {index}: not an object")
                continue
            try:
                record = SentimentRecord.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping archive entry {index}: {e.error_count()} invalid fields")
                continue
            # First occurrence wins, matching the descending order it was written in.
            by_date.setdefault(record.date, record)
        return sorted(by_date.values(), key=lambda item: item.date, reverse=True)

    def _handle_corrupted(self, raw: str, error: Exception) -> None:
        if self.strict:
            raise RecordStoreError("STORE_CORRUPTED", f"档案数据损坏: {error}")
        quarantine_key = f"{self.storage_key}.corrupt-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        saved = self.blob_store.save(quarantine_key, raw)
        logger.error(
            f"Archive {self.storage_key} is unreadable ({error}); "
            f"{'moved to ' + quarantine_key if saved else 'backup failed'}, starting empty"
        )

    def _persist(self, records: list[SentimentRecord]) -> None:
        blob = json.dumps(
            [item.model_dump(mode="json") for item in records],
            ensure_ascii=False,
            indent=2,
        )
        if not self.blob_store.save(self.storage_key, blob):
            raise RecordStoreError("STORE_WRITE_FAILED", "档案写入失败")


def create_record_store(
    data_dir: str | None = None,
    storage_key: str = DEFAULT_STORAGE_KEY,
    strict: bool = False,
) -> RecordStore:
    """
    Factory function to create RecordStore.

    Args:
        data_dir: Directory for archive files; None keeps everything in memory
        storage_key: Archive key
        strict: Fail loudly on a corrupted archive

    Returns:
        RecordStore instance
    """
    blob_store: BlobStore = JsonFileBlobStore(data_dir) if data_dir else MemoryBlobStore()
    return RecordStore(blob_store=blob_store, storage_key=storage_key, strict=strict)
