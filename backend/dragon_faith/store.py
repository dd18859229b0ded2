from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from threading import RLock

import httpx

from .config import ENV_API_KEY, ConfigManager, ConfigValidationError, ConfigValidator
from .core.ai_analyzer import AIAnalyzer, create_ai_analyzer, probe_provider
from .core.archive_series import build_series_points
from .core.attachments import AttachmentTray, UploadedFile
from .core.record_merge import autofill_summary, merge_extraction
from .core.sector_persistence import analyze_persistent_sectors
from .core.sentiment_scorer import apply_score, nudge_score, score_record, stage_for_score
from .core.task_slot import AITaskError, SingleFlightSlot, TaskFailed
from .models import (
    AIAutofillResponse,
    AICommentaryResponse,
    AIProviderConfig,
    AIProviderTestResponse,
    AITaskStatus,
    AppConfig,
    AttachmentsResponse,
    CommentaryRequest,
    PersistentSectorsResponse,
    RecordSummary,
    RecordsResponse,
    SaveRecordResponse,
    ScoreResult,
    SentimentRecord,
    SeriesResponse,
    WatchField,
)
from .providers.base import BlobStore
from .providers.file_blob_store import JsonFileBlobStore, resolve_user_path
from .state_manager import RecordStore

logger = logging.getLogger(__name__)

COMMENTARY_FALLBACK = "指挥官请求超时。"
AUTOFILL_FAILED_MESSAGE = "AI 深度解析异常。"


class SessionError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class FaithStore:
    """Review session: one working record, the archive, attachments and the AI slot."""

    def __init__(
        self,
        config_path: str | None = None,
        blob_store: BlobStore | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._lock = RLock()
        self._config_manager = ConfigManager(Path(config_path) if config_path else None)
        self._blob_store_override = blob_store
        self._transport = transport
        config = self._config_manager.get_config()
        self._records = self._open_record_store(config)
        self._working = self._new_record(self._now_date(), config)
        self._tray = AttachmentTray(max_items=config.max_attachments)
        self._slot = SingleFlightSlot(now=self._now_datetime)

    @staticmethod
    def _now_date() -> str:
        return datetime.now().strftime("%Y-%m-%d")

    @staticmethod
    def _now_datetime() -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def _open_record_store(self, config: AppConfig) -> RecordStore:
        blob_store = self._blob_store_override or JsonFileBlobStore(config.data_dir)
        return RecordStore(blob_store=blob_store, storage_key=config.storage_key, strict=config.strict_store_load)

    @staticmethod
    def _new_record(date: str, config: AppConfig) -> SentimentRecord:
        record = SentimentRecord(date=date)
        if config.score_mode == "derived":
            return apply_score(record)
        return record

    # Working record
    def get_working(self) -> SentimentRecord:
        with self._lock:
            return self._working.model_copy(deep=True)

    def set_working(self, record: SentimentRecord) -> SentimentRecord:
        with self._lock:
            self._working = record.model_copy(deep=True)
            return self.get_working()

    def reset_working(self, date: str | None = None) -> SentimentRecord:
        with self._lock:
            self._working = self._new_record(date or self._now_date(), self.get_config())
            return self.get_working()

    def update_watchlist(self, index: int, field: WatchField, value: str) -> SentimentRecord:
        with self._lock:
            if index < 0 or index >= len(self._working.watchlist):
                raise SessionError("WATCHLIST_INDEX_OUT_OF_RANGE", f"备选序号 {index} 不存在")
            watchlist = [item.model_copy() for item in self._working.watchlist]
            watchlist[index] = watchlist[index].model_copy(update={field: value})
            self._working = self._working.model_copy(update={"watchlist": watchlist}, deep=True)
            return self.get_working()

    def adjust_score(self, delta: int) -> SentimentRecord:
        with self._lock:
            self._working = nudge_score(self._working, delta)
            return self.get_working()

    def recompute_score(self) -> SentimentRecord:
        with self._lock:
            self._working = apply_score(self._working)
            return self.get_working()

    # Derived views
    def preview_score(self) -> ScoreResult:
        return score_record(self.get_working())

    def get_persistent_sectors(self) -> PersistentSectorsResponse:
        config = self.get_config()
        working = self.get_working()
        history = self._records.recent(config.persistence_lookback)
        items = analyze_persistent_sectors(
            working,
            history,
            lookback=config.persistence_lookback,
            min_count=config.persistence_min_count,
        )
        return PersistentSectorsResponse(
            items=items,
            lookback=config.persistence_lookback,
            min_count=config.persistence_min_count,
        )

    # Archive
    def save_working(self) -> SaveRecordResponse:
        with self._lock:
            working = self._working
            if self.get_config().score_mode == "derived":
                working = apply_score(working)
            else:
                working = working.model_copy(update={"stage": stage_for_score(working.score, working.yesterday_gain)})
            saved = self._records.save(working)
            self._working = saved.model_copy(deep=True)
            return SaveRecordResponse(
                success=True,
                message=f"{saved.date} 信仰记录已归档。",
                record=saved,
                total=len(self._records),
            )

    def list_records(self) -> RecordsResponse:
        items = self._records.list_records()
        summaries = [
            RecordSummary(
                date=item.date,
                score=item.score,
                stage=item.stage,
                dragon=item.dragon or "无高度标",
                limit_up_total=item.limit_up_total,
                total_volume=item.total_volume,
            )
            for item in items
        ]
        return RecordsResponse(items=items, summaries=summaries, total=len(items))

    def get_record(self, date: str) -> SentimentRecord | None:
        return self._records.get(date)

    def load_record(self, date: str) -> SentimentRecord:
        record = self._records.get(date)
        if record is None:
            raise SessionError("RECORD_NOT_FOUND", f"{date} 暂无信仰记录")
        return self.set_working(record)

    def get_series(self) -> SeriesResponse:
        return SeriesResponse(items=build_series_points(self._records.list_records()))

    def import_records(self, records: list[SentimentRecord]) -> int:
        return self._records.import_records(records)

    # Attachments
    def add_attachments(self, files: list[UploadedFile]) -> AttachmentsResponse:
        self._tray.add(files)
        return self.list_attachments()

    def list_attachments(self) -> AttachmentsResponse:
        return AttachmentsResponse(items=self._tray.describe(), max_items=self._tray.max_items)

    def remove_attachment(self, index: int) -> AttachmentsResponse:
        if not self._tray.remove(index):
            raise SessionError("ATTACHMENT_NOT_FOUND", f"附件序号 {index} 不存在")
        return self.list_attachments()

    # AI
    def _active_ai_provider(self) -> AIProviderConfig | None:
        return self._config_manager.get_active_ai_provider()

    @staticmethod
    def _read_api_key_file(path_text: str) -> str:
        if not path_text.strip():
            return ""
        try:
            return resolve_user_path(path_text).read_text(encoding="utf-8").strip()
        except OSError:
            return ""

    def _resolve_provider_api_key(
        self,
        provider: AIProviderConfig | None,
        *,
        fallback_api_key: str = "",
        fallback_api_key_path: str = "",
    ) -> str:
        config = self.get_config()
        if provider and provider.api_key.strip():
            return provider.api_key.strip()
        if config.api_key.strip():
            return config.api_key.strip()
        if fallback_api_key.strip():
            return fallback_api_key.strip()
        env_key = os.getenv(ENV_API_KEY, "").strip()
        if env_key:
            return env_key
        if provider and provider.api_key_path.strip():
            key = self._read_api_key_file(provider.api_key_path)
            if key:
                return key
        if config.api_key_path.strip():
            key = self._read_api_key_file(config.api_key_path)
            if key:
                return key
        if fallback_api_key_path.strip():
            key = self._read_api_key_file(fallback_api_key_path)
            if key:
                return key
        return ""

    def _analyzer(self) -> AIAnalyzer:
        return create_ai_analyzer(
            provider_getter=self._active_ai_provider,
            api_key_resolver=self._resolve_provider_api_key,
            timeout_sec=float(self.get_config().ai_timeout_sec),
            transport=self._transport,
        )

    def ai_status(self) -> AITaskStatus:
        return AITaskStatus(**self._slot.status())

    def autofill_from_attachments(self) -> AIAutofillResponse:
        """
        Extract market data from the attachment tray and merge it into the working record.

        Raises:
            AITaskError: NO_ATTACHMENTS, AI_TASK_BUSY or AI_AUTOFILL_FAILED
        """
        files = self._tray.snapshot()
        if not files:
            raise AITaskError("NO_ATTACHMENTS", "请先上传数据信源。")
        analyzer = self._analyzer()
        snapshot = self.get_working()
        outcome = self._slot.run(
            "autofill",
            lambda: analyzer.autofill_from_files(snapshot, files),
            message=f"正在深度分析上传的 {len(files)} 个文件并合成市场数据...",
        )
        if isinstance(outcome, TaskFailed):
            raise AITaskError("AI_AUTOFILL_FAILED", f"{AUTOFILL_FAILED_MESSAGE}({outcome.code})")

        with self._lock:
            # Merge into the latest working copy, edits made meanwhile are kept.
            merged, updated = merge_extraction(self._working, outcome.value)
            merged = merged.model_copy(update={"ai_analysis": autofill_summary(len(files))})
            if self.get_config().score_mode == "derived":
                merged = apply_score(merged)
            self._working = merged
            logger.info(f"Autofill merged {len(updated)} field groups from {len(files)} files")
            return AIAutofillResponse(record=self.get_working(), file_count=len(files), updated_fields=updated)

    def generate_commentary(self, request: CommentaryRequest) -> AICommentaryResponse:
        """
        Ask the AI commander for a review of the working record.

        Failures write the fallback text into ai_analysis instead of raising;
        only a busy slot raises.
        """
        analyzer = self._analyzer()
        snapshot = self.get_working()
        persistent = self.get_persistent_sectors()
        outcome = self._slot.run(
            f"commentary:{request.mode}",
            lambda: analyzer.generate_commentary(
                snapshot,
                persistent.items,
                mode=request.mode,
                name=request.name,
                role=request.role,
                lookback=persistent.lookback,
            ),
            message="正在调动 AI 指挥官进行全维度信仰研判...",
        )

        with self._lock:
            if isinstance(outcome, TaskFailed):
                self._working = self._working.model_copy(update={"ai_analysis": COMMENTARY_FALLBACK})
                return AICommentaryResponse(record=self.get_working(), ok=False, error_code=outcome.code)
            result = outcome.value
            update: dict[str, object] = {"ai_analysis": result.text}
            if result.cycle:
                update["ai_cycle"] = result.cycle
            if result.dragon_status:
                update["dragon_status"] = result.dragon_status
            self._working = self._working.model_copy(update=update)
            return AICommentaryResponse(record=self.get_working(), ok=True, error_code=None)

    def get_commentary_prompt_preview(self, request: CommentaryRequest) -> dict[str, object]:
        persistent = self.get_persistent_sectors()
        prompt = AIAnalyzer.build_commentary_prompt(
            self.get_working(),
            persistent.items,
            mode=request.mode,
            name=request.name,
            role=request.role,
            lookback=persistent.lookback,
        )
        return {"mode": request.mode, "prompt": prompt, "persistent_sectors": [item.model_dump() for item in persistent.items]}

    def test_ai_provider(
        self,
        provider: AIProviderConfig,
        *,
        fallback_api_key: str = "",
        fallback_api_key_path: str = "",
        timeout_sec: int = 10,
    ) -> AIProviderTestResponse:
        api_key = self._resolve_provider_api_key(
            provider,
            fallback_api_key=fallback_api_key,
            fallback_api_key_path=fallback_api_key_path,
        )
        return probe_provider(provider, api_key, timeout_sec=timeout_sec, transport=self._transport)

    # Config
    def get_config(self) -> AppConfig:
        return self._config_manager.get_config()

    def set_config(self, payload: AppConfig) -> AppConfig:
        with self._lock:
            previous = self.get_config()
            errors = ConfigValidator.validate_app_config(payload)
            if errors:
                raise ConfigValidationError(errors)
            records = self._records
            if (
                payload.data_dir != previous.data_dir
                or payload.storage_key != previous.storage_key
                or payload.strict_store_load != previous.strict_store_load
            ):
                # The new archive must open before the config naming it is persisted.
                records = self._open_record_store(payload)
            saved = self._config_manager.set_config(payload)
            self._records = records
            self._tray.resize(saved.max_attachments)
            return saved


store = FaithStore()
