from __future__ import annotations

import time

from fastapi import FastAPI, File, Path, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.attachments import encode_upload
from .core.task_slot import AITaskError, TaskBusyError
from .config import ConfigValidationError
from .models import (
    AIAutofillResponse,
    AICommentaryResponse,
    AIProviderTestRequest,
    AIProviderTestResponse,
    AITaskStatus,
    ApiErrorPayload,
    AppConfig,
    AttachmentsResponse,
    CommentaryMode,
    CommentaryRequest,
    PersistentSectorsResponse,
    RecordsResponse,
    ResetWorkingRequest,
    SaveRecordResponse,
    ScoreAdjustRequest,
    ScoreResult,
    SentimentRecord,
    SeriesResponse,
    WatchlistUpdateRequest,
)
from .state_manager import RecordStoreError
from .store import SessionError, store

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

app = FastAPI(title="Dragon Faith API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:4173",
        "http://localhost:4173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    payload = ApiErrorPayload(code=code, message=message, trace_id=str(time.time_ns()))
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    detail = exc.errors()[0].get("msg") if exc.errors() else "请求参数不合法"
    return error_response(422, "VALIDATION_ERROR", str(detail))


@app.exception_handler(RecordStoreError)
def handle_record_store_error(_: Request, exc: RecordStoreError) -> JSONResponse:
    return error_response(500, exc.code, exc.message)


@app.exception_handler(SessionError)
def handle_session_error(_: Request, exc: SessionError) -> JSONResponse:
    return error_response(404, exc.code, exc.message)


@app.exception_handler(TaskBusyError)
def handle_task_busy(_: Request, exc: TaskBusyError) -> JSONResponse:
    return error_response(409, exc.code, exc.message)


@app.exception_handler(AITaskError)
def handle_ai_task_error(_: Request, exc: AITaskError) -> JSONResponse:
    status_code = 400 if exc.code == "NO_ATTACHMENTS" else 502
    return error_response(status_code, exc.code, exc.message)


@app.exception_handler(ConfigValidationError)
def handle_config_error(_: Request, exc: ConfigValidationError) -> JSONResponse:
    return error_response(400, exc.code, exc.message)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/working", response_model=SentimentRecord)
def get_working() -> SentimentRecord:
    return store.get_working()


@app.put("/api/working", response_model=SentimentRecord)
def put_working(payload: SentimentRecord) -> SentimentRecord:
    return store.set_working(payload)


@app.post("/api/working/reset", response_model=SentimentRecord)
def reset_working(payload: ResetWorkingRequest | None = None) -> SentimentRecord:
    return store.reset_working(payload.date if payload else None)


@app.patch("/api/working/watchlist/{index}", response_model=SentimentRecord)
def patch_watchlist(payload: WatchlistUpdateRequest, index: int = Path(ge=0)) -> SentimentRecord:
    return store.update_watchlist(index, payload.field, payload.value)


@app.post("/api/working/score/adjust", response_model=SentimentRecord)
def adjust_score(payload: ScoreAdjustRequest) -> SentimentRecord:
    return store.adjust_score(payload.delta)


@app.post("/api/working/score/recompute", response_model=SentimentRecord)
def recompute_score() -> SentimentRecord:
    return store.recompute_score()


@app.get("/api/analysis/persistent-sectors", response_model=PersistentSectorsResponse)
def get_persistent_sectors() -> PersistentSectorsResponse:
    return store.get_persistent_sectors()


@app.get("/api/analysis/score", response_model=ScoreResult)
def get_score_preview() -> ScoreResult:
    return store.preview_score()


@app.post("/api/records/save", response_model=SaveRecordResponse)
def save_record() -> SaveRecordResponse:
    return store.save_working()


@app.get("/api/records", response_model=RecordsResponse)
def get_records() -> RecordsResponse:
    return store.list_records()


@app.get("/api/records/series", response_model=SeriesResponse)
def get_records_series() -> SeriesResponse:
    return store.get_series()


@app.get("/api/records/{date}", response_model=SentimentRecord)
def get_record(date: str = Path(pattern=DATE_PATTERN)) -> SentimentRecord | JSONResponse:
    record = store.get_record(date)
    if record is None:
        return error_response(404, "RECORD_NOT_FOUND", f"{date} 暂无信仰记录")
    return record


@app.post("/api/records/{date}/load", response_model=SentimentRecord)
def load_record(date: str = Path(pattern=DATE_PATTERN)) -> SentimentRecord:
    return store.load_record(date)


@app.get("/api/attachments", response_model=AttachmentsResponse)
def get_attachments() -> AttachmentsResponse:
    return store.list_attachments()


@app.post("/api/attachments", response_model=AttachmentsResponse)
def upload_attachments(files: list[UploadFile] = File(...)) -> AttachmentsResponse:
    encoded = [encode_upload(item.filename or "upload", item.file.read(), item.content_type) for item in files]
    return store.add_attachments(encoded)


@app.delete("/api/attachments/{index}", response_model=AttachmentsResponse)
def delete_attachment(index: int = Path(ge=0)) -> AttachmentsResponse:
    return store.remove_attachment(index)


@app.post("/api/ai/autofill", response_model=AIAutofillResponse)
def run_autofill() -> AIAutofillResponse:
    return store.autofill_from_attachments()


@app.post("/api/ai/commentary", response_model=AICommentaryResponse)
def run_commentary(payload: CommentaryRequest | None = None) -> AICommentaryResponse:
    return store.generate_commentary(payload or CommentaryRequest())


@app.get("/api/ai/status", response_model=AITaskStatus)
def get_ai_status() -> AITaskStatus:
    return store.ai_status()


@app.get("/api/ai/prompt-preview")
def get_ai_prompt_preview(
    mode: CommentaryMode = Query(default="full"),
    name: str = Query(default=""),
    role: str = Query(default=""),
) -> dict[str, object]:
    return store.get_commentary_prompt_preview(CommentaryRequest(mode=mode, name=name, role=role))


@app.post("/api/ai/providers/test", response_model=AIProviderTestResponse)
def test_ai_provider(payload: AIProviderTestRequest) -> AIProviderTestResponse:
    return store.test_ai_provider(
        payload.provider,
        fallback_api_key=payload.fallback_api_key,
        fallback_api_key_path=payload.fallback_api_key_path,
        timeout_sec=payload.timeout_sec,
    )


@app.get("/api/config", response_model=AppConfig)
def get_config() -> AppConfig:
    return store.get_config()


@app.put("/api/config", response_model=AppConfig)
def update_config(payload: AppConfig) -> AppConfig:
    return store.set_config(payload)
