from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.config import ENV_API_KEY, ENV_DATA_DIR, ENV_STORAGE_KEY
from dragon_faith.core.attachments import encode_upload
from dragon_faith.core.task_slot import AITaskError
from dragon_faith.models import CommentaryRequest, SectorTrack, SentimentRecord
from dragon_faith.state_manager import RecordStoreError
from dragon_faith.store import COMMENTARY_FALLBACK, FaithStore, SessionError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (ENV_DATA_DIR, ENV_STORAGE_KEY, ENV_API_KEY):
        monkeypatch.delenv(name, raising=False)


def _make_store(tmp_path: Path, transport: httpx.BaseTransport | None = None) -> FaithStore:
    store = FaithStore(config_path=str(tmp_path / "config.json"), transport=transport)
    cfg = store.get_config()
    store.set_config(cfg.model_copy(update={"data_dir": str(tmp_path / "data"), "api_key": "sk-test"}))
    return store


def _reply(content: str) -> httpx.MockTransport:
    return httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": content}}]})
    )


def test_store_persists_config_and_records(tmp_path: Path) -> None:
    store_a = _make_store(tmp_path)
    store_a.set_config(store_a.get_config().model_copy(update={"score_mode": "manual", "ai_provider": "deepseek"}))
    store_a.reset_working("2026-03-09")
    working = store_a.get_working().model_copy(update={"dragon": "龙一", "score": 77})
    store_a.set_working(working)
    saved = store_a.save_working()
    assert saved.success is True
    assert saved.message == "2026-03-09 信仰记录已归档。"
    assert saved.record.stage == "发酵/加速"
    assert (tmp_path / "data" / "dragon_faith_system_v27_5.json").exists()

    store_b = FaithStore(config_path=str(tmp_path / "config.json"))
    assert store_b.get_config().score_mode == "manual"
    assert store_b.get_config().ai_provider == "deepseek"
    records = store_b.list_records()
    assert records.total == 1
    assert records.summaries[0].dragon == "龙一"
    assert records.summaries[0].score == 77


def test_failed_archive_switch_keeps_previous_config(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    good_dir = store.get_config().data_dir
    bad_dir = tmp_path / "bad"
    bad_dir.mkdir()
    (bad_dir / "dragon_faith_system_v27_5.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(RecordStoreError) as exc_info:
        store.set_config(store.get_config().model_copy(update={"data_dir": str(bad_dir), "strict_store_load": True}))
    assert exc_info.value.code == "STORE_CORRUPTED"
    assert store.get_config().data_dir == good_dir
    assert store.get_config().strict_store_load is False

    store.reset_working("2026-03-09")
    assert store.save_working().success is True
    assert (tmp_path / "data" / "dragon_faith_system_v27_5.json").exists()

    restarted = FaithStore(config_path=str(tmp_path / "config.json"))
    assert restarted.get_config().data_dir == good_dir
    assert restarted.list_records().total == 1


def test_lowering_max_attachments_trims_tray(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.add_attachments([encode_upload(f"shot-{i}.png", b"img") for i in range(5)])
    store.set_config(store.get_config().model_copy(update={"max_attachments": 2}))
    listing = store.list_attachments()
    assert listing.max_items == 2
    assert [item.name for item in listing.items] == ["shot-3.png", "shot-4.png"]


def test_derived_mode_scores_on_save(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.reset_working("2026-03-10")
    store.set_working(store.get_working().model_copy(update={"trend": "v_reversal", "limit_up_total": 90, "score": 5}))
    saved = store.save_working()
    assert saved.record.score == 80
    assert saved.record.stage == "主升/狂热"


def test_same_day_save_keeps_archive_size(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.reset_working("2026-03-09")
    store.save_working()
    store.set_working(store.get_working().model_copy(update={"dragon": "新龙"}))
    result = store.save_working()
    assert result.total == 1
    assert store.get_record("2026-03-09").dragon == "新龙"


def test_load_record_copies_into_working(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.reset_working("2026-03-05")
    store.set_working(store.get_working().model_copy(update={"reflection": "守纪律"}))
    store.save_working()
    store.reset_working("2026-03-09")

    loaded = store.load_record("2026-03-05")
    assert loaded.reflection == "守纪律"
    assert store.get_working().date == "2026-03-05"
    with pytest.raises(SessionError) as exc_info:
        store.load_record("2020-01-01")
    assert exc_info.value.code == "RECORD_NOT_FOUND"


def test_persistent_sectors_use_config_window(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    for date in ("2026-03-05", "2026-03-06"):
        store.reset_working(date)
        store.set_working(store.get_working().model_copy(update={"top_sectors": [SectorTrack(name="AI")]}))
        store.save_working()
    store.reset_working("2026-03-09")
    store.set_working(store.get_working().model_copy(update={"top_sectors": [SectorTrack(name="AI")]}))
    result = store.get_persistent_sectors()
    assert result.lookback == 5
    assert [(item.name, item.count) for item in result.items] == [("AI", 3)]


def test_watchlist_and_score_nudges(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    store.reset_working("2026-03-09")
    updated = store.update_watchlist(8, "plan", "低吸")
    assert updated.watchlist[8].plan == "低吸"
    with pytest.raises(SessionError):
        store.update_watchlist(9, "name", "越界")
    start = store.get_working().score
    assert store.adjust_score(5).score == min(100, start + 5)


def test_autofill_merges_into_working_and_keeps_files(tmp_path: Path) -> None:
    store = _make_store(tmp_path, _reply('{"sentiment": {"limitUp": 85}, "dragon": "龙二"}'))
    store.reset_working("2026-03-09")
    with pytest.raises(AITaskError) as exc_info:
        store.autofill_from_attachments()
    assert exc_info.value.code == "NO_ATTACHMENTS"

    store.add_attachments([encode_upload("board.png", b"img"), encode_upload("ladder.png", b"img")])
    result = store.autofill_from_attachments()
    assert result.file_count == 2
    assert result.record.limit_up_total == 85
    assert result.record.dragon == "龙二"
    assert result.record.ai_analysis.startswith("【解析成功】基于 2 个原始信源提炼")
    assert len(store.list_attachments().items) == 2


def test_autofill_failure_surfaces_as_autofill_error(tmp_path: Path) -> None:
    store = _make_store(tmp_path, httpx.MockTransport(lambda request: httpx.Response(500)))
    store.add_attachments([encode_upload("board.png", b"img")])
    before = store.get_working()
    with pytest.raises(AITaskError) as exc_info:
        store.autofill_from_attachments()
    assert exc_info.value.code == "AI_AUTOFILL_FAILED"
    assert "AI 深度解析异常。" in exc_info.value.message
    assert store.get_working() == before
    assert store.ai_status().busy is False


def test_commentary_success_and_fallback(tmp_path: Path) -> None:
    store = _make_store(tmp_path, _reply('分歧转一致。[DATA]{"dragonStatus": "revive"}[/DATA]【周期定性：修复】'))
    result = store.generate_commentary(CommentaryRequest(mode="sentiment"))
    assert result.ok is True
    assert result.record.ai_cycle == "修复"
    assert result.record.dragon_status == "revive"
    assert "[DATA]" not in result.record.ai_analysis

    failing = _make_store(tmp_path / "other", httpx.MockTransport(lambda request: httpx.Response(502)))
    failed = failing.generate_commentary(CommentaryRequest())
    assert failed.ok is False
    assert failed.error_code == "AI_HTTP_ERROR"
    assert failed.record.ai_analysis == COMMENTARY_FALLBACK


def test_api_key_resolution_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _make_store(tmp_path)
    store.set_config(store.get_config().model_copy(update={"api_key": ""}))
    provider = store.get_config().ai_providers[0].model_copy(update={"api_key": "", "api_key_path": ""})
    assert store._resolve_provider_api_key(provider) == ""

    key_file = tmp_path / "provider.key"
    key_file.write_text("sk-file\n", encoding="utf-8")
    with_path = provider.model_copy(update={"api_key_path": str(key_file)})
    assert store._resolve_provider_api_key(with_path) == "sk-file"

    monkeypatch.setenv(ENV_API_KEY, "sk-env")
    assert store._resolve_provider_api_key(with_path) == "sk-env"
    assert store._resolve_provider_api_key(with_path.model_copy(update={"api_key": "sk-inline"})) == "sk-inline"
