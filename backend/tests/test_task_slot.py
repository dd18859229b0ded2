from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.core.task_slot import AITaskError, SingleFlightSlot, TaskBusyError, TaskFailed, TaskSucceeded


def test_success_returns_value_and_frees_slot() -> None:
    slot = SingleFlightSlot(now=lambda: "2026-03-09 15:00:00")
    outcome = slot.run("autofill", lambda: 42, message="working")
    assert outcome == TaskSucceeded(42)
    assert slot.busy is False
    assert slot.status() == {"busy": False, "label": "", "message": "", "started_at": None}


def test_failures_become_discriminated_results() -> None:
    slot = SingleFlightSlot()

    def raise_task_error() -> None:
        raise AITaskError("AI_TIMEOUT", "超时")

    def crash() -> None:
        raise RuntimeError("boom")

    assert slot.run("a", raise_task_error) == TaskFailed(code="AI_TIMEOUT", message="超时")
    crashed = slot.run("b", crash)
    assert isinstance(crashed, TaskFailed)
    assert crashed.code == "AI_TASK_FAILED"
    assert slot.busy is False


def test_second_task_is_rejected_while_first_runs() -> None:
    slot = SingleFlightSlot(now=lambda: "2026-03-09 15:00:00")
    started = threading.Event()
    release = threading.Event()
    results: list[object] = []

    def slow() -> str:
        started.set()
        release.wait(timeout=5)
        return "done"

    worker = threading.Thread(target=lambda: results.append(slot.run("commentary:full", slow, message="研判中")))
    worker.start()
    assert started.wait(timeout=5)

    status = slot.status()
    assert status["busy"] is True
    assert status["label"] == "commentary:full"
    assert status["message"] == "研判中"
    assert status["started_at"] == "2026-03-09 15:00:00"

    called: list[bool] = []
    with pytest.raises(TaskBusyError) as exc_info:
        slot.run("autofill", lambda: called.append(True))
    assert exc_info.value.code == "AI_TASK_BUSY"
    assert called == []

    release.set()
    worker.join(timeout=5)
    assert results == [TaskSucceeded("done")]
    assert slot.busy is False
