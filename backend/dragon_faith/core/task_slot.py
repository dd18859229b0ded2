"""
Single-slot handle for the external AI call.

At most one AI task runs at a time. Starting another while one is in
flight is rejected; finishing, successfully or not, frees the slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AITaskError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class TaskBusyError(AITaskError):
    def __init__(self, running_label: str) -> None:
        super().__init__("AI_TASK_BUSY", f"已有 AI 任务进行中：{running_label}")
        self.running_label = running_label


@dataclass(frozen=True, slots=True)
class TaskSucceeded(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True, slots=True)
class TaskFailed:
    code: str
    message: str
    ok: bool = False


class SingleFlightSlot:
    def __init__(self, now: Callable[[], str] | None = None) -> None:
        self._lock = Lock()
        self._busy = False
        self._label = ""
        self._message = ""
        self._started_at: str | None = None
        self._now = now or (lambda: datetime.now().strftime("%Y-%m-%d %H:%M:%S"))

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "busy": self._busy,
                "label": self._label,
                "message": self._message,
                "started_at": self._started_at,
            }

    def _acquire(self, label: str, message: str) -> None:
        with self._lock:
            if self._busy:
                raise TaskBusyError(self._label)
            self._busy = True
            self._label = label
            self._message = message
            self._started_at = self._now()

    def _release(self) -> None:
        with self._lock:
            self._busy = False
            self._label = ""
            self._message = ""
            self._started_at = None

    def run(self, label: str, fn: Callable[[], T], *, message: str = "") -> TaskSucceeded[T] | TaskFailed:
        """
        Run fn in the slot.

        Raises:
            TaskBusyError: another task holds the slot; fn is not called.
        """
        self._acquire(label, message)
        try:
            return TaskSucceeded(fn())
        except AITaskError as exc:
            logger.error(f"AI task {label} failed: {exc.code} {exc.message}")
            return TaskFailed(code=exc.code, message=exc.message)
        except Exception as exc:
            logger.exception(f"AI task {label} crashed: {exc}")
            return TaskFailed(code="AI_TASK_FAILED", message=f"{type(exc).__name__}: {exc}")
        finally:
            self._release()
