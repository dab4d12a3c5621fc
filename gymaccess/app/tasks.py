"""Deferred work handed off after an early HTTP response."""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from fastapi import BackgroundTasks

from .config import get_membership_config

logger = logging.getLogger("tasks")

MAX_ERROR_LENGTH = 500


@dataclass(frozen=True)
class DeferredFailure:
    name: str
    error: str
    failed_at: datetime


def _truncate_error_message(message: str) -> str:
    if len(message) > MAX_ERROR_LENGTH:
        return message[: MAX_ERROR_LENGTH - 3] + "..."
    return message


class DeferredTaskRunner:
    """Runs work after the response is sent and keeps a record of failures.

    Deferred work is never retried here; a failure is logged at error level
    and kept in a bounded history for operators.
    """

    def __init__(self, *, history_size: int = 50) -> None:
        self._lock = threading.Lock()
        self._failures: Deque[DeferredFailure] = deque(maxlen=max(history_size, 1))
        self._metrics: Dict[str, Any] = {
            "scheduled": 0,
            "succeeded": 0,
            "failed": 0,
            "last_failure_at": None,
            "last_error": None,
        }

    def schedule(self, background_tasks: BackgroundTasks, name: str, func: Callable[..., Any], *args: Any) -> None:
        with self._lock:
            self._metrics["scheduled"] += 1
        background_tasks.add_task(self._run, name, func, *args)

    def _run(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        started = time.perf_counter()
        try:
            func(*args)
        except Exception as exc:
            duration = time.perf_counter() - started
            self._record_failure(name, exc)
            logger.exception(
                "Deferred task %s failed after %.2f seconds",
                name,
                duration,
                extra={"task": name},
            )
            return
        with self._lock:
            self._metrics["succeeded"] += 1
        logger.debug("Deferred task %s completed in %.2f seconds", name, time.perf_counter() - started)

    def _record_failure(self, name: str, error: Exception) -> None:
        failure = DeferredFailure(
            name=name,
            error=_truncate_error_message(f"{type(error).__name__}: {error}"),
            failed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._failures.append(failure)
            self._metrics["failed"] += 1
            self._metrics["last_failure_at"] = failure.failed_at
            self._metrics["last_error"] = failure.error

    def failures(self) -> List[DeferredFailure]:
        with self._lock:
            return list(self._failures)

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = dict(self._metrics)
            snapshot["recent_failures"] = [
                {"name": item.name, "error": item.error, "failed_at": item.failed_at}
                for item in self._failures
            ]
        return snapshot


_runner: Optional[DeferredTaskRunner] = None


def get_task_runner() -> DeferredTaskRunner:
    global _runner
    if _runner is None:
        _runner = DeferredTaskRunner(history_size=get_membership_config().deferred_failure_history)
    return _runner


def set_task_runner(runner: Optional[DeferredTaskRunner]) -> None:
    global _runner
    _runner = runner


__all__ = ["DeferredFailure", "DeferredTaskRunner", "get_task_runner", "set_task_runner"]
