"""
Delayed-task table for partner replies.

Each task is keyed by the chat session it belongs to, so unmatching can cancel
everything pending for that session in one call. A task that was cancelled
never runs its callback; a callback that already started is re-validated by the
engine before it touches state.

Two implementations:
- `ThreadingReplyScheduler`: real wall-clock delays (`threading.Timer`).
- `ManualReplyScheduler`: virtual clock advanced explicitly (CLI demo, tests).
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class ReplyScheduler(Protocol):
    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], None]) -> str: ...

    def cancel(self, key: str) -> int: ...

    def pending(self, key: str) -> int: ...

    def shutdown(self) -> None: ...


class ThreadingReplyScheduler:
    """Runs callbacks on timer threads after a wall-clock delay."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, dict[str, threading.Timer]] = {}

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], None]) -> str:
        task_id = uuid.uuid4().hex[:12]

        def fire() -> None:
            with self._lock:
                tasks = self._tasks.get(key)
                if not tasks or tasks.pop(task_id, None) is None:
                    return
                if not tasks:
                    self._tasks.pop(key, None)
            try:
                callback()
            except Exception:
                logger.exception("Delayed task %s for %s failed", task_id, key)

        timer = threading.Timer(max(0.0, float(delay_seconds)), fire)
        timer.daemon = True
        with self._lock:
            self._tasks.setdefault(key, {})[task_id] = timer
        timer.start()
        return task_id

    def cancel(self, key: str) -> int:
        with self._lock:
            tasks = self._tasks.pop(key, {})
        for timer in tasks.values():
            timer.cancel()
        return len(tasks)

    def pending(self, key: str) -> int:
        with self._lock:
            return len(self._tasks.get(key, {}))

    def shutdown(self) -> None:
        with self._lock:
            keys = list(self._tasks)
        for key in keys:
            self.cancel(key)


@dataclass(order=True)
class _ManualTask:
    due: float
    seq: int
    key: str = field(compare=False)
    task_id: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False)


class ManualReplyScheduler:
    """Deterministic scheduler driven by `advance()`; callbacks run on the caller's thread."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._tasks: list[_ManualTask] = []

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], None]) -> str:
        self._seq += 1
        task = _ManualTask(
            due=self.now + max(0.0, float(delay_seconds)),
            seq=self._seq,
            key=key,
            task_id=f"manual-{self._seq}",
            callback=callback,
        )
        self._tasks.append(task)
        return task.task_id

    def cancel(self, key: str) -> int:
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.key != key]
        return before - len(self._tasks)

    def pending(self, key: str) -> int:
        return sum(1 for t in self._tasks if t.key == key)

    def advance(self, seconds: float) -> int:
        """Move the virtual clock forward and run every task that came due."""
        self.now += float(seconds)
        fired = 0
        while True:
            due = sorted(t for t in self._tasks if t.due <= self.now)
            if not due:
                return fired
            task = due[0]
            self._tasks.remove(task)
            task.callback()
            fired += 1

    def run_all(self) -> int:
        if not self._tasks:
            return 0
        return self.advance(max(t.due for t in self._tasks) - self.now)

    def shutdown(self) -> None:
        self._tasks.clear()
