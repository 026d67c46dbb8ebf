from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Dict, Optional

from smartwake.domain.errors import CalculationCancelled


class CancellationToken:
    """
    Cooperative cancellation flag shared between a task and its owner.

    Tasks poll :meth:`raise_if_cancelled` before every side effect.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CalculationCancelled()


@dataclass
class TaskHandle:
    token: CancellationToken
    future: Optional["Future[None]"] = None


@dataclass
class CancellationRegistry:
    """
    Per-alarm registry of in-flight task handles.

    At most one handle is tracked per alarm id. All methods are thread-safe.
    """

    _handles: Dict[uuid.UUID, TaskHandle] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def register(self, alarm_id: uuid.UUID, handle: TaskHandle) -> None:
        with self._lock:
            self._handles[alarm_id] = handle

    def get(self, alarm_id: uuid.UUID) -> Optional[TaskHandle]:
        with self._lock:
            return self._handles.get(alarm_id)

    def cancel(self, alarm_id: uuid.UUID) -> bool:
        """
        Cancel and drop the handle for ``alarm_id``.

        Returns
        -------
        bool
            True if a handle was tracked.
        """
        with self._lock:
            handle = self._handles.pop(alarm_id, None)
        if handle is None:
            return False
        handle.token.cancel()
        if handle.future is not None:
            handle.future.cancel()
        return True

    def release(self, alarm_id: uuid.UUID, token: CancellationToken) -> None:
        """Drop the handle for ``alarm_id`` only if it still belongs to ``token``."""
        with self._lock:
            handle = self._handles.get(alarm_id)
            if handle is not None and handle.token is token:
                del self._handles[alarm_id]

    def cancel_all(self) -> None:
        with self._lock:
            ids = list(self._handles)
        for alarm_id in ids:
            self.cancel(alarm_id)

    def __contains__(self, alarm_id: object) -> bool:
        with self._lock:
            return alarm_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
