from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from smartwake.core.rate_limiter import utc_now
from smartwake.logging_setup import setup_logging
from smartwake.notification.base import InMemoryNotificationCenter
from smartwake.services.coordinator import DataCoordinator

TAG = __name__
logger = setup_logging()


class LifecycleThread:
    """
    Worker thread for alarm housekeeping.

    Responsibilities
    ----------------
    - Deliver due one-shot notifications when running on the in-memory
      notification center.
    - Expire passed one-time alarms and disable passed specific-date alarms
      via :meth:`DataCoordinator.expire_alarms`.
    - Re-arm alarms whose notifications are no longer all pending via
      :meth:`DataCoordinator.refresh_notifications`.

    Concurrency Model
    -----------------
    - The thread waits on the stop event with a timeout, so :meth:`stop`
      takes effect immediately.
    - Exceptions in a tick are logged and the loop continues.

    Parameters
    ----------
    coordinator
        Data coordinator owning alarm mutations.
    stop_event
        Thread stop signal.
    interval_s
        Seconds between ticks.
    center
        Optional in-memory notification center to deliver from.
    clock
        Returns the current aware datetime.
    """

    def __init__(
        self,
        coordinator: DataCoordinator,
        stop_event: threading.Event,
        interval_s: float = 60.0,
        center: Optional[InMemoryNotificationCenter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._coordinator = coordinator
        self._stop = stop_event
        self._interval_s = interval_s
        self._center = center
        self._clock = clock
        self._thread = threading.Thread(target=self._run, name="alarm-lifecycle", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def tick(self, now: Optional[datetime] = None) -> None:
        """Run one housekeeping pass."""
        now = now or self._clock()
        if self._center is not None:
            for request in self._center.deliver_due(now):
                logger.bind(tag=TAG).info(
                    f"ALARM '{request.content.title}': {request.content.body}"
                )
        self._coordinator.expire_alarms(now)
        self._coordinator.refresh_notifications(now)

    def _run(self) -> None:
        while not self._stop.wait(timeout=self._interval_s):
            try:
                self.tick()
            except Exception as e:
                logger.bind(tag=TAG).error(f"lifecycle tick failed: {e!r}")
