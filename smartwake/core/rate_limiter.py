from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional, Tuple

from smartwake.domain.events import BatchReady
from smartwake.logging_setup import setup_logging
from smartwake.runtime.event_bus import EventBus

TAG = __name__
logger = setup_logging()

Clock = Callable[[], datetime]

_HOUR = timedelta(hours=1)
_DAY = timedelta(days=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateLimiterConfig:
    """
    Throttle settings for the calculation service.

    Parameters
    ----------
    max_requests_per_interval
        Requests allowed per alarm within the trailing ``interval``.
    interval
        Length of the trailing window.
    batching_window_s
        Quiet period after the last queued request before the queue is flushed.
    """

    max_requests_per_interval: int = 1
    interval: timedelta = timedelta(minutes=15)
    batching_window_s: float = 2.0


@dataclass(frozen=True)
class UsageStatistics:
    total_requests: int
    requests_last_hour: int
    requests_last_day: int
    average_requests_per_alarm_last_hour: float


class RateLimiter:
    """
    Per-alarm request throttle with a batching window.

    Pure bookkeeping: no network calls. All state is guarded by one lock so the
    refresh loop, the coordinator and foreground triggers may call in
    concurrently without losing records.

    Batching
    --------
    :meth:`queue_request` records the request, enqueues the id and (re)starts a
    one-shot timer. When the timer fires, :meth:`flush` drains the queue,
    deduplicates it in first-seen order and publishes :class:`BatchReady` on
    the bus (or calls ``on_batch``).

    Parameters
    ----------
    cfg
        Throttle configuration.
    clock
        Returns the current aware datetime. Injectable for tests.
    bus
        Optional event bus receiving :class:`BatchReady`.
    on_batch
        Optional direct callback receiving the flushed ids.
    """

    def __init__(
        self,
        cfg: Optional[RateLimiterConfig] = None,
        clock: Clock = utc_now,
        bus: Optional[EventBus] = None,
        on_batch: Optional[Callable[[List[uuid.UUID]], None]] = None,
    ):
        self._cfg = cfg or RateLimiterConfig()
        self._clock = clock
        self._bus = bus
        self._on_batch = on_batch
        self._lock = threading.Lock()

        self._history: Dict[uuid.UUID, List[datetime]] = {}
        self._day_log: Deque[Tuple[uuid.UUID, datetime]] = deque()
        self._total_requests = 0
        self._pending: List[uuid.UUID] = []
        self._timer: Optional[threading.Timer] = None

    @property
    def config(self) -> RateLimiterConfig:
        return self._cfg

    # ---------- internal (lock held) ----------
    def _prune(self, now: datetime) -> None:
        cutoff = now - self._cfg.interval
        for alarm_id in list(self._history):
            recent = [t for t in self._history[alarm_id] if t > cutoff]
            if recent:
                self._history[alarm_id] = recent
            else:
                del self._history[alarm_id]

        day_cutoff = now - _DAY
        while self._day_log and self._day_log[0][1] <= day_cutoff:
            self._day_log.popleft()

    def _allowed(self, alarm_id: uuid.UUID) -> bool:
        return len(self._history.get(alarm_id, ())) < self._cfg.max_requests_per_interval

    def _record(self, alarm_id: uuid.UUID, now: datetime) -> None:
        self._history.setdefault(alarm_id, []).append(now)
        self._day_log.append((alarm_id, now))
        self._total_requests += 1

    # ---------- public ----------
    def can_make_request(self, alarm_id: uuid.UUID) -> bool:
        with self._lock:
            self._prune(self._clock())
            return self._allowed(alarm_id)

    def record_request(self, alarm_id: uuid.UUID) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._record(alarm_id, now)
            count = len(self._history[alarm_id])
        logger.bind(tag=TAG).debug(
            f"request recorded for {alarm_id} ({count} in the last {self._cfg.interval})"
        )

    def queue_request(self, alarm_id: uuid.UUID) -> bool:
        """
        Enqueue ``alarm_id`` for the next batch.

        Returns
        -------
        bool
            False without side effects when the alarm is rate limited.
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            if not self._allowed(alarm_id):
                logger.bind(tag=TAG).info(f"request denied for {alarm_id}: rate limit exceeded")
                return False
            self._record(alarm_id, now)
            self._pending.append(alarm_id)
            self._restart_timer()
        return True

    def _restart_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self._cfg.batching_window_s, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def flush(self) -> List[uuid.UUID]:
        """
        Drain the queue and signal a batch.

        Returns
        -------
        list of UUID
            Deduplicated ids in first-seen order; empty when nothing was queued.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            queued = self._pending
            self._pending = []

        unique = list(dict.fromkeys(queued))
        if not unique:
            return unique

        logger.bind(tag=TAG).info(f"batching {len(unique)} unique requests from {len(queued)} total")
        if self._bus is not None:
            self._bus.publish(BatchReady(alarm_ids=tuple(unique)))
        if self._on_batch is not None:
            self._on_batch(list(unique))
        return unique

    def pending(self) -> List[uuid.UUID]:
        with self._lock:
            return list(self._pending)

    def time_until_next_request(self, alarm_id: uuid.UUID) -> Optional[timedelta]:
        """Remaining cooldown, or None if a request is currently allowed."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            history = self._history.get(alarm_id)
            if not history or len(history) < self._cfg.max_requests_per_interval:
                return None
            remaining = min(history) + self._cfg.interval - now
        return max(remaining, timedelta(0))

    def usage_statistics(self) -> UsageStatistics:
        with self._lock:
            now = self._clock()
            self._prune(now)
            hour_cutoff = now - _HOUR
            last_hour = [alarm_id for alarm_id, t in self._day_log if t > hour_cutoff]
            alarms_last_hour = len(set(last_hour))
            return UsageStatistics(
                total_requests=self._total_requests,
                requests_last_hour=len(last_hour),
                requests_last_day=len(self._day_log),
                average_requests_per_alarm_last_hour=(
                    len(last_hour) / alarms_last_hour if alarms_last_hour else 0.0
                ),
            )

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
