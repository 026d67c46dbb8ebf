from __future__ import annotations

import threading
import uuid
from typing import Callable, Dict, List, Optional

from smartwake.core.state.persistence import KeyValueStorage, MemoryStorage
from smartwake.domain.events import (
    AlarmDeleted,
    AlarmLimitReached,
    AlarmUpdated,
    CancelOperationsForAlarm,
)
from smartwake.domain.models import Alarm
from smartwake.logging_setup import setup_logging
from smartwake.runtime.event_bus import EventBus

TAG = __name__
logger = setup_logging()

Observer = Callable[[List[Alarm]], None]

DEFAULT_STORAGE_KEY = "alarms_v3"
DEFAULT_MAX_ALARM_COUNT = 50


class AlarmStore:
    """
    Canonical, persisted collection of alarms.

    The store is the only component that mutates the collection. Every
    mutation persists the full collection under a versioned key and then
    notifies observers synchronously with a snapshot.

    Concurrency Model
    -----------------
    A re-entrant lock guards the collection. Observers and bus events are
    dispatched after the lock is released so listeners may call back into
    the store or the coordinator.

    Parameters
    ----------
    storage
        Key/value backend. Defaults to :class:`MemoryStorage`.
    key
        Versioned storage key.
    bus
        Optional event bus for update/delete events.
    max_alarm_count
        Upper bound on the number of alarms.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        key: str = DEFAULT_STORAGE_KEY,
        bus: Optional[EventBus] = None,
        max_alarm_count: int = DEFAULT_MAX_ALARM_COUNT,
    ):
        self._storage = storage if storage is not None else MemoryStorage()
        self._key = key
        self._bus = bus
        self._max = max_alarm_count
        self._lock = threading.RLock()
        self._alarms: List[Alarm] = []
        self._observers: List[Observer] = []
        self._load()

    # ---------- persistence ----------
    def _load(self) -> None:
        try:
            raw = self._storage.load(self._key)
        except ValueError as e:
            logger.bind(tag=TAG).error(f"alarm storage unreadable, starting empty: {e!r}")
            self._discard_stored()
            return

        if raw is None:
            return

        try:
            if not isinstance(raw, list):
                raise TypeError(f"expected a list, got {type(raw).__name__}")
            alarms = [Alarm.from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError) as e:
            logger.bind(tag=TAG).error(f"corrupt alarm data under {self._key!r}, discarding: {e!r}")
            self._discard_stored()
            return

        self._alarms = alarms
        logger.bind(tag=TAG).info(f"loaded {len(alarms)} alarms")

    def _discard_stored(self) -> None:
        self._alarms = []
        try:
            self._storage.remove(self._key)
        except OSError as e:
            logger.bind(tag=TAG).error(f"failed to remove corrupt alarm data: {e!r}")

    def _persist(self) -> None:
        try:
            self._storage.save(self._key, [a.to_dict() for a in self._alarms])
        except (OSError, TypeError, ValueError) as e:
            logger.bind(tag=TAG).error(f"failed to persist alarms: {e!r}")

    # ---------- observers ----------
    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register ``callback(snapshot)``; returns an unsubscribe function."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, snapshot: List[Alarm]) -> None:
        with self._lock:
            observers = list(self._observers)
        for cb in observers:
            try:
                cb(list(snapshot))
            except Exception as e:
                logger.bind(tag=TAG).error(f"store observer failed: {e!r}")

    def _publish(self, event: object) -> None:
        if self._bus is not None:
            self._bus.publish(event)

    # ---------- queries ----------
    def list(self) -> List[Alarm]:
        with self._lock:
            return list(self._alarms)

    def sorted_alarms(self) -> List[Alarm]:
        """Alarms ordered by time of day (hour, minute); ties keep insertion order."""
        with self._lock:
            return sorted(self._alarms, key=lambda a: a.minute_of_day)

    def get(self, alarm_id: uuid.UUID) -> Optional[Alarm]:
        with self._lock:
            for a in self._alarms:
                if a.id == alarm_id:
                    return a
        return None

    def contains(self, alarm_id: uuid.UUID) -> bool:
        return self.get(alarm_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._alarms)

    @property
    def max_alarm_count(self) -> int:
        return self._max

    @property
    def can_add_more_alarms(self) -> bool:
        with self._lock:
            return len(self._alarms) < self._max

    # ---------- mutations ----------
    def add(self, alarm: Alarm) -> bool:
        """
        Append ``alarm``.

        Returns
        -------
        bool
            False when the alarm limit is reached (an :class:`AlarmLimitReached`
            event is published) or the id already exists.
        """
        with self._lock:
            if len(self._alarms) >= self._max:
                limit_reached = True
            else:
                limit_reached = False
                if any(a.id == alarm.id for a in self._alarms):
                    logger.bind(tag=TAG).error(f"alarm {alarm.id} already exists")
                    return False
                self._alarms.append(alarm)
                self._persist()
                snapshot = list(self._alarms)

        if limit_reached:
            logger.bind(tag=TAG).warning(f"alarm limit of {self._max} reached")
            self._publish(AlarmLimitReached(max_alarm_count=self._max))
            return False

        self._notify(snapshot)
        return True

    def update(self, alarm: Alarm, from_creation: bool = False) -> bool:
        """
        Replace the stored alarm with the same id.

        An id that is no longer present is a benign race with deletion: it is
        logged and False is returned.
        """
        with self._lock:
            for idx, existing in enumerate(self._alarms):
                if existing.id == alarm.id:
                    self._alarms[idx] = alarm
                    break
            else:
                logger.bind(tag=TAG).debug(f"update ignored, alarm {alarm.id} no longer exists")
                return False
            self._persist()
            snapshot = list(self._alarms)

        self._notify(snapshot)
        self._publish(
            AlarmUpdated(
                alarm=alarm,
                skip_weather_refresh=alarm.current_adjustment is not None,
                from_creation=from_creation,
            )
        )
        return True

    def delete(self, alarm: Alarm) -> bool:
        """
        Remove the alarm with ``alarm.id``.

        :class:`CancelOperationsForAlarm` is published before removal and
        :class:`AlarmDeleted` after.
        """
        self._publish(CancelOperationsForAlarm(alarm_id=alarm.id))

        with self._lock:
            remaining = [a for a in self._alarms if a.id != alarm.id]
            if len(remaining) == len(self._alarms):
                logger.bind(tag=TAG).debug(f"delete ignored, alarm {alarm.id} no longer exists")
                return False
            self._alarms = remaining
            self._persist()
            snapshot = list(self._alarms)

        self._notify(snapshot)
        self._publish(AlarmDeleted(alarm_id=alarm.id, alarm=alarm))
        return True

    def delete_all(self) -> None:
        for alarm in self.list():
            self.delete(alarm)
