"""
Event-level representation of alarm collection changes.

Events describe *what happened*; the alarm store holds *what is currently
true*. They are published on the in-process
:class:`~smartwake.runtime.event_bus.EventBus` and consumed by:
- the weather adjustment refresh loop (created/updated/deleted)
- the data coordinator (cancel operations, batch ready)
- logging and UI listeners
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from smartwake.domain.models import Alarm


@dataclass(frozen=True)
class AlarmCreated:
    """A new alarm was accepted by the data coordinator."""

    alarm: Alarm


@dataclass(frozen=True)
class AlarmUpdated:
    """
    An existing alarm was replaced in the store.

    Parameters
    ----------
    alarm
        The alarm as stored after the update.
    skip_weather_refresh
        True when the stored alarm carries an adjustment; listeners that would
        otherwise recalculate must ignore the event.
    from_creation
        True when the update is the creation-time calculation write-back.
    """

    alarm: Alarm
    skip_weather_refresh: bool = False
    from_creation: bool = False

    @property
    def alarm_id(self) -> uuid.UUID:
        return self.alarm.id


@dataclass(frozen=True)
class AlarmDeleted:
    alarm_id: uuid.UUID
    alarm: Optional[Alarm] = None


@dataclass(frozen=True)
class CancelOperationsForAlarm:
    """Broadcast before an alarm is removed; in-flight work for the id must stop."""

    alarm_id: uuid.UUID


@dataclass(frozen=True)
class BatchReady:
    """Rate limiter batching window elapsed; ids are deduplicated in first-seen order."""

    alarm_ids: Tuple[uuid.UUID, ...]


@dataclass(frozen=True)
class AlarmLimitReached:
    max_alarm_count: int
