from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, Union

from smartwake.domain.models import Weekday


@dataclass(frozen=True)
class DateTrigger:
    """Fire once at ``fire_at``."""

    fire_at: datetime

    @property
    def repeats(self) -> bool:
        return False


@dataclass(frozen=True)
class CalendarTrigger:
    """Fire every week on ``weekday`` at ``hour:minute`` local time."""

    weekday: Weekday
    hour: int
    minute: int
    repeats: bool = True


Trigger = Union[DateTrigger, CalendarTrigger]


@dataclass(frozen=True)
class NotificationContent:
    """
    What the user sees when a notification fires.

    Parameters
    ----------
    title
        Alarm name.
    body
        Main text.
    subtitle
        Optional secondary text (adjustment reason).
    sound
        Sound file name, or None for a silent notification.
    category_identifier
        Registered category providing the action buttons.
    thread_identifier
        Groups notifications of the same alarm.
    """

    title: str
    body: str
    subtitle: str = ""
    sound: Optional[str] = None
    category_identifier: str = ""
    thread_identifier: str = ""


@dataclass(frozen=True)
class NotificationRequest:
    identifier: str
    content: NotificationContent
    trigger: Trigger


@dataclass(frozen=True)
class NotificationAction:
    identifier: str
    title: str
    destructive: bool = False


@dataclass(frozen=True)
class NotificationCategory:
    identifier: str
    actions: Tuple[NotificationAction, ...] = ()


class NotificationCenter(Protocol):
    """
    Protocol for the platform's local notification subsystem.

    The scheduler only needs to list, add and remove pending requests and to
    register categories. Adding a request whose identifier is already pending
    replaces it.
    """

    def pending_identifiers(self) -> List[str]:
        ...

    def add(self, request: NotificationRequest) -> None:
        ...

    def remove_pending(self, identifiers: Iterable[str]) -> None:
        ...

    def set_categories(self, categories: Iterable[NotificationCategory]) -> None:
        ...


class InMemoryNotificationCenter:
    """
    Thread-safe in-process notification center.

    Used by tests and by the development runtime. :meth:`deliver_due` stands
    in for the operating system firing one-shot notifications.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[str, NotificationRequest] = {}
        self._categories: Dict[str, NotificationCategory] = {}

    def pending_identifiers(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def pending_requests(self) -> List[NotificationRequest]:
        with self._lock:
            return list(self._pending.values())

    def get(self, identifier: str) -> Optional[NotificationRequest]:
        with self._lock:
            return self._pending.get(identifier)

    def add(self, request: NotificationRequest) -> None:
        with self._lock:
            self._pending[request.identifier] = request

    def remove_pending(self, identifiers: Iterable[str]) -> None:
        with self._lock:
            for identifier in identifiers:
                self._pending.pop(identifier, None)

    def set_categories(self, categories: Iterable[NotificationCategory]) -> None:
        with self._lock:
            self._categories = {c.identifier: c for c in categories}

    @property
    def categories(self) -> Dict[str, NotificationCategory]:
        with self._lock:
            return dict(self._categories)

    def deliver_due(self, now: datetime) -> List[NotificationRequest]:
        """Remove and return one-shot requests whose fire time is at or before ``now``."""
        with self._lock:
            due = [
                r for r in self._pending.values()
                if isinstance(r.trigger, DateTrigger) and r.trigger.fire_at <= now
            ]
            for r in due:
                del self._pending[r.identifier]
        return due
