"""
Domain models and enums.

This module defines the core domain-level types used across the system:
- Weekdays, schedules (one-time / specific date / repeating days) and travel methods
- Validated commute addresses
- AlarmAdjustment, the computed deviation from an alarm's nominal wake time
- Alarm, the user-configured wake event, with its derived occurrence times
- UserProfile, the per-user context sent along with calculation requests

Alarms and adjustments are immutable (frozen) dataclasses. Components never
mutate an alarm in place: they derive a copy with :func:`dataclasses.replace`
and write it back through the data coordinator.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

STATE_PLACEHOLDER = "Select"
NOISE_FLOOR_MINUTES = 2


class Weekday(str, Enum):
    """
    Day of the week used by repeating schedules.

    Values are the lower-case English names, which is also how they are
    persisted and how notification identifiers are suffixed.
    """

    SUNDAY = "sunday"
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"

    @property
    def iso_index(self) -> int:
        """Python ``date.weekday()`` index (Monday == 0)."""
        return _ISO_INDEX[self]

    @classmethod
    def from_date(cls, d: date) -> "Weekday":
        return _BY_ISO_INDEX[d.weekday()]


_ISO_INDEX = {
    Weekday.MONDAY: 0,
    Weekday.TUESDAY: 1,
    Weekday.WEDNESDAY: 2,
    Weekday.THURSDAY: 3,
    Weekday.FRIDAY: 4,
    Weekday.SATURDAY: 5,
    Weekday.SUNDAY: 6,
}
_BY_ISO_INDEX = {v: k for k, v in _ISO_INDEX.items()}


class TravelMethod(str, Enum):
    """
    How the user commutes to the destination.

    Members
    -------
    DRIVE, PUBLIC_TRANSIT, WALK, BIKE
        Persisted values. The calculation service expects ``transit`` for
        public transit, see :attr:`wire_value`.
    """

    DRIVE = "drive"
    PUBLIC_TRANSIT = "public_transit"
    WALK = "walk"
    BIKE = "bike"

    @property
    def wire_value(self) -> str:
        if self is TravelMethod.PUBLIC_TRANSIT:
            return "transit"
        return self.value


@dataclass(frozen=True)
class OneTime:
    """Ring once at ``alarm_time``."""


@dataclass(frozen=True)
class SpecificDate:
    """Ring once on ``date`` at the alarm's wall-clock time."""

    date: date


@dataclass(frozen=True)
class RepeatingDays:
    """Ring at the alarm's wall-clock time on each of ``days``."""

    days: FrozenSet[Weekday]

    def __init__(self, days: Iterable[Weekday]):
        object.__setattr__(self, "days", frozenset(Weekday(d) for d in days))


AlarmSchedule = Union[OneTime, SpecificDate, RepeatingDays]


def _parse_iso(s: str) -> datetime:
    # datetime.fromisoformat() only accepts a trailing "Z" from Python 3.11 on.
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s)


def schedule_to_dict(schedule: AlarmSchedule) -> Dict[str, Any]:
    if isinstance(schedule, OneTime):
        return {"oneTime": True}
    if isinstance(schedule, SpecificDate):
        return {"specificDate": schedule.date.isoformat()}
    if isinstance(schedule, RepeatingDays):
        return {"repeatingDays": sorted(d.value for d in schedule.days)}
    raise TypeError(f"Unknown schedule type: {type(schedule).__name__}")


def schedule_from_dict(data: Dict[str, Any]) -> AlarmSchedule:
    """
    Decode a persisted schedule.

    Exactly one of ``oneTime``, ``specificDate`` or ``repeatingDays`` is
    expected. ``specificDate`` may be a plain date or a full ISO datetime.

    Raises
    ------
    ValueError
        If no known variant is present.
    """
    if data.get("oneTime"):
        return OneTime()
    if "specificDate" in data:
        raw = str(data["specificDate"])
        try:
            return SpecificDate(date.fromisoformat(raw))
        except ValueError:
            return SpecificDate(_parse_iso(raw).date())
    if "repeatingDays" in data:
        return RepeatingDays(Weekday(d) for d in data["repeatingDays"])
    raise ValueError(f"Unknown schedule encoding: {data!r}")


@dataclass(frozen=True)
class Coordinates:
    latitude: float = 0.0
    longitude: float = 0.0


@dataclass(frozen=True)
class ValidatedAddress:
    """
    Address used as commute start or destination.

    Parameters
    ----------
    label
        Optional user label (e.g. "Home").
    street, city, state, zip
        Address components. ``state`` equal to ``"Select"`` means unset.
    formatted_address
        Geocoder-formatted single-line address.
    coordinates
        Derived geocoordinates.
    """

    label: Optional[str] = None
    street: str = ""
    city: str = ""
    state: str = STATE_PLACEHOLDER
    zip: str = ""
    formatted_address: str = ""
    coordinates: Coordinates = field(default_factory=Coordinates)

    @property
    def is_valid(self) -> bool:
        return (
            bool(self.street.strip())
            and bool(self.city.strip())
            and self.state != STATE_PLACEHOLDER
            and bool(self.state)
            and len(self.zip) == 5
        )

    def full_address(self) -> Optional[str]:
        """
        Join the usable components with ``", "``.

        Returns
        -------
        str or None
            None when every component is empty or a placeholder.
        """
        parts = [
            p for p in (self.street, self.city, self.state, self.zip)
            if p and p != STATE_PLACEHOLDER
        ]
        return ", ".join(parts) if parts else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "formatted_address": self.formatted_address,
            "coordinates": {
                "latitude": self.coordinates.latitude,
                "longitude": self.coordinates.longitude,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidatedAddress":
        coords = data.get("coordinates") or {}
        return cls(
            label=data.get("label"),
            street=str(data.get("street", "")),
            city=str(data.get("city", "")),
            state=str(data.get("state", STATE_PLACEHOLDER)),
            zip=str(data.get("zip", "")),
            formatted_address=str(data.get("formatted_address", "")),
            coordinates=Coordinates(
                latitude=float(coords.get("latitude", 0.0)),
                longitude=float(coords.get("longitude", 0.0)),
            ),
        )


@dataclass(frozen=True)
class AdjustmentBreakdown:
    """Minute buckets explaining an adjustment. All values are non-negative."""

    preparation_time: int = 0
    base_commute: int = 0
    weather_delays: int = 0
    traffic_delays: int = 0
    snooze_buffer: int = 0

    @property
    def total(self) -> int:
        return (
            self.preparation_time
            + self.base_commute
            + self.weather_delays
            + self.traffic_delays
            + self.snooze_buffer
        )


@dataclass(frozen=True)
class AlarmAdjustment:
    """
    Computed deviation from an alarm's nominal wake time.

    Parameters
    ----------
    adjusted_wake_time
        Recommended wake instant.
    adjustment_minutes
        Signed minutes; positive means wake earlier than nominal, negative
        means the user may sleep later.
    reason
        Human-readable explanation.
    calculated_at
        When the adjustment was produced.
    confidence
        Service confidence in [0.0, 1.0].
    breakdown
        Optional minute buckets.
    occurrence_time
        The nominal occurrence the adjustment was computed against. An
        adjustment whose occurrence no longer matches the alarm's next
        occurrence is stale.
    """

    adjusted_wake_time: datetime
    adjustment_minutes: int
    reason: str
    calculated_at: datetime
    confidence: float
    breakdown: Optional[AdjustmentBreakdown] = None
    occurrence_time: Optional[datetime] = None

    @property
    def is_earlier(self) -> bool:
        return self.adjustment_minutes > 0

    def is_fresh_for(self, occurrence: Optional[datetime]) -> bool:
        if occurrence is None or self.occurrence_time is None:
            return False
        return self.occurrence_time == occurrence

    def summary(self) -> str:
        """Short user-facing description, e.g. "Wake up 18 min earlier" or "10 extra minutes"."""
        minutes = abs(self.adjustment_minutes)
        if self.is_earlier:
            return f"Wake up {minutes} min earlier"
        return f"{minutes} extra minutes"

    def to_dict(self) -> Dict[str, Any]:
        b = self.breakdown
        return {
            "adjusted_wake_time": self.adjusted_wake_time.isoformat(),
            "adjustment_minutes": self.adjustment_minutes,
            "reason": self.reason,
            "calculated_at": self.calculated_at.isoformat(),
            "confidence": self.confidence,
            "breakdown": None if b is None else {
                "preparation_time": b.preparation_time,
                "base_commute": b.base_commute,
                "weather_delays": b.weather_delays,
                "traffic_delays": b.traffic_delays,
                "snooze_buffer": b.snooze_buffer,
            },
            "occurrence_time": self.occurrence_time.isoformat() if self.occurrence_time else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlarmAdjustment":
        b = data.get("breakdown")
        occurrence = data.get("occurrence_time")
        return cls(
            adjusted_wake_time=_parse_iso(str(data["adjusted_wake_time"])),
            adjustment_minutes=int(data["adjustment_minutes"]),
            reason=str(data.get("reason", "")),
            calculated_at=_parse_iso(str(data["calculated_at"])),
            confidence=float(data.get("confidence", 0.0)),
            breakdown=None if b is None else AdjustmentBreakdown(
                preparation_time=int(b.get("preparation_time", 0)),
                base_commute=int(b.get("base_commute", 0)),
                weather_delays=int(b.get("weather_delays", 0)),
                traffic_delays=int(b.get("traffic_delays", 0)),
                snooze_buffer=int(b.get("snooze_buffer", 0)),
            ),
            occurrence_time=_parse_iso(str(occurrence)) if occurrence else None,
        )


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _at_wall_time(day: date, template: datetime) -> datetime:
    """Combine ``day`` with the hour/minute of ``template`` in the template's zone."""
    return datetime.combine(day, time(template.hour, template.minute), tzinfo=template.tzinfo)


@dataclass(frozen=True)
class Alarm:
    """
    A user-configured wake event.

    ``alarm_time`` and ``arrival_time`` must be timezone-aware. Their
    wall-clock hour and minute (in ``alarm_time``'s zone) define the nominal
    wake time and the arrival target; the date part only matters for
    one-time alarms.

    Smart fields (addresses, preparation, travel method, adjustment toggles)
    are meaningful only when ``smart_enabled`` is set. ``current_adjustment``
    holds the most recent non-trivial calculation result.
    """

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    is_enabled: bool = True
    alarm_time: datetime = field(default_factory=_local_now)
    arrival_time: datetime = field(default_factory=_local_now)
    schedule: AlarmSchedule = field(default_factory=OneTime)

    smart_enabled: bool = False
    starting_address: ValidatedAddress = field(default_factory=ValidatedAddress)
    destination_address: ValidatedAddress = field(default_factory=ValidatedAddress)
    preparation_minutes: int = 0
    travel_method: TravelMethod = TravelMethod.DRIVE
    weather_adjustment: bool = False
    traffic_adjustment: bool = False
    transit_adjustment: bool = False

    sound_tone: str = "Alarm.caf"
    volume: float = 0.5
    vibration_enabled: bool = True
    snooze_enabled: bool = False
    max_snoozes: int = 2
    snooze_minutes: int = 9

    current_adjustment: Optional[AlarmAdjustment] = None

    def __post_init__(self) -> None:
        for name in ("alarm_time", "arrival_time"):
            value = getattr(self, name)
            if value.tzinfo is None or value.utcoffset() is None:
                raise ValueError(f"{name} must be timezone-aware")

    # --- derived ---
    @property
    def is_repeating(self) -> bool:
        return isinstance(self.schedule, RepeatingDays)

    @property
    def minute_of_day(self) -> int:
        return self.alarm_time.hour * 60 + self.alarm_time.minute

    @property
    def preparation_interval(self) -> timedelta:
        return timedelta(minutes=self.preparation_minutes)

    @property
    def total_snooze_buffer(self) -> timedelta:
        if not self.snooze_enabled:
            return timedelta(0)
        return timedelta(minutes=self.max_snoozes * self.snooze_minutes)

    @property
    def has_valid_addresses(self) -> bool:
        return self.starting_address.is_valid and self.destination_address.is_valid

    def next_occurrence(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        Next concrete instant this alarm rings, strictly after ``now``.

        Returns
        -------
        datetime or None
            None for a one-time or specific-date alarm whose moment has passed,
            or a repeating alarm without days.
        """
        now = now or datetime.now(timezone.utc)
        schedule = self.schedule

        if isinstance(schedule, OneTime):
            return self.alarm_time if self.alarm_time > now else None

        if isinstance(schedule, SpecificDate):
            occurrence = _at_wall_time(schedule.date, self.alarm_time)
            return occurrence if occurrence > now else None

        today = now.astimezone(self.alarm_time.tzinfo).date()
        # Today through the same weekday next week.
        for offset in range(8):
            day = today + timedelta(days=offset)
            if Weekday.from_date(day) not in schedule.days:
                continue
            occurrence = _at_wall_time(day, self.alarm_time)
            if occurrence > now:
                return occurrence
        return None

    def next_arrival(self, now: Optional[datetime] = None) -> datetime:
        """
        Arrival target paired with :meth:`next_occurrence`.

        The arrival's wall-clock time is placed on the occurrence's date, or on
        the following day when it is earlier in the day than the alarm.
        """
        occurrence = self.next_occurrence(now)
        if occurrence is None:
            return self.arrival_time

        arrival_local = self.arrival_time.astimezone(self.alarm_time.tzinfo)
        arrival_minutes = arrival_local.hour * 60 + arrival_local.minute

        day = occurrence.date()
        if arrival_minutes < self.minute_of_day:
            day += timedelta(days=1)
        return _at_wall_time(day, arrival_local)

    def fresh_adjustment(self, now: Optional[datetime] = None) -> Optional[AlarmAdjustment]:
        """Current adjustment if it was computed for the current next occurrence."""
        adjustment = self.current_adjustment
        if adjustment is None:
            return None
        if not adjustment.is_fresh_for(self.next_occurrence(now)):
            return None
        return adjustment

    def effective_wake_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.smart_enabled:
            adjustment = self.fresh_adjustment(now)
            if adjustment is not None:
                return adjustment.adjusted_wake_time
        return self.next_occurrence(now)

    def display_time(self, clock_24h: bool = False) -> str:
        t = self.alarm_time
        if clock_24h:
            return f"{t.hour:02d}:{t.minute:02d}"
        hour = t.hour % 12 or 12
        suffix = "AM" if t.hour < 12 else "PM"
        return f"{hour}:{t.minute:02d} {suffix}"

    # --- persistence ---
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "is_enabled": self.is_enabled,
            "alarm_time": self.alarm_time.isoformat(),
            "arrival_time": self.arrival_time.isoformat(),
            "schedule": schedule_to_dict(self.schedule),
            "smart_enabled": self.smart_enabled,
            "starting_address": self.starting_address.to_dict(),
            "destination_address": self.destination_address.to_dict(),
            "preparation_minutes": self.preparation_minutes,
            "travel_method": self.travel_method.value,
            "weather_adjustment": self.weather_adjustment,
            "traffic_adjustment": self.traffic_adjustment,
            "transit_adjustment": self.transit_adjustment,
            "sound_tone": self.sound_tone,
            "volume": self.volume,
            "vibration_enabled": self.vibration_enabled,
            "snooze_enabled": self.snooze_enabled,
            "max_snoozes": self.max_snoozes,
            "snooze_minutes": self.snooze_minutes,
            "current_adjustment": (
                self.current_adjustment.to_dict() if self.current_adjustment else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alarm":
        """
        Decode a persisted alarm.

        Raises
        ------
        KeyError, ValueError, TypeError
            If required fields are missing or malformed.
        """
        adjustment = data.get("current_adjustment")
        return cls(
            id=uuid.UUID(str(data["id"])),
            name=str(data["name"]),
            is_enabled=bool(data.get("is_enabled", True)),
            alarm_time=_parse_iso(str(data["alarm_time"])),
            arrival_time=_parse_iso(str(data["arrival_time"])),
            schedule=schedule_from_dict(data.get("schedule") or {"oneTime": True}),
            smart_enabled=bool(data.get("smart_enabled", False)),
            starting_address=ValidatedAddress.from_dict(data.get("starting_address") or {}),
            destination_address=ValidatedAddress.from_dict(data.get("destination_address") or {}),
            preparation_minutes=int(data.get("preparation_minutes", 0)),
            travel_method=TravelMethod(data.get("travel_method", TravelMethod.DRIVE.value)),
            weather_adjustment=bool(data.get("weather_adjustment", False)),
            traffic_adjustment=bool(data.get("traffic_adjustment", False)),
            transit_adjustment=bool(data.get("transit_adjustment", False)),
            sound_tone=str(data.get("sound_tone", "Alarm.caf")),
            volume=float(data.get("volume", 0.5)),
            vibration_enabled=bool(data.get("vibration_enabled", True)),
            snooze_enabled=bool(data.get("snooze_enabled", False)),
            max_snoozes=int(data.get("max_snoozes", 2)),
            snooze_minutes=int(data.get("snooze_minutes", 9)),
            current_adjustment=AlarmAdjustment.from_dict(adjustment) if adjustment else None,
        )


@dataclass(frozen=True)
class UserProfile:
    """
    Per-user context flattened into calculation requests.

    An empty ``email`` is sent as the ``guest_user`` identity.
    """

    email: str = ""
    commute_buffer_minutes: int = 10
    travel_method: TravelMethod = TravelMethod.DRIVE
    snooze_duration_minutes: int = 9
    limit_snooze: bool = False
    max_snoozes: int = 2
    home_address: Optional[ValidatedAddress] = None
    work_address: Optional[ValidatedAddress] = None

    @property
    def user_id(self) -> str:
        return self.email or "guest_user"
