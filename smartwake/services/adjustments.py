"""
Mapping from calculation service responses to alarm adjustments.

The nominal reference for ``adjustment_minutes`` is always the alarm's next
occurrence, never the stored template time, so repeating alarms are measured
against the day they will actually ring.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from smartwake.domain.models import (
    NOISE_FLOOR_MINUTES,
    AdjustmentBreakdown,
    Alarm,
    AlarmAdjustment,
)
from smartwake.transport.payload import ExplanationItem, SmartAlarmResponse, TimeBreakdown

DEFAULT_REASON = "Adjusted for optimal arrival"
SIGNIFICANT_MINUTES = 5


class Severity(str, Enum):
    MODERATE = "moderate"
    SEVERE = "severe"
    EXTREME = "extreme"


def adjustment_minutes(nominal: datetime, adjusted: datetime) -> int:
    """Signed whole minutes from ``adjusted`` to ``nominal``; positive means earlier."""
    return int(round((nominal - adjusted).total_seconds() / 60.0))


def build_explanation(items: Iterable[ExplanationItem], breakdown: TimeBreakdown) -> str:
    """
    Summarise explanation items, e.g. ``"Weather: +12min, Traffic: +5min, Snooze buffer: 9min"``.
    """
    items = list(items)
    parts = []

    weather = [i.minutes for i in items if i.type == "weather"]
    if weather:
        parts.append(f"Weather: +{sum(weather)}min")

    traffic = [i.minutes for i in items if i.type == "traffic"]
    if traffic:
        parts.append(f"Traffic: +{sum(traffic)}min")

    if breakdown.snooze_buffer > 0:
        parts.append(f"Snooze buffer: {breakdown.snooze_buffer}min")

    return ", ".join(parts) if parts else DEFAULT_REASON


def build_adjustment(
    response: SmartAlarmResponse,
    alarm: Alarm,
    now: Optional[datetime] = None,
    calculated_at: Optional[datetime] = None,
) -> Optional[AlarmAdjustment]:
    """
    Turn a service response into an adjustment for ``alarm``.

    Returns
    -------
    AlarmAdjustment or None
        None when the alarm has no upcoming occurrence or the deviation is
        below the noise floor (``|minutes| < 2``).
    """
    occurrence = alarm.next_occurrence(now)
    if occurrence is None:
        return None

    minutes = adjustment_minutes(occurrence, response.wake_time)
    if abs(minutes) < NOISE_FLOOR_MINUTES:
        return None

    b = response.breakdown
    return AlarmAdjustment(
        adjusted_wake_time=response.wake_time,
        adjustment_minutes=minutes,
        reason=build_explanation(response.explanation, b),
        calculated_at=calculated_at or now or datetime.now(timezone.utc),
        confidence=min(max(response.confidence_score, 0.0), 1.0),
        breakdown=AdjustmentBreakdown(
            preparation_time=max(b.preparation_time, 0),
            base_commute=max(b.base_commute, 0),
            weather_delays=max(b.weather_delays, 0),
            traffic_delays=max(b.traffic_delays, 0),
            snooze_buffer=max(b.snooze_buffer, 0),
        ),
        occurrence_time=occurrence,
    )


def severity_for(minutes: int) -> Severity:
    m = abs(minutes)
    if m >= 20:
        return Severity.EXTREME
    if m >= 10:
        return Severity.SEVERE
    return Severity.MODERATE


def weather_description(reason: str) -> str:
    text = reason.lower()
    for needle, description in (
        ("rain", "Heavy rain expected"),
        ("snow", "Snow conditions"),
        ("fog", "Low visibility fog"),
        ("wind", "High winds"),
        ("storm", "Storm conditions"),
    ):
        if needle in text:
            return description
    return "Weather conditions"


def route_summary(alarm: Alarm) -> str:
    start = alarm.starting_address.city or alarm.starting_address.label or "Start"
    dest = alarm.destination_address.city or alarm.destination_address.label or "Destination"
    return f"{start} → {dest}"
