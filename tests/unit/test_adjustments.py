"""
Unit tests for smartwake.services.adjustments.

These tests validate:
- signed minute rounding against the next occurrence
- the noise floor
- explanation text assembly
- value clamping and severity/description helpers
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from smartwake.domain.models import RepeatingDays, ValidatedAddress, Weekday
from smartwake.services.adjustments import (
    DEFAULT_REASON,
    Severity,
    adjustment_minutes,
    build_adjustment,
    build_explanation,
    route_summary,
    severity_for,
    weather_description,
)
from smartwake.transport.payload import ExplanationItem, TimeBreakdown, decode_response

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)


def test_adjustment_minutes_rounds_to_nearest() -> None:
    nominal = datetime(2026, 3, 10, 7, 0, tzinfo=UTC)
    assert adjustment_minutes(nominal, datetime(2026, 3, 10, 6, 41, 31, tzinfo=UTC)) == 18
    assert adjustment_minutes(nominal, datetime(2026, 3, 10, 7, 9, 50, tzinfo=UTC)) == -10


def test_explanation_sums_by_type_and_adds_snooze_buffer() -> None:
    items = [
        ExplanationItem(type="weather", reason="rain", minutes=8),
        ExplanationItem(type="weather", reason="wind", minutes=4),
        ExplanationItem(type="traffic", reason="jam", minutes=5),
        ExplanationItem(type="learning", reason="history", minutes=3),
    ]
    assert build_explanation(items, TimeBreakdown(snooze_buffer=9)) == (
        "Weather: +12min, Traffic: +5min, Snooze buffer: 9min"
    )


def test_explanation_falls_back_to_default_reason() -> None:
    assert build_explanation([], TimeBreakdown()) == DEFAULT_REASON


def test_repeating_alarm_measured_against_next_occurrence(make_alarm, body) -> None:
    # Template date is a week old; the occurrence is Wednesday 07:00.
    alarm = make_alarm(
        alarm_time=datetime(2026, 3, 3, 7, 0, tzinfo=UTC),
        arrival_time=datetime(2026, 3, 3, 8, 30, tzinfo=UTC),
        schedule=RepeatingDays([Weekday.WEDNESDAY]),
    )
    response = decode_response(body("2026-03-11T06:45:00Z", arrival_time="2026-03-11T08:30:00Z"))

    adj = build_adjustment(response, alarm, now=NOW)

    assert adj is not None
    assert adj.adjustment_minutes == 15
    assert adj.occurrence_time == datetime(2026, 3, 11, 7, 0, tzinfo=UTC)


def test_confidence_and_breakdown_are_clamped(make_alarm, body) -> None:
    raw = body("2026-03-10T06:30:00Z", confidence=1.7)
    raw["breakdown"]["traffic_delays"] = -4
    adj = build_adjustment(decode_response(raw), make_alarm(), now=NOW)

    assert adj is not None
    assert adj.confidence == 1.0
    assert adj.breakdown is not None and adj.breakdown.traffic_delays == 0


def test_no_occurrence_yields_none(make_alarm, body) -> None:
    alarm = make_alarm(alarm_time=datetime(2026, 3, 10, 4, 0, tzinfo=UTC))
    assert build_adjustment(decode_response(body("2026-03-10T03:00:00Z")), alarm, now=NOW) is None


def test_severity_thresholds() -> None:
    assert severity_for(5) is Severity.MODERATE
    assert severity_for(-10) is Severity.SEVERE
    assert severity_for(20) is Severity.EXTREME


def test_weather_description_and_route_summary(make_alarm) -> None:
    assert weather_description("Weather: heavy Rain") == "Heavy rain expected"
    assert weather_description("Traffic: +5min") == "Weather conditions"

    alarm = make_alarm()
    assert route_summary(alarm) == "Springfield → Chicago"
    unlabeled = replace(alarm, starting_address=ValidatedAddress(label="Home"), destination_address=ValidatedAddress())
    assert route_summary(unlabeled) == "Home → Destination"
