"""
Unit tests for smartwake.transport.payload.

These tests validate:
- request body shape (user profile, alarm settings, location, UTC times)
- response decoding including optional and loosely typed fields
- malformed responses mapping to DecodingError
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from smartwake.domain.errors import DecodingError
from smartwake.domain.models import SpecificDate, TravelMethod, UserProfile
from smartwake.transport.payload import build_request, decode_response

UTC = timezone.utc
OCC = datetime(2026, 3, 10, 7, 0, tzinfo=UTC)
ARR = datetime(2026, 3, 10, 8, 30, tzinfo=UTC)


def test_build_request_shape(make_alarm) -> None:
    alarm = make_alarm(
        travel_method=TravelMethod.PUBLIC_TRANSIT,
        schedule=SpecificDate(date(2026, 3, 10)),
        snooze_enabled=True,
    )

    body = build_request(alarm, UserProfile(), OCC, ARR, current_location=(41.9, -87.6), force_recalculation=True)

    assert body["arrival_time"] == "2026-03-10T08:30:00Z"
    assert body["current_location"] == {"lat": 41.9, "lon": -87.6}
    assert body["force_recalculation"] is True

    settings = body["alarm_settings"]
    assert settings["alarm_id"] == str(alarm.id).upper()
    assert settings["original_time"] == "2026-03-10T07:00:00Z"
    assert settings["travel_method"] == "transit"
    assert settings["specific_date"] == "2026-03-10"
    assert settings["is_repeating"] is False
    assert settings["snooze_enabled"] is True
    assert settings["starting_address"] == "1 Main St, Springfield, IL, 62701"

    profile = body["user_profile"]
    assert profile["user_id"] == "guest_user"
    assert profile["default_preparation_minutes"] == 45
    assert profile["minimum_sleep_hours"] is None
    assert profile["weather_sensitivity_multiplier"] == 1.0
    assert profile["learning_adjustments_enabled"] is True
    assert profile["home_address"] is None


def test_build_request_without_location(make_alarm) -> None:
    body = build_request(make_alarm(), UserProfile(email="u@x.io"), OCC, ARR)
    assert body["current_location"] is None
    assert body["force_recalculation"] is False
    assert body["alarm_settings"]["specific_date"] is None


def test_decode_full_response(body) -> None:
    raw = body("2026-03-10T06:42:00.000Z")
    raw["traffic_info"] = {
        "base_duration_minutes": 25,
        "current_delay_minutes": 6,
        "total_duration_minutes": 31,
        "conditions": [{"description": "Congestion", "delay_minutes": "6"}],
        "route_summary": "I-55 N",
    }
    raw["weather_info"] = {
        "conditions": [
            {
                "location": "Springfield",
                "temperature": 4.5,
                "precipitation": 0.8,
                "weather_type": "rain",
                "visibility": 3.0,
                "wind_speed": 20,
            }
        ],
        "average_temperature": 4.5,
        "average_precipitation": 0.8,
        "worst_visibility": 3.0,
        "max_wind_speed": 20,
        "summary": "Rain",
        "alerts": [],
    }

    resp = decode_response(raw)

    assert resp.wake_time == datetime(2026, 3, 10, 6, 42, tzinfo=UTC)
    assert resp.extra_time_minutes == 0
    assert resp.breakdown.weather_delays == 12
    assert [e.type for e in resp.explanation] == ["weather", "traffic"]
    assert resp.traffic_info is not None
    assert resp.traffic_info.conditions[0].delay_minutes == 6
    assert resp.weather_info is not None
    assert resp.weather_info.conditions[0].weather_type == "rain"


def test_decode_non_numeric_delay_string_is_zero(body) -> None:
    raw = body("2026-03-10T06:42:00Z")
    raw["route_info"]["conditions"] = [{"description": "Unknown", "delay_minutes": "n/a"}]
    assert decode_response(raw).route_info.conditions[0].delay_minutes == 0


@pytest.mark.parametrize("field", ["wake_time", "breakdown", "route_info", "calculated_at"])
def test_decode_missing_required_field(body, field: str) -> None:
    raw = body("2026-03-10T06:42:00Z")
    del raw[field]
    with pytest.raises(DecodingError):
        decode_response(raw)


def test_decode_rejects_bad_values(body) -> None:
    raw = body("not a time")
    with pytest.raises(DecodingError):
        decode_response(raw)

    with pytest.raises(DecodingError):
        decode_response(["not", "an", "object"])
