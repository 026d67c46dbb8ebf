"""
Shared pytest fixtures.

All times are UTC so occurrence arithmetic never crosses a DST boundary.
The reference instant is Tuesday 2026-03-10 05:00 UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from smartwake.domain.models import Alarm, Coordinates, OneTime, ValidatedAddress

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)


def address(city: str = "Springfield", street: str = "1 Main St") -> ValidatedAddress:
    return ValidatedAddress(
        label=None,
        street=street,
        city=city,
        state="IL",
        zip="62701",
        formatted_address=f"{street}, {city}, IL 62701",
        coordinates=Coordinates(latitude=39.8, longitude=-89.6),
    )


def at(hour: int, minute: int, day: int = 10) -> datetime:
    """2026-03-<day> at hour:minute UTC."""
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


def service_body(
    wake_time: str,
    arrival_time: str = "2026-03-10T08:30:00Z",
    explanation: Optional[List[Dict[str, Any]]] = None,
    snooze_buffer: int = 0,
    confidence: float = 0.85,
) -> Dict[str, Any]:
    """Minimal well-formed calculation service response body."""
    return {
        "wake_time": wake_time,
        "arrival_time": arrival_time,
        "total_preparation_minutes": 108,
        "breakdown": {
            "preparation_time": 45,
            "base_commute": 25,
            "commute_buffer": 10,
            "snooze_buffer": snooze_buffer,
            "weather_delays": 12,
            "traffic_delays": 6,
            "transit_delays": 0,
            "accuracy_adjustment": 0,
            "time_available_minutes": 90,
        },
        "explanation": explanation if explanation is not None else [
            {"type": "weather", "reason": "Heavy rain expected", "minutes": 12},
            {"type": "traffic", "reason": "Congestion on I-55", "minutes": 6},
        ],
        "confidence_score": confidence,
        "recommendations": [],
        "route_info": {"duration_min": 31, "conditions": []},
        "calculated_at": "2026-03-10T05:00:00Z",
    }


@dataclass
class FakeResponse:
    status_code: int = 200
    payload: Any = None
    text: str = ""

    def json(self) -> Any:
        if self.payload is None:
            raise ValueError("no JSON body")
        return self.payload


@dataclass
class FakeSession:
    """Records posts and answers each with ``respond(body)``."""

    respond: Callable[[Dict[str, Any]], FakeResponse]
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def post(self, url: str, json: Dict[str, Any], headers: Dict[str, str], timeout: float, verify: bool):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout, "verify": verify})
        return self.respond(json)


@pytest.fixture()
def make_alarm() -> Callable[..., Alarm]:
    """Factory for a one-time smart alarm at 07:00 arriving 08:30 on 2026-03-10."""

    def _make(**overrides: Any) -> Alarm:
        fields: Dict[str, Any] = dict(
            name="Work",
            alarm_time=at(7, 0),
            arrival_time=at(8, 30),
            schedule=OneTime(),
            smart_enabled=True,
            starting_address=address("Springfield"),
            destination_address=address("Chicago", "200 State St"),
            preparation_minutes=45,
            weather_adjustment=True,
            traffic_adjustment=True,
        )
        fields.update(overrides)
        return Alarm(**fields)

    return _make


@pytest.fixture()
def wake_session() -> Callable[[str], FakeSession]:
    """Factory for a session answering every request with the given wake time."""

    def _make(wake_time: str) -> FakeSession:
        return FakeSession(respond=lambda body: FakeResponse(payload=service_body(wake_time)))

    return _make


@pytest.fixture()
def body() -> Callable[..., Dict[str, Any]]:
    return service_body


@pytest.fixture()
def session_for() -> Callable[[Callable[[Dict[str, Any]], FakeResponse]], FakeSession]:
    """Factory for a session answering with ``respond(request_body)``."""
    return lambda respond: FakeSession(respond=respond)


@pytest.fixture()
def response() -> type:
    return FakeResponse


@pytest.fixture()
def addr() -> Callable[..., ValidatedAddress]:
    return address
