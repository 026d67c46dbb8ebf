"""
Unit tests for smartwake.transport.calculation_client.SmartAlarmCalculationClient.

These tests validate using a fake requests session:
- request parameters (URL, headers, timeout, TLS verification, body)
- the adjustment produced for earlier, later and below-threshold wake times
- time relationship validation before any network call
- mapping of transport, status and body failures onto SmartAlarmError
- cancellation observed before sending and before returning
- the bounded response history

No real network requests are made.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from smartwake.domain.errors import (
    CalculationCancelled,
    DecodingError,
    HttpError,
    InvalidResponseError,
    InvalidTimeRelationshipError,
    InvalidURLError,
    NetworkError,
    ServerError,
)
from smartwake.domain.models import UserProfile
from smartwake.services.cancellation import CancellationToken
from smartwake.transport.calculation_client import (
    HISTORY_SIZE,
    CalculationServiceConfig,
    SmartAlarmCalculationClient,
)

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)
CFG = CalculationServiceConfig(url="https://calc.example.com/calculate", timeout_s=5.0, auth_header="Bearer t")


def _client(session) -> SmartAlarmCalculationClient:
    return SmartAlarmCalculationClient(CFG, session=session)


def test_request_parameters(make_alarm, wake_session) -> None:
    session = wake_session("2026-03-10T06:42:00Z")
    alarm = make_alarm()

    _client(session).request_wake_time(alarm, UserProfile(), force_recalculation=True, now=NOW)

    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == CFG.url
    assert call["headers"] == {"Content-Type": "application/json", "Authorization": "Bearer t"}
    assert call["timeout"] == 5.0
    assert call["verify"] is True
    assert call["json"]["arrival_time"] == "2026-03-10T08:30:00Z"
    assert call["json"]["force_recalculation"] is True


def test_earlier_wake_time_yields_positive_adjustment(make_alarm, wake_session) -> None:
    alarm = make_alarm()

    adj = _client(wake_session("2026-03-10T06:42:00Z")).calculate(alarm, UserProfile(), now=NOW)

    assert adj is not None
    assert adj.adjustment_minutes == 18
    assert adj.adjusted_wake_time == datetime(2026, 3, 10, 6, 42, tzinfo=UTC)
    assert adj.occurrence_time == datetime(2026, 3, 10, 7, 0, tzinfo=UTC)
    assert adj.reason == "Weather: +12min, Traffic: +6min"
    assert adj.breakdown is not None and adj.breakdown.weather_delays == 12


def test_later_wake_time_yields_negative_adjustment(make_alarm, wake_session) -> None:
    adj = _client(wake_session("2026-03-10T07:10:00Z")).calculate(make_alarm(), UserProfile(), now=NOW)

    assert adj is not None
    assert adj.adjustment_minutes == -10
    assert adj.summary() == "10 extra minutes"


def test_deviation_below_noise_floor_yields_none(make_alarm, wake_session) -> None:
    assert _client(wake_session("2026-03-10T06:59:00Z")).calculate(make_alarm(), UserProfile(), now=NOW) is None


def test_past_occurrence_is_rejected_before_request(make_alarm, wake_session) -> None:
    session = wake_session("2026-03-10T06:42:00Z")
    alarm = make_alarm(alarm_time=NOW - timedelta(minutes=1))

    with pytest.raises(InvalidTimeRelationshipError):
        _client(session).request_wake_time(alarm, UserProfile(), now=NOW)
    assert session.calls == []


def test_arrival_before_occurrence_is_rejected(make_alarm, wake_session) -> None:
    alarm = make_alarm()
    with pytest.raises(InvalidTimeRelationshipError):
        _client(wake_session("2026-03-10T06:42:00Z")).request_wake_time(
            alarm, UserProfile(), arrival_time=datetime(2026, 3, 10, 6, 0, tzinfo=UTC), now=NOW
        )


def test_invalid_url(make_alarm, wake_session) -> None:
    client = SmartAlarmCalculationClient(CalculationServiceConfig(url="not a url"), session=wake_session("x"))
    with pytest.raises(InvalidURLError):
        client.request_wake_time(make_alarm(), UserProfile(), now=NOW)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (requests.exceptions.ConnectTimeout("slow"), NetworkError),
        (requests.exceptions.ConnectionError("down"), NetworkError),
        (requests.exceptions.InvalidURL("bad"), InvalidURLError),
        (requests.exceptions.ChunkedEncodingError("cut"), InvalidResponseError),
        (requests.exceptions.TooManyRedirects("loop"), NetworkError),
    ],
)
def test_transport_errors_are_mapped(make_alarm, exc, expected) -> None:
    session = MagicMock()
    session.post.side_effect = exc

    with pytest.raises(expected):
        _client(session).request_wake_time(make_alarm(), UserProfile(), now=NOW)


def test_error_body_maps_to_server_error(make_alarm, session_for, response) -> None:
    session = session_for(lambda body: response(status_code=400, payload={"error": "missing arrival"}))
    with pytest.raises(ServerError) as ei:
        _client(session).request_wake_time(make_alarm(), UserProfile(), now=NOW)
    assert ei.value.message == "missing arrival"


def test_other_status_maps_to_http_error(make_alarm, session_for, response) -> None:
    session = session_for(lambda body: response(status_code=503, text="unavailable"))
    with pytest.raises(HttpError) as ei:
        _client(session).request_wake_time(make_alarm(), UserProfile(), now=NOW)
    assert ei.value.status_code == 503


def test_non_json_and_malformed_bodies_map_to_decoding_error(make_alarm, session_for, response) -> None:
    with pytest.raises(DecodingError):
        _client(session_for(lambda body: response(payload=None))).request_wake_time(
            make_alarm(), UserProfile(), now=NOW
        )
    with pytest.raises(DecodingError):
        _client(session_for(lambda body: response(payload={"wake_time": "2026-03-10T06:42:00Z"}))).request_wake_time(
            make_alarm(), UserProfile(), now=NOW
        )


def test_cancelled_token_prevents_request(make_alarm, wake_session) -> None:
    session = wake_session("2026-03-10T06:42:00Z")
    token = CancellationToken()
    token.cancel()

    with pytest.raises(CalculationCancelled):
        _client(session).request_wake_time(make_alarm(), UserProfile(), cancel_token=token, now=NOW)
    assert session.calls == []


def test_cancellation_during_request_discards_response(make_alarm, session_for, response, body) -> None:
    token = CancellationToken()

    def respond(request_body):
        token.cancel()
        return response(payload=body("2026-03-10T06:42:00Z"))

    client = _client(session_for(respond))
    with pytest.raises(CalculationCancelled):
        client.request_wake_time(make_alarm(), UserProfile(), cancel_token=token, now=NOW)
    assert client.last_response is None


def test_history_is_bounded_and_filterable(make_alarm, wake_session) -> None:
    client = _client(wake_session("2026-03-10T06:42:00Z"))
    a, b = make_alarm(), make_alarm()

    for _ in range(HISTORY_SIZE):
        client.request_wake_time(a, UserProfile(), now=NOW)
    client.request_wake_time(b, UserProfile(), now=NOW)

    assert len(client.recent_responses()) == HISTORY_SIZE
    assert len(client.recent_responses(b.id)) == 1
    assert client.clear_history_for_alarm(a.id) == HISTORY_SIZE - 1
    assert client.last_response is not None
