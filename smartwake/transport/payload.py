from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from smartwake.domain.errors import DecodingError
from smartwake.domain.models import Alarm, SpecificDate, UserProfile, ValidatedAddress
from smartwake.transport.timestamps import format_service_timestamp, parse_service_timestamp

Location = Tuple[float, float]


# ---------- request ----------

def _address(addr: Optional[ValidatedAddress]) -> Optional[str]:
    return addr.full_address() if addr is not None else None


def _specific_date(alarm: Alarm) -> Optional[str]:
    if isinstance(alarm.schedule, SpecificDate):
        return alarm.schedule.date.strftime("%Y-%m-%d")
    return None


def build_user_profile_payload(alarm: Alarm, profile: UserProfile) -> Dict[str, Any]:
    """
    Flatten the user profile for the calculation service.

    Fields the app does not track yet (sleep goals, history-based accuracy)
    are sent as null so the service applies its own defaults.
    """
    return {
        "user_id": profile.user_id,
        "default_preparation_minutes": alarm.preparation_minutes,
        "commute_buffer_minutes": profile.commute_buffer_minutes,
        "snooze_duration_minutes": profile.snooze_duration_minutes,
        "minimum_sleep_hours": None,
        "preferred_wake_time_earliest": None,
        "preferred_wake_time_latest": None,
        "limit_snooze": profile.limit_snooze,
        "max_snoozes": profile.max_snoozes,
        "average_snoozes_per_alarm": None,
        "default_travel_method": profile.travel_method.wire_value,
        "weather_sensitivity_multiplier": 1.0,
        "home_address": _address(profile.home_address),
        "work_address": _address(profile.work_address),
        "historical_accuracy_rate": None,
        "average_actual_prep_time": None,
        "late_frequency": None,
        "weather_adjustments_enabled": alarm.weather_adjustment,
        "traffic_adjustments_enabled": alarm.traffic_adjustment,
        "transit_adjustments_enabled": alarm.transit_adjustment,
        "learning_adjustments_enabled": True,
    }


def build_alarm_settings_payload(alarm: Alarm, occurrence: datetime, arrival: datetime) -> Dict[str, Any]:
    return {
        "alarm_id": str(alarm.id).upper(),
        "alarm_name": alarm.name,
        "original_time": format_service_timestamp(occurrence),
        "arrival_time": format_service_timestamp(arrival),
        "starting_address": alarm.starting_address.full_address(),
        "destination_address": alarm.destination_address.full_address(),
        "travel_method": alarm.travel_method.wire_value,
        "preparation_minutes": alarm.preparation_minutes,
        "smart_enabled": alarm.smart_enabled,
        "weather_adjustments_enabled": alarm.weather_adjustment,
        "traffic_adjustments_enabled": alarm.traffic_adjustment,
        "transit_adjustments_enabled": alarm.transit_adjustment,
        "is_repeating": alarm.is_repeating,
        "specific_date": _specific_date(alarm),
        "is_enabled": alarm.is_enabled,
        "snooze_enabled": alarm.snooze_enabled,
        "vibration_enabled": alarm.vibration_enabled,
    }


def build_request(
    alarm: Alarm,
    profile: UserProfile,
    occurrence: datetime,
    arrival: datetime,
    current_location: Optional[Location] = None,
    force_recalculation: bool = False,
) -> Dict[str, Any]:
    """
    Build the JSON body for one wake-time calculation.

    Parameters
    ----------
    alarm
        Alarm being calculated.
    profile
        User context.
    occurrence
        Nominal occurrence the calculation is for.
    arrival
        Arrival target paired with ``occurrence``.
    current_location
        Optional ``(latitude, longitude)`` of the device.
    force_recalculation
        Ask the service to bypass its own cache.

    Returns
    -------
    dict
        JSON-serializable request body. Times are UTC with a ``Z`` suffix.
    """
    location = None
    if current_location is not None:
        lat, lon = current_location
        location = {"lat": float(lat), "lon": float(lon)}

    return {
        "user_profile": build_user_profile_payload(alarm, profile),
        "alarm_settings": build_alarm_settings_payload(alarm, occurrence, arrival),
        "arrival_time": format_service_timestamp(arrival),
        "current_location": location,
        "force_recalculation": force_recalculation,
    }


# ---------- response ----------

@dataclass(frozen=True)
class TimeBreakdown:
    preparation_time: int = 0
    base_commute: int = 0
    commute_buffer: int = 0
    snooze_buffer: int = 0
    weather_delays: int = 0
    traffic_delays: int = 0
    transit_delays: int = 0
    accuracy_adjustment: int = 0
    time_available_minutes: int = 0


@dataclass(frozen=True)
class ExplanationItem:
    type: str
    reason: str
    minutes: int


@dataclass(frozen=True)
class Recommendation:
    type: str
    title: str
    message: str


@dataclass(frozen=True)
class TrafficCondition:
    description: str
    delay_minutes: int


@dataclass(frozen=True)
class RouteInfo:
    duration_min: int = 0
    conditions: List[TrafficCondition] = field(default_factory=list)


@dataclass(frozen=True)
class WeatherConditionDetail:
    location: str
    temperature: float
    precipitation: float
    weather_type: str
    visibility: float
    wind_speed: float


@dataclass(frozen=True)
class WeatherInfo:
    conditions: List[WeatherConditionDetail]
    average_temperature: float
    average_precipitation: float
    worst_visibility: float
    max_wind_speed: float
    summary: str
    alerts: List[str]


@dataclass(frozen=True)
class TrafficInfo:
    base_duration_minutes: int
    current_delay_minutes: int
    total_duration_minutes: int
    conditions: List[TrafficCondition]
    route_summary: str


@dataclass(frozen=True)
class SmartAlarmResponse:
    """Decoded calculation service response. Timestamps are timezone-aware."""

    wake_time: datetime
    arrival_time: datetime
    total_preparation_minutes: int
    breakdown: TimeBreakdown
    explanation: List[ExplanationItem]
    confidence_score: float
    recommendations: List[Recommendation]
    route_info: RouteInfo
    calculated_at: datetime
    extra_time_minutes: int = 0
    weather_info: Optional[WeatherInfo] = None
    traffic_info: Optional[TrafficInfo] = None


def _delay_minutes(value: Any) -> int:
    # The service sends either an int or a numeric string.
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return int(value)


def _traffic_condition(obj: Dict[str, Any]) -> TrafficCondition:
    return TrafficCondition(
        description=str(obj["description"]),
        delay_minutes=_delay_minutes(obj["delay_minutes"]),
    )


def _breakdown(obj: Dict[str, Any]) -> TimeBreakdown:
    return TimeBreakdown(
        preparation_time=int(obj["preparation_time"]),
        base_commute=int(obj["base_commute"]),
        commute_buffer=int(obj["commute_buffer"]),
        snooze_buffer=int(obj["snooze_buffer"]),
        weather_delays=int(obj["weather_delays"]),
        traffic_delays=int(obj["traffic_delays"]),
        transit_delays=int(obj["transit_delays"]),
        accuracy_adjustment=int(obj["accuracy_adjustment"]),
        time_available_minutes=int(obj["time_available_minutes"]),
    )


def _weather_info(obj: Dict[str, Any]) -> WeatherInfo:
    return WeatherInfo(
        conditions=[
            WeatherConditionDetail(
                location=str(c["location"]),
                temperature=float(c["temperature"]),
                precipitation=float(c["precipitation"]),
                weather_type=str(c["weather_type"]),
                visibility=float(c["visibility"]),
                wind_speed=float(c["wind_speed"]),
            )
            for c in obj["conditions"]
        ],
        average_temperature=float(obj["average_temperature"]),
        average_precipitation=float(obj["average_precipitation"]),
        worst_visibility=float(obj["worst_visibility"]),
        max_wind_speed=float(obj["max_wind_speed"]),
        summary=str(obj["summary"]),
        alerts=[str(a) for a in obj["alerts"]],
    )


def _traffic_info(obj: Dict[str, Any]) -> TrafficInfo:
    return TrafficInfo(
        base_duration_minutes=int(obj["base_duration_minutes"]),
        current_delay_minutes=int(obj["current_delay_minutes"]),
        total_duration_minutes=int(obj["total_duration_minutes"]),
        conditions=[_traffic_condition(c) for c in obj["conditions"]],
        route_summary=str(obj["route_summary"]),
    )


def decode_response(obj: Any) -> SmartAlarmResponse:
    """
    Decode a JSON-decoded response body into :class:`SmartAlarmResponse`.

    ``extra_time_minutes`` defaults to 0; ``weather_info`` and
    ``traffic_info`` are optional.

    Raises
    ------
    DecodingError
        If the body is not an object, a required field is missing, a value
        has the wrong type, or a timestamp matches no accepted format.
    """
    if not isinstance(obj, dict):
        raise DecodingError(f"expected a JSON object, got {type(obj).__name__}")

    try:
        route = obj["route_info"]
        weather = obj.get("weather_info")
        traffic = obj.get("traffic_info")
        return SmartAlarmResponse(
            wake_time=parse_service_timestamp(obj["wake_time"]),
            arrival_time=parse_service_timestamp(obj["arrival_time"]),
            total_preparation_minutes=int(obj["total_preparation_minutes"]),
            extra_time_minutes=int(obj.get("extra_time_minutes") or 0),
            breakdown=_breakdown(obj["breakdown"]),
            explanation=[
                ExplanationItem(type=str(e["type"]), reason=str(e["reason"]), minutes=int(e["minutes"]))
                for e in obj["explanation"]
            ],
            confidence_score=float(obj["confidence_score"]),
            recommendations=[
                Recommendation(type=str(r["type"]), title=str(r["title"]), message=str(r["message"]))
                for r in obj["recommendations"]
            ],
            route_info=RouteInfo(
                duration_min=int(route["duration_min"]),
                conditions=[_traffic_condition(c) for c in route["conditions"]],
            ),
            weather_info=_weather_info(weather) if weather is not None else None,
            traffic_info=_traffic_info(traffic) if traffic is not None else None,
            calculated_at=parse_service_timestamp(obj["calculated_at"]),
        )
    except KeyError as e:
        raise DecodingError(f"missing field {e.args[0]!r}") from e
    except (TypeError, ValueError) as e:
        raise DecodingError(str(e)) from e
