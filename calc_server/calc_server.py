from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from functools import wraps
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from loguru import logger

# Load .env from EXE directory (so it stays editable in production)
EXE_DIR = Path(sys.executable).resolve().parent if getattr(sys, "frozen", False) else Path(__file__).resolve().parent
load_dotenv(EXE_DIR / ".env")

app = Flask(__name__)

EXPECTED_TOKEN = os.getenv("CALC_TOKEN", "dev-token")
BASE_COMMUTE_MIN = int(os.getenv("CALC_BASE_COMMUTE_MIN", "20"))
WEATHER_DELAY_MIN = int(os.getenv("CALC_WEATHER_DELAY_MIN", "0"))
TRAFFIC_DELAY_MIN = int(os.getenv("CALC_TRAFFIC_DELAY_MIN", "0"))

CALCULATIONS: list[dict] = []
MAX_CALCULATIONS = 500


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse(value: str) -> datetime:
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    dt = datetime.fromisoformat(text)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def require_bearer(fn):
    """API endpoints: Bearer token required."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth.removeprefix("Bearer ").strip()
            if token == EXPECTED_TOKEN:
                return fn(*args, **kwargs)
            return jsonify({"error": "invalid token"}), 403

        return jsonify({"error": "unauthorized"}), 401
    return wrapper


def calculate_wake_time(body: dict, now: datetime) -> dict:
    """
    Deterministic wake-time calculation.

    Works backwards from the arrival time: preparation, base commute,
    commute buffer, then the configured weather and traffic delays. The
    snooze buffer only applies when the user limits snoozes.

    Raises
    ------
    KeyError, TypeError, ValueError
        On a malformed request body.
    """
    profile = body["user_profile"]
    settings = body["alarm_settings"]
    arrival = _parse(body["arrival_time"])

    prep = int(settings["preparation_minutes"])
    buffer = int(profile.get("commute_buffer_minutes") or 0)
    weather = WEATHER_DELAY_MIN if settings.get("weather_adjustments_enabled") else 0
    traffic = TRAFFIC_DELAY_MIN if settings.get("traffic_adjustments_enabled") else 0
    snooze = 0
    if settings.get("snooze_enabled") and profile.get("limit_snooze"):
        snooze = int(profile.get("snooze_duration_minutes") or 0) * int(profile.get("max_snoozes") or 0)

    total = prep + BASE_COMMUTE_MIN + buffer + weather + traffic + snooze
    wake = arrival - timedelta(minutes=total)
    original = _parse(settings["original_time"])
    route = f"{settings.get('starting_address', '')} → {settings.get('destination_address', '')}"

    explanation = []
    if weather:
        explanation.append({"type": "weather", "reason": "Weather delays expected", "minutes": weather})
    if traffic:
        explanation.append({"type": "traffic", "reason": "Heavier traffic than usual", "minutes": traffic})

    conditions = [{"description": "Congestion", "delay_minutes": traffic}] if traffic else []

    return {
        "wake_time": _iso(wake),
        "arrival_time": _iso(arrival),
        "total_preparation_minutes": total,
        "extra_time_minutes": max(0, int((wake - original).total_seconds() // 60)),
        "breakdown": {
            "preparation_time": prep,
            "base_commute": BASE_COMMUTE_MIN,
            "commute_buffer": buffer,
            "snooze_buffer": snooze,
            "weather_delays": weather,
            "traffic_delays": traffic,
            "transit_delays": 0,
            "accuracy_adjustment": 0,
            "time_available_minutes": int((arrival - original).total_seconds() // 60),
        },
        "explanation": explanation,
        "confidence_score": 0.9 if (weather or traffic) else 0.95,
        "recommendations": [],
        "route_info": {"duration_min": BASE_COMMUTE_MIN + traffic, "conditions": conditions},
        "traffic_info": {
            "base_duration_minutes": BASE_COMMUTE_MIN,
            "current_delay_minutes": traffic,
            "total_duration_minutes": BASE_COMMUTE_MIN + traffic,
            "conditions": conditions,
            "route_summary": route,
        },
        "calculated_at": _iso(now),
    }


@app.post("/calculate")
@require_bearer
def calculate():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "expected a JSON object"}), 400

    try:
        result = calculate_wake_time(data, _now())
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": f"invalid request: {e}"}), 400

    CALCULATIONS.append({"received_at": _iso(_now()), "body": data, "result": result})
    if len(CALCULATIONS) > MAX_CALCULATIONS:
        del CALCULATIONS[:-MAX_CALCULATIONS]

    alarm_id = data["alarm_settings"].get("alarm_id")
    logger.info(f"calculated {alarm_id}: wake {result['wake_time']}")

    return jsonify(result), 200


@app.get("/api/calculations/recent")
@require_bearer
def api_recent():
    recent = list(reversed(CALCULATIONS[-200:]))
    return jsonify({"count": len(CALCULATIONS), "calculations": recent}), 200


@app.get("/health")
def health():
    return jsonify({"status": "ok"}), 200


if __name__ == "__main__":
    # IMPORTANT for EXE: do NOT use debug=True in production
    app.run(host="0.0.0.0", port=8000, debug=False)
