from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import yaml
from dotenv import load_dotenv

from smartwake.domain.models import TravelMethod, UserProfile, ValidatedAddress


@dataclass(frozen=True)
class CalculationServiceSettings:
    """Calculation service endpoint and auth."""
    url: str
    auth_header: Optional[str] = None
    timeout_s: float = 30.0
    verify_tls: bool = True


@dataclass(frozen=True)
class RateLimiterSettings:
    max_requests_per_interval: int = 1
    interval_minutes: float = 15.0
    batching_window_s: float = 2.0


@dataclass(frozen=True)
class RefreshSettings:
    """Weather adjustment refresh loop and housekeeping periods."""
    lookahead_hours: float = 24.0
    min_recalculation_interval_s: float = 60.0
    refresh_interval_s: float = 900.0
    lifecycle_interval_s: float = 60.0


@dataclass(frozen=True)
class CoordinatorSettings:
    deletion_grace_s: float = 0.5
    max_workers: int = 4


@dataclass(frozen=True)
class StorageSettings:
    """Alarm persistence. ``path`` None keeps alarms in memory only."""
    path: Optional[str] = "alarms.json"
    key: str = "alarms_v3"
    max_alarm_count: int = 50


@dataclass(frozen=True)
class AppConfig:
    """
    Root application configuration loaded from YAML.

    This is the single source of truth for runtime-tunable values.
    """
    calculation_service: CalculationServiceSettings
    rate_limiter: RateLimiterSettings = field(default_factory=RateLimiterSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    user: UserProfile = field(default_factory=UserProfile)
    timezone: Optional[str] = None

    @property
    def tz(self) -> tzinfo:
        """Zone for alarm wall-clock times; the system local zone when unset."""
        if self.timezone:
            return ZoneInfo(self.timezone)
        return _local_tz()

    @property
    def rate_limit_interval(self) -> timedelta:
        return timedelta(minutes=self.rate_limiter.interval_minutes)


def _local_tz() -> tzinfo:
    tz = datetime.now().astimezone().tzinfo
    assert tz is not None
    return tz


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) SMARTWAKE_CONFIG env var if provided
    2) config.yaml next to the interpreter
    3) ./config.yaml in current working directory
    """
    env = os.getenv("SMARTWAKE_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    exe_dir = Path(sys.executable).resolve().parent
    candidate = exe_dir / "config.yaml"
    if candidate.exists():
        return candidate

    return Path("config.yaml").resolve()


def _address(raw: Optional[Dict[str, Any]]) -> Optional[ValidatedAddress]:
    if not raw:
        return None
    return ValidatedAddress.from_dict(raw)


def _bearer(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value if value.startswith("Bearer ") else f"Bearer {value}"


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from YAML and convert into typed config objects.

    A ``.env`` file next to the config is loaded first. ``SMARTWAKE_CALC_URL``
    and ``SMARTWAKE_CALC_TOKEN`` override the calculation service URL and
    token.

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Returns
    -------
    AppConfig
        Parsed and validated configuration.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If required fields are missing or invalid.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    load_dotenv(cfg_path.parent / ".env")
    raw = _read_yaml(cfg_path)

    # ---- calculation service ----
    c = raw.get("calculation_service") or {}
    url = os.getenv("SMARTWAKE_CALC_URL") or c.get("url")
    if not url:
        raise ValueError("calculation_service.url is required")
    calculation_service = CalculationServiceSettings(
        url=str(url),
        auth_header=_bearer(os.getenv("SMARTWAKE_CALC_TOKEN") or c.get("auth_header")),
        timeout_s=float(c.get("timeout_s", 30.0)),
        verify_tls=bool(c.get("verify_tls", True)),
    )

    # ---- rate limiter ----
    r = raw.get("rate_limiter") or {}
    rate_limiter = RateLimiterSettings(
        max_requests_per_interval=int(r.get("max_requests_per_interval", 1)),
        interval_minutes=float(r.get("interval_minutes", 15)),
        batching_window_s=float(r.get("batching_window_s", 2.0)),
    )

    # ---- refresh ----
    f = raw.get("refresh") or {}
    refresh = RefreshSettings(
        lookahead_hours=float(f.get("lookahead_hours", 24)),
        min_recalculation_interval_s=float(f.get("min_recalculation_interval_s", 60)),
        refresh_interval_s=float(f.get("refresh_interval_s", 900)),
        lifecycle_interval_s=float(f.get("lifecycle_interval_s", 60)),
    )

    # ---- coordinator ----
    d = raw.get("coordinator") or {}
    coordinator = CoordinatorSettings(
        deletion_grace_s=float(d.get("deletion_grace_s", 0.5)),
        max_workers=int(d.get("max_workers", 4)),
    )

    # ---- storage ----
    s = raw.get("storage") or {}
    storage_path = s.get("path", "alarms.json")
    if storage_path:
        p = Path(str(storage_path)).expanduser()
        storage_path = str(p if p.is_absolute() else cfg_path.parent / p)
    storage = StorageSettings(
        path=storage_path or None,
        key=str(s.get("key", "alarms_v3")),
        max_alarm_count=int(s.get("max_alarm_count", 50)),
    )

    # ---- user ----
    u = raw.get("user") or {}
    user = UserProfile(
        email=str(u.get("email") or ""),
        commute_buffer_minutes=int(u.get("commute_buffer_minutes", 10)),
        travel_method=TravelMethod(u.get("travel_method", TravelMethod.DRIVE.value)),
        snooze_duration_minutes=int(u.get("snooze_duration_minutes", 9)),
        limit_snooze=bool(u.get("limit_snooze", False)),
        max_snoozes=int(u.get("max_snoozes", 2)),
        home_address=_address(u.get("home_address")),
        work_address=_address(u.get("work_address")),
    )

    tz_name = raw.get("timezone")
    if tz_name:
        ZoneInfo(str(tz_name))  # raises on unknown zones

    return AppConfig(
        calculation_service=calculation_service,
        rate_limiter=rate_limiter,
        refresh=refresh,
        coordinator=coordinator,
        storage=storage,
        user=user,
        timezone=str(tz_name) if tz_name else None,
    )
