from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from smartwake.core.config.yaml_config import AppConfig, load_app_config
from smartwake.core.rate_limiter import RateLimiter, RateLimiterConfig
from smartwake.core.state.alarm_store import AlarmStore
from smartwake.core.state.persistence import JsonFileStorage, KeyValueStorage, MemoryStorage
from smartwake.notification.base import InMemoryNotificationCenter
from smartwake.notification.scheduler import NotificationScheduler
from smartwake.runtime.app_runtime import AppRuntime, AppRuntimeConfig
from smartwake.runtime.event_bus import EventBus
from smartwake.runtime.refresh_loop import RefreshConfig
from smartwake.services.coordinator import CoordinatorConfig, DataCoordinator
from smartwake.transport.calculation_client import (
    CalculationServiceConfig,
    SmartAlarmCalculationClient,
)


@dataclass(frozen=True)
class AppWiring:
    """Everything a front end needs to drive the smart alarm core."""
    config: AppConfig
    bus: EventBus
    store: AlarmStore
    rate_limiter: RateLimiter
    client: SmartAlarmCalculationClient
    center: InMemoryNotificationCenter
    scheduler: NotificationScheduler
    coordinator: DataCoordinator
    runtime: AppRuntime


def build_storage(cfg: AppConfig) -> KeyValueStorage:
    if cfg.storage.path:
        return JsonFileStorage(cfg.storage.path)
    return MemoryStorage()


def build_client(cfg: AppConfig) -> SmartAlarmCalculationClient:
    svc = cfg.calculation_service
    return SmartAlarmCalculationClient(
        CalculationServiceConfig(
            url=svc.url,
            timeout_s=svc.timeout_s,
            verify_tls=svc.verify_tls,
            auth_header=svc.auth_header,
        )
    )


def build_rate_limiter(cfg: AppConfig, bus: EventBus) -> RateLimiter:
    return RateLimiter(
        RateLimiterConfig(
            max_requests_per_interval=cfg.rate_limiter.max_requests_per_interval,
            interval=cfg.rate_limit_interval,
            batching_window_s=cfg.rate_limiter.batching_window_s,
        ),
        bus=bus,
    )


def build_app_system(config_path: Optional[str] = None) -> AppWiring:
    cfg = load_app_config(config_path)

    # --- EVENT BUS ---
    bus = EventBus()

    # --- STATE ---
    store = AlarmStore(
        storage=build_storage(cfg),
        key=cfg.storage.key,
        bus=bus,
        max_alarm_count=cfg.storage.max_alarm_count,
    )

    # --- RATE LIMITER ---
    # Batches reach the coordinator through BatchReady on the bus.
    limiter = build_rate_limiter(cfg, bus)

    # --- CALCULATION SERVICE ---
    client = build_client(cfg)

    # --- NOTIFICATIONS ---
    center = InMemoryNotificationCenter()
    scheduler = NotificationScheduler(center)

    # --- COORDINATOR ---
    coordinator = DataCoordinator(
        store=store,
        client=client,
        scheduler=scheduler,
        profile=cfg.user,
        bus=bus,
        rate_limiter=limiter,
        cfg=CoordinatorConfig(
            deletion_grace_s=cfg.coordinator.deletion_grace_s,
            max_workers=cfg.coordinator.max_workers,
        ),
    )

    # --- RUNTIME ---
    runtime = AppRuntime(
        cfg=AppRuntimeConfig(
            refresh=RefreshConfig(
                lookahead=timedelta(hours=cfg.refresh.lookahead_hours),
                min_recalculation_interval=timedelta(seconds=cfg.refresh.min_recalculation_interval_s),
                refresh_interval_s=cfg.refresh.refresh_interval_s,
            ),
            lifecycle_interval_s=cfg.refresh.lifecycle_interval_s,
        ),
        store=store,
        coordinator=coordinator,
        client=client,
        profile=cfg.user,
        bus=bus,
        rate_limiter=limiter,
        center=center,
    )

    return AppWiring(
        config=cfg,
        bus=bus,
        store=store,
        rate_limiter=limiter,
        client=client,
        center=center,
        scheduler=scheduler,
        coordinator=coordinator,
        runtime=runtime,
    )
