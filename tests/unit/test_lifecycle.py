"""
Unit tests for smartwake.runtime.lifecycle_thread.LifecycleThread and
smartwake.runtime.app_runtime.AppRuntime.

These tests validate:
- a housekeeping tick delivering due notifications, expiring passed alarms
  and re-arming missing notifications
- the runtime starting both threads and stopping cleanly, including when it
  was never started
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

from smartwake.core.state.alarm_store import AlarmStore
from smartwake.domain.models import RepeatingDays, UserProfile, Weekday
from smartwake.notification.base import InMemoryNotificationCenter
from smartwake.notification.scheduler import NotificationScheduler
from smartwake.runtime.app_runtime import AppRuntime, AppRuntimeConfig
from smartwake.runtime.event_bus import EventBus
from smartwake.runtime.lifecycle_thread import LifecycleThread
from smartwake.runtime.refresh_loop import RefreshConfig
from smartwake.services.coordinator import DataCoordinator
from smartwake.transport.calculation_client import CalculationServiceConfig, SmartAlarmCalculationClient

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)
OCC = datetime(2026, 3, 10, 7, 0, tzinfo=UTC)


def _parts(session, clock=lambda: NOW):
    bus = EventBus()
    store = AlarmStore(bus=bus)
    center = InMemoryNotificationCenter()
    client = SmartAlarmCalculationClient(CalculationServiceConfig(url="https://calc.test/calculate"), session=session)
    coordinator = DataCoordinator(
        store=store,
        client=client,
        scheduler=NotificationScheduler(center),
        profile=UserProfile(),
        bus=bus,
        clock=clock,
    )
    return bus, store, center, client, coordinator


def test_tick_delivers_expires_and_rearms(make_alarm, wake_session) -> None:
    _, store, center, _, coordinator = _parts(wake_session("2026-03-10T06:42:00Z"))
    try:
        one_time = coordinator.create_alarm(make_alarm(smart_enabled=False))
        weekly = coordinator.create_alarm(
            make_alarm(smart_enabled=False, name="Weekly", schedule=RepeatingDays([Weekday.WEDNESDAY]))
        )
        center.remove_pending([f"{weekly.id}-wednesday"])

        lifecycle = LifecycleThread(coordinator, threading.Event(), center=center, clock=lambda: NOW)

        lifecycle.tick(OCC)
        assert center.get(str(one_time.id)) is None  # delivered
        assert store.contains(one_time.id)
        assert center.get(f"{weekly.id}-wednesday") is not None  # re-armed

        lifecycle.tick(OCC + timedelta(minutes=6))
        assert not store.contains(one_time.id)
    finally:
        coordinator.close()


def test_runtime_start_and_stop(make_alarm, wake_session) -> None:
    session = wake_session("2026-03-10T06:42:00Z")
    bus, store, center, client, coordinator = _parts(session)
    store.add(make_alarm())

    runtime = AppRuntime(
        cfg=AppRuntimeConfig(refresh=RefreshConfig(refresh_interval_s=60.0), lifecycle_interval_s=60.0),
        store=store,
        coordinator=coordinator,
        client=client,
        profile=UserProfile(),
        bus=bus,
        center=center,
        clock=lambda: NOW,
    )

    runtime.start()
    deadline = time.monotonic() + 5.0
    while runtime.refresh_loop.last_update_time is None and time.monotonic() < deadline:
        time.sleep(0.01)
    runtime.on_foreground()
    runtime.stop()

    assert runtime.refresh_loop.last_update_time == NOW
    assert len(session.calls) == 1


def test_runtime_stop_without_start(wake_session) -> None:
    bus, store, center, client, coordinator = _parts(wake_session("2026-03-10T06:42:00Z"))
    runtime = AppRuntime(
        cfg=AppRuntimeConfig(),
        store=store,
        coordinator=coordinator,
        client=client,
        profile=UserProfile(),
        bus=bus,
        center=center,
    )
    runtime.stop()
