from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from smartwake.core.rate_limiter import RateLimiter, utc_now
from smartwake.core.state.alarm_store import AlarmStore
from smartwake.domain.models import UserProfile
from smartwake.notification.base import InMemoryNotificationCenter
from smartwake.runtime.event_bus import EventBus
from smartwake.runtime.lifecycle_thread import LifecycleThread
from smartwake.runtime.refresh_loop import RefreshConfig, WeatherAdjustmentRefreshLoop
from smartwake.services.coordinator import DataCoordinator
from smartwake.transport.calculation_client import SmartAlarmCalculationClient


@dataclass(frozen=True)
class AppRuntimeConfig:
    """
    Runtime configuration for the background threads.

    Parameters
    ----------
    refresh
        Weather adjustment refresh loop settings.
    lifecycle_interval_s
        Period of the housekeeping thread.
    """

    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    lifecycle_interval_s: float = 60.0


class AppRuntime:
    """
    Thread supervisor for the smart alarm core.

    This class owns:
    - a shared stop event
    - the weather adjustment refresh loop thread
    - the lifecycle (expiry / re-arm) thread

    Thread Topology
    ---------------
    1) WeatherAdjustmentRefreshLoop
       - wakes on store events, :meth:`on_foreground` or its interval
       - recalculates eligible alarms and writes back via the coordinator

    2) LifecycleThread
       - delivers due notifications (in-memory center)
       - expires passed alarms and re-arms notifications

    Update-triggered recalculations run on the coordinator's executor and
    batched ones on the rate limiter's timer thread; neither is owned here.
    """

    def __init__(
        self,
        cfg: AppRuntimeConfig,
        store: AlarmStore,
        coordinator: DataCoordinator,
        client: SmartAlarmCalculationClient,
        profile: UserProfile,
        bus: EventBus,
        rate_limiter: Optional[RateLimiter] = None,
        center: Optional[InMemoryNotificationCenter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._cfg = cfg
        self._coordinator = coordinator
        self._limiter = rate_limiter
        self._stop = threading.Event()

        self.refresh_loop = WeatherAdjustmentRefreshLoop(
            store=store,
            coordinator=coordinator,
            client=client,
            profile=profile,
            bus=bus,
            rate_limiter=rate_limiter,
            cfg=cfg.refresh,
            clock=clock,
            stop_event=self._stop,
        )

        self._lifecycle = LifecycleThread(
            coordinator=coordinator,
            stop_event=self._stop,
            interval_s=cfg.lifecycle_interval_s,
            center=center,
            clock=clock,
        )

    def start(self) -> None:
        """Start the refresh loop first so its initial sweep runs before housekeeping."""
        self.refresh_loop.start()
        self._lifecycle.start()

    def on_foreground(self) -> None:
        """App returned to the foreground: housekeeping now, then a refresh sweep."""
        self._lifecycle.tick()
        self.refresh_loop.trigger()

    def stop(self) -> None:
        """
        Stop all runtime threads and release collaborators.

        Stop is cooperative: threads observe the shared stop event.
        """
        self.refresh_loop.stop()
        self._lifecycle.stop()

        self.refresh_loop.join(timeout=2.0)
        self._lifecycle.join(timeout=2.0)

        self.refresh_loop.close()
        self._coordinator.close()
        if self._limiter is not None:
            self._limiter.close()
