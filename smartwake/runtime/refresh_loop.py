from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Set

from smartwake.core.rate_limiter import RateLimiter, utc_now
from smartwake.core.state.alarm_store import AlarmStore
from smartwake.domain.errors import AlarmValidationError, CalculationCancelled, SmartAlarmError
from smartwake.domain.events import AlarmCreated, AlarmDeleted, AlarmUpdated
from smartwake.domain.models import Alarm, AlarmAdjustment, UserProfile
from smartwake.logging_setup import setup_logging
from smartwake.runtime.event_bus import EventBus
from smartwake.services.adjustments import (
    SIGNIFICANT_MINUTES,
    Severity,
    route_summary,
    severity_for,
    weather_description,
)
from smartwake.services.coordinator import DataCoordinator
from smartwake.transport.calculation_client import SmartAlarmCalculationClient

TAG = __name__
logger = setup_logging()


class RefreshPhase(str, Enum):
    """
    What the refresh thread is doing right now.

    Only :meth:`WeatherAdjustmentRefreshLoop.process_alarm_adjustment` moves
    the phase. Whether an update event was caused by the loop itself is
    decided per thread, not from the phase.
    """

    IDLE = "idle"
    CALCULATING = "calculating"
    WRITING_BACK = "writing_back"


@dataclass(frozen=True)
class RefreshConfig:
    """
    Parameters
    ----------
    lookahead
        Only alarms whose next occurrence falls within this window are refreshed.
    min_recalculation_interval
        Minimum time between two calculations for the same alarm.
    refresh_interval_s
        Period of the background sweep when nothing triggers it earlier.
    """

    lookahead: timedelta = timedelta(hours=24)
    min_recalculation_interval: timedelta = timedelta(seconds=60)
    refresh_interval_s: float = 900.0


@dataclass(frozen=True)
class AlarmWithAdjustment:
    alarm: Alarm
    adjustment: AlarmAdjustment
    severity: Severity
    description: str
    route_summary: str

    @property
    def is_significant(self) -> bool:
        return abs(self.adjustment.adjustment_minutes) >= SIGNIFICANT_MINUTES


class WeatherAdjustmentRefreshLoop:
    """
    Periodic and event-driven sweep refreshing smart alarm adjustments.

    Thread Model
    ------------
    A daemon thread waits on a wake event with a timeout of
    ``refresh_interval_s``. :meth:`trigger` (store changes, app foreground)
    wakes it early. Each wake runs :meth:`refresh_all_adjustments`; a sweep
    already in progress causes concurrent requests to be skipped.

    Loop Breakers
    -------------
    - Write-backs go through ``coordinator.update_alarm(...,
      skip_adjustment_calculation=True)``.
    - While :attr:`phase` is WRITING_BACK, :class:`AlarmUpdated` events are
      ignored. Events are delivered synchronously, so the phase is still set
      when the loop's own update event arrives.
    - Events flagged ``skip_weather_refresh`` or for ids no longer in the
      store are ignored as well.

    Parameters
    ----------
    store
        Alarm store (read-only use).
    coordinator
        Data coordinator used for write-backs and the per-alarm processing guard.
    client
        Calculation client.
    profile
        User context sent with each calculation.
    bus
        Optional bus delivering created/updated/deleted events.
    rate_limiter
        Optional limiter consulted during eligibility and recorded on each call.
    cfg
        Refresh configuration.
    clock
        Returns the current aware datetime.
    stop_event
        Shared stop signal. A private one is created when omitted.
    """

    def __init__(
        self,
        store: AlarmStore,
        coordinator: DataCoordinator,
        client: SmartAlarmCalculationClient,
        profile: UserProfile,
        bus: Optional[EventBus] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cfg: Optional[RefreshConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        stop_event: Optional[threading.Event] = None,
    ):
        self._store = store
        self._coordinator = coordinator
        self._client = client
        self._profile = profile
        self._limiter = rate_limiter
        self._cfg = cfg or RefreshConfig()
        self._clock = clock
        self._stop = stop_event or threading.Event()

        self._phase = RefreshPhase.IDLE
        self._sweep_lock = threading.Lock()
        self._state_lock = threading.Lock()
        # Per-thread write-back depth; the bus delivers events on the publishing thread.
        self._local = threading.local()
        self._last_calculation: Dict[uuid.UUID, datetime] = {}
        self._dismissed: Set[uuid.UUID] = set()
        self._wake = threading.Event()
        self.last_update_time: Optional[datetime] = None

        self._thread = threading.Thread(target=self._run, name="weather-refresh", daemon=True)

        self._unsubscribe: List[Callable[[], None]] = []
        if bus is not None:
            self._unsubscribe.append(bus.subscribe(AlarmUpdated, self._on_alarm_updated))
            self._unsubscribe.append(bus.subscribe(AlarmCreated, self._on_alarm_created))
            self._unsubscribe.append(bus.subscribe(AlarmDeleted, self._on_alarm_deleted))

        coordinator.set_weather_service(self)

    # ---------- thread lifecycle ----------
    def start(self) -> None:
        """Start the sweep thread; the first sweep runs immediately."""
        if not self._thread.is_alive():
            self._wake.set()
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    def trigger(self) -> None:
        self._wake.set()

    @property
    def is_triggered(self) -> bool:
        return self._wake.is_set()

    @property
    def phase(self) -> RefreshPhase:
        with self._state_lock:
            return self._phase

    def _set_phase(self, phase: RefreshPhase) -> None:
        with self._state_lock:
            self._phase = phase

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(timeout=self._cfg.refresh_interval_s)
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self.refresh_all_adjustments()
            except Exception as e:
                logger.bind(tag=TAG).error(f"refresh sweep failed: {e!r}")

    # ---------- bookkeeping ----------
    def last_calculation_time(self, alarm_id: uuid.UUID) -> Optional[datetime]:
        with self._state_lock:
            return self._last_calculation.get(alarm_id)

    def _recently_calculated(self, alarm_id: uuid.UUID, now: datetime) -> bool:
        last = self.last_calculation_time(alarm_id)
        return last is not None and now - last < self._cfg.min_recalculation_interval

    @contextmanager
    def _writing_back(self) -> Iterator[None]:
        """Mark store updates made by the current thread as the loop's own."""
        depth = getattr(self._local, "depth", 0)
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth = depth

    def _is_writing_back(self) -> bool:
        return getattr(self._local, "depth", 0) > 0

    # ---------- sweep ----------
    def eligible_alarms(self, now: Optional[datetime] = None) -> List[Alarm]:
        """
        Alarms to recalculate in the next sweep.

        Enabled smart alarms with both addresses valid, whose next occurrence
        is within ``(now, now + lookahead]``, not calculated within the minimum
        interval, and allowed by the rate limiter.
        """
        now = now or self._clock()
        horizon = now + self._cfg.lookahead
        eligible = []
        for alarm in self._store.list():
            if not (alarm.is_enabled and alarm.smart_enabled and alarm.has_valid_addresses):
                continue
            occurrence = alarm.next_occurrence(now)
            if occurrence is None or not (now < occurrence <= horizon):
                continue
            if self._recently_calculated(alarm.id, now):
                continue
            if self._limiter is not None and not self._limiter.can_make_request(alarm.id):
                logger.bind(tag=TAG).info(f"skipping '{alarm.name}': rate limited")
                continue
            eligible.append(alarm)
        return eligible

    def refresh_all_adjustments(self, now: Optional[datetime] = None) -> int:
        """
        Run one sweep.

        Returns
        -------
        int
            Number of adjustments written back. 0 when another sweep is running.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.bind(tag=TAG).info("refresh already in progress, skipping")
            return 0
        try:
            now = now or self._clock()
            self._clear_stale_adjustments(now)

            eligible = self.eligible_alarms(now)
            logger.bind(tag=TAG).info(f"refreshing {len(eligible)} eligible alarm(s)")

            written = 0
            for alarm in eligible:
                if self._stop.is_set():
                    break
                if self.process_alarm_adjustment(alarm, now) is not None:
                    written += 1
                with self._state_lock:
                    self._last_calculation[alarm.id] = self._clock()

            self.last_update_time = self._clock()
            return written
        finally:
            self._sweep_lock.release()

    def refresh_if_needed(self, now: Optional[datetime] = None) -> bool:
        """Trigger a sweep if any enabled smart alarm is due for recalculation."""
        now = now or self._clock()
        needed = any(
            alarm.is_enabled and alarm.smart_enabled and not self._recently_calculated(alarm.id, now)
            for alarm in self._store.list()
        )
        if needed:
            self.trigger()
        return needed

    def process_alarm_adjustment(self, alarm: Alarm, now: Optional[datetime] = None) -> Optional[AlarmAdjustment]:
        """Calculate ``alarm`` and write the adjustment back; None when nothing was written."""
        if not self._store.contains(alarm.id):
            logger.bind(tag=TAG).debug(f"alarm {alarm.id} gone before refresh")
            return None

        handle = self._coordinator.begin_processing(alarm.id)
        if handle is None:
            return None

        now = now or self._clock()
        token = handle.token
        self._set_phase(RefreshPhase.CALCULATING)
        try:
            if self._limiter is not None:
                self._limiter.record_request(alarm.id)
            adjustment = self._client.calculate(
                alarm,
                self._profile,
                force_recalculation=True,
                cancel_token=token,
                now=now,
            )
            if adjustment is None:
                return None
            if not self._store.contains(alarm.id):
                logger.bind(tag=TAG).debug(f"alarm {alarm.id} deleted during refresh")
                return None
            self._set_phase(RefreshPhase.WRITING_BACK)
            with self._writing_back():
                return self._coordinator.write_back(alarm.id, adjustment, token)
        except CalculationCancelled:
            logger.bind(tag=TAG).debug(f"refresh for {alarm.id} cancelled")
            return None
        except SmartAlarmError as e:
            logger.bind(tag=TAG).warning(f"refresh for '{alarm.name}' failed: {e}")
            return None
        finally:
            self._set_phase(RefreshPhase.IDLE)
            self._coordinator.end_processing(alarm.id, token)

    def _clear_stale_adjustments(self, now: datetime) -> None:
        for alarm in self._store.list():
            if alarm.current_adjustment is None or alarm.fresh_adjustment(now) is not None:
                continue
            logger.bind(tag=TAG).info(f"clearing stale adjustment for '{alarm.name}'")
            try:
                with self._writing_back():
                    self._coordinator.update_alarm(
                        replace(alarm, current_adjustment=None),
                        skip_adjustment_calculation=True,
                    )
            except AlarmValidationError as e:
                logger.bind(tag=TAG).warning(f"cannot clear stale adjustment for '{alarm.name}': {e}")

    # ---------- event handlers ----------
    def _on_alarm_updated(self, event: AlarmUpdated) -> None:
        if self._is_writing_back():
            return
        if event.skip_weather_refresh:
            return
        if not self._store.contains(event.alarm_id):
            return
        self.refresh_if_needed()

    def _on_alarm_created(self, event: AlarmCreated) -> None:
        self.refresh_if_needed()

    def _on_alarm_deleted(self, event: AlarmDeleted) -> None:
        with self._state_lock:
            self._last_calculation.pop(event.alarm_id, None)
            self._dismissed.discard(event.alarm_id)

    # ---------- collaborator operations ----------
    def clear_adjustments_for_alarm(self, alarm_id: uuid.UUID) -> None:
        """
        Forget refresh state for ``alarm_id`` and clear its stored adjustment.

        While the coordinator is deleting the alarm only the refresh state is
        dropped; the stored adjustment goes with the alarm.
        """
        alarm = self._store.get(alarm_id)
        if (
            alarm is not None
            and alarm.current_adjustment is not None
            and not self._coordinator.is_deleting(alarm_id)
        ):
            with self._writing_back():
                self._coordinator.update_alarm(
                    replace(alarm, current_adjustment=None),
                    skip_adjustment_calculation=True,
                )
        with self._state_lock:
            self._last_calculation.pop(alarm_id, None)

    def disable_weather_adjustments(self, alarm: Alarm) -> None:
        with self._writing_back():
            self._coordinator.update_alarm(
                replace(alarm, weather_adjustment=False, current_adjustment=None),
                skip_adjustment_calculation=True,
            )

    def dismiss_adjustment(self, alarm_id: uuid.UUID) -> None:
        """Hide ``alarm_id`` from :meth:`active_adjustments` for this session only."""
        with self._state_lock:
            self._dismissed.add(alarm_id)

    def reset_dismissed(self) -> None:
        with self._state_lock:
            self._dismissed.clear()

    def active_adjustments(self, now: Optional[datetime] = None) -> List[AlarmWithAdjustment]:
        now = now or self._clock()
        with self._state_lock:
            dismissed = set(self._dismissed)

        active = []
        for alarm in self._store.sorted_alarms():
            if alarm.id in dismissed or not (alarm.smart_enabled and alarm.is_enabled):
                continue
            adjustment = alarm.fresh_adjustment(now)
            if adjustment is None or abs(adjustment.adjustment_minutes) < SIGNIFICANT_MINUTES:
                continue
            active.append(
                AlarmWithAdjustment(
                    alarm=alarm,
                    adjustment=adjustment,
                    severity=severity_for(adjustment.adjustment_minutes),
                    description=weather_description(adjustment.reason),
                    route_summary=route_summary(alarm),
                )
            )
        return active
