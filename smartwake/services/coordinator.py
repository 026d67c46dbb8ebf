from __future__ import annotations

import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from smartwake.core.rate_limiter import RateLimiter, utc_now
from smartwake.core.state.alarm_store import AlarmStore
from smartwake.domain.errors import AlarmValidationError, CalculationCancelled, SmartAlarmError
from smartwake.domain.events import AlarmCreated, BatchReady, CancelOperationsForAlarm
from smartwake.domain.models import Alarm, AlarmAdjustment, OneTime, RepeatingDays, SpecificDate, UserProfile
from smartwake.logging_setup import setup_logging
from smartwake.notification.scheduler import NotificationScheduler, weekday_identifier
from smartwake.runtime.event_bus import EventBus
from smartwake.services.cancellation import CancellationRegistry, CancellationToken, TaskHandle
from smartwake.transport.calculation_client import SmartAlarmCalculationClient

TAG = __name__
logger = setup_logging()

ONE_TIME_EXPIRY = timedelta(minutes=5)


@dataclass(frozen=True)
class CoordinatorConfig:
    """
    Parameters
    ----------
    deletion_grace_s
        How long a deleted id keeps rejecting late write-backs.
    max_workers
        Size of the recalculation thread pool.
    """

    deletion_grace_s: float = 0.5
    max_workers: int = 4


class AdjustmentCollaborator(Protocol):
    """
    Component holding per-alarm adjustment state outside the store.

    ``clear_adjustments_for_alarm`` is called from :meth:`DataCoordinator.delete_alarm`
    after the alarm is marked deleting, so updates to the stored alarm are
    no-ops there; implementations only drop their own state in that case.
    """

    def clear_adjustments_for_alarm(self, alarm_id: uuid.UUID) -> None:
        ...


class DataCoordinator:
    """
    Orchestrates alarm create/update/delete and smart recalculation.

    The coordinator is the only intended caller of the store's mutation
    methods. It validates alarms, keeps notifications in sync, and runs at
    most one calculation per alarm id at a time.

    Per-alarm states
    ----------------
    - Idle -> Processing -> Idle (on success or failure)
    - Deleting preempts Processing: the task's token is cancelled and any
      late write-back is dropped.
    - An alarm never enters Processing while Processing or Deleting.

    Concurrency Model
    -----------------
    A re-entrant lock serializes every operation that reads or changes the
    processing/deleting bookkeeping or the store. Network calls run without
    the lock, on the executor for update-triggered recalculations and on the
    caller's thread for creation and batch paths.

    Failure Policy
    --------------
    Only :class:`AlarmValidationError` reaches callers. Calculation errors are
    logged and leave the previous adjustment and the plain notification in
    place.
    """

    def __init__(
        self,
        store: AlarmStore,
        client: SmartAlarmCalculationClient,
        scheduler: NotificationScheduler,
        profile: UserProfile,
        bus: Optional[EventBus] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cfg: Optional[CoordinatorConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        executor: Optional[Executor] = None,
    ):
        self._store = store
        self._client = client
        self._scheduler = scheduler
        self._profile = profile
        self._bus = bus
        self._limiter = rate_limiter
        self._cfg = cfg or CoordinatorConfig()
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._cfg.max_workers, thread_name_prefix="recalc"
        )

        self._lock = threading.RLock()
        self._processing: Dict[uuid.UUID, CancellationToken] = {}
        self._deleting: Dict[uuid.UUID, datetime] = {}
        self._tasks = CancellationRegistry()
        self._weather: Optional[AdjustmentCollaborator] = None

        self._unsubscribe: List[Callable[[], None]] = []
        if bus is not None:
            self._unsubscribe.append(bus.subscribe(CancelOperationsForAlarm, self._on_cancel_operations))
            self._unsubscribe.append(bus.subscribe(BatchReady, self._on_batch_ready))

    # ---------- wiring ----------
    def set_weather_service(self, service: AdjustmentCollaborator) -> None:
        self._weather = service

    def set_profile(self, profile: UserProfile) -> None:
        self._profile = profile

    @property
    def store(self) -> AlarmStore:
        return self._store

    @property
    def rate_limiter(self) -> Optional[RateLimiter]:
        return self._limiter

    # ---------- state queries ----------
    def is_processing(self, alarm_id: uuid.UUID) -> bool:
        with self._lock:
            return alarm_id in self._processing

    def is_deleting(self, alarm_id: uuid.UUID) -> bool:
        with self._lock:
            expires_at = self._deleting.get(alarm_id)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._deleting[alarm_id]
                return False
            return True

    # ---------- validation ----------
    @staticmethod
    def validate(alarm: Alarm) -> None:
        """
        Raises
        ------
        AlarmValidationError
            Empty name, or a smart alarm without two valid addresses.
        """
        if not alarm.name.strip():
            raise AlarmValidationError("Alarm name must not be empty")
        if alarm.smart_enabled:
            if not alarm.starting_address.is_valid:
                raise AlarmValidationError("Starting address is incomplete")
            if not alarm.destination_address.is_valid:
                raise AlarmValidationError("Destination address is incomplete")

    # ---------- notifications ----------
    def _schedule_notifications(self, alarm: Alarm) -> None:
        self._scheduler.cancel_alarm(alarm.id)
        self._scheduler.schedule_alarm(alarm, now=self._clock())

    def refresh_notifications(self, now: Optional[datetime] = None) -> int:
        """
        Reschedule enabled alarms whose expected notifications are not all pending.

        Returns
        -------
        int
            Number of alarms rescheduled.
        """
        now = now or self._clock()
        pending = set(self._scheduler.center.pending_identifiers())
        count = 0
        for alarm in self._store.list():
            if not alarm.is_enabled or alarm.next_occurrence(now) is None:
                continue
            if isinstance(alarm.schedule, RepeatingDays):
                expected = [weekday_identifier(alarm.id, d) for d in alarm.schedule.days]
            else:
                expected = [str(alarm.id)]
            if all(i in pending for i in expected):
                continue
            with self._lock:
                self._scheduler.cancel_alarm(alarm.id)
                if self._scheduler.schedule_alarm(alarm, now=now):
                    count += 1
        return count

    # ---------- CREATE ----------
    def create_alarm(self, alarm: Alarm) -> Alarm:
        """
        Validate, store and (for smart alarms) calculate an initial adjustment.

        Returns
        -------
        Alarm
            The alarm as stored after creation, including any adjustment.

        Raises
        ------
        AlarmValidationError
            Invalid alarm, duplicate id, or alarm limit reached.
        """
        self.validate(alarm)

        with self._lock:
            if not self._store.add(alarm):
                if not self._store.can_add_more_alarms:
                    raise AlarmValidationError(
                        f"Alarm limit of {self._store.max_alarm_count} reached"
                    )
                raise AlarmValidationError(f"Alarm {alarm.id} already exists")
            logger.bind(tag=TAG).info(f"created alarm '{alarm.name}' ({alarm.id})")

        if alarm.smart_enabled and alarm.is_enabled:
            handle = self.begin_processing(alarm.id)
            if handle is not None:
                try:
                    self._calculate_and_store(alarm, handle.token, from_creation=True)
                finally:
                    self.end_processing(alarm.id, handle.token)

        with self._lock:
            stored = self._store.get(alarm.id)
            if stored is None:
                logger.bind(tag=TAG).debug(f"alarm {alarm.id} removed during creation")
                return alarm
            self._schedule_notifications(stored)

        if self._bus is not None:
            self._bus.publish(AlarmCreated(alarm=stored))
        return stored

    # ---------- UPDATE ----------
    def update_alarm(
        self,
        alarm: Alarm,
        skip_adjustment_calculation: bool = False,
        from_creation: bool = False,
    ) -> Optional["Future[None]"]:
        """
        Validate and store ``alarm``, then recalculate unless skipped.

        ``skip_adjustment_calculation`` must be set when writing back a
        computed adjustment so the write-back does not start another
        calculation.

        Returns
        -------
        Future or None
            The recalculation task when one was started.

        Raises
        ------
        AlarmValidationError
            Invalid alarm.
        """
        with self._lock:
            if not self._store.contains(alarm.id):
                logger.bind(tag=TAG).debug(f"update ignored, alarm {alarm.id} no longer exists")
                return None
            if self.is_deleting(alarm.id):
                logger.bind(tag=TAG).debug(f"update ignored, alarm {alarm.id} is being deleted")
                return None

            self.validate(alarm)

            if (not alarm.is_enabled or not alarm.smart_enabled) and alarm.current_adjustment is not None:
                alarm = replace(alarm, current_adjustment=None)

            self._scheduler.cancel_alarm(alarm.id)
            if not self._store.update(alarm, from_creation=from_creation):
                return None
            self._scheduler.schedule_alarm(alarm, now=self._clock())

            if skip_adjustment_calculation or not (alarm.smart_enabled and alarm.is_enabled):
                return None

            handle = self.begin_processing(alarm.id)
            if handle is None:
                return None
            handle.future = self._executor.submit(self._run_task, alarm.id, handle.token)
            return handle.future

    def _run_task(self, alarm_id: uuid.UUID, token: CancellationToken) -> None:
        try:
            alarm = self._store.get(alarm_id)
            if alarm is None:
                logger.bind(tag=TAG).debug(f"alarm {alarm_id} vanished before recalculation")
                return
            self._calculate_and_store(alarm, token)
        except Exception as e:
            logger.bind(tag=TAG).error(f"recalculation for {alarm_id} failed: {e!r}")
        finally:
            self.end_processing(alarm_id, token)

    # ---------- DELETE ----------
    def delete_alarm(self, alarm: Alarm) -> None:
        """Cancel in-flight work and notifications, then remove ``alarm``."""
        with self._lock:
            self._deleting[alarm.id] = self._clock() + timedelta(seconds=self._cfg.deletion_grace_s)
            self._cancel_tracked(alarm.id)
            self._scheduler.cancel_alarm(alarm.id)
            # Marked deleting above: the collaborator only drops its own state.
            if self._weather is not None:
                self._weather.clear_adjustments_for_alarm(alarm.id)
            self._store.delete(alarm)
        logger.bind(tag=TAG).info(f"deleted alarm '{alarm.name}' ({alarm.id})")

    def delete_all_alarms(self) -> None:
        for alarm in self._store.list():
            self.delete_alarm(alarm)

    # ---------- batch operations ----------
    def recalculate_all_adjustments(self) -> int:
        """Recalculate every enabled smart alarm sequentially; returns adjustments written."""
        written = 0
        for alarm in self._store.list():
            if alarm.smart_enabled and alarm.is_enabled:
                if self._run_guarded(alarm) is not None:
                    written += 1
        return written

    def request_recalculation(self, alarm_id: uuid.UUID) -> bool:
        """
        Ask for a rate-limited recalculation of ``alarm_id``.

        Without a rate limiter the recalculation runs immediately on the
        executor.
        """
        if self._limiter is None:
            alarm = self._store.get(alarm_id)
            if alarm is None or not (alarm.smart_enabled and alarm.is_enabled):
                return False
            with self._lock:
                handle = self.begin_processing(alarm_id)
                if handle is None:
                    return False
                handle.future = self._executor.submit(self._run_task, alarm_id, handle.token)
            return True
        return self._limiter.queue_request(alarm_id)

    def process_batch(self, alarm_ids: Iterable[uuid.UUID]) -> int:
        """Recalculate each still-present smart alarm sequentially; returns adjustments written."""
        written = 0
        for alarm_id in alarm_ids:
            alarm = self._store.get(alarm_id)
            if alarm is None or not (alarm.smart_enabled and alarm.is_enabled):
                continue
            # Batched ids were recorded by the rate limiter when queued.
            if self._run_guarded(alarm, record=False) is not None:
                written += 1
        return written

    def _run_guarded(self, alarm: Alarm, record: bool = True) -> Optional[AlarmAdjustment]:
        handle = self.begin_processing(alarm.id)
        if handle is None:
            return None
        try:
            return self._calculate_and_store(alarm, handle.token, record=record)
        finally:
            self.end_processing(alarm.id, handle.token)

    # ---------- lifecycle ----------
    def expire_alarms(self, now: Optional[datetime] = None) -> int:
        """
        Remove one-time alarms more than five minutes past their time and
        disable specific-date alarms whose moment has passed.

        Returns
        -------
        int
            Number of alarms deleted or disabled.
        """
        now = now or self._clock()
        changed = 0
        for alarm in self._store.list():
            if isinstance(alarm.schedule, OneTime):
                if alarm.alarm_time + ONE_TIME_EXPIRY < now:
                    logger.bind(tag=TAG).info(f"one-time alarm '{alarm.name}' expired")
                    self.delete_alarm(alarm)
                    changed += 1
            elif isinstance(alarm.schedule, SpecificDate):
                if alarm.is_enabled and alarm.next_occurrence(now) is None:
                    logger.bind(tag=TAG).info(f"specific-date alarm '{alarm.name}' passed, disabling")
                    self.update_alarm(replace(alarm, is_enabled=False), skip_adjustment_calculation=True)
                    changed += 1
        return changed

    # ---------- cancellation ----------
    def cancel_operations(self, alarm_id: uuid.UUID) -> None:
        """Cancel and drop any tracked task for ``alarm_id``."""
        with self._lock:
            self._cancel_tracked(alarm_id)

    def _on_cancel_operations(self, event: CancelOperationsForAlarm) -> None:
        self.cancel_operations(event.alarm_id)

    def _on_batch_ready(self, event: BatchReady) -> None:
        self.process_batch(event.alarm_ids)

    def _cancel_tracked(self, alarm_id: uuid.UUID) -> None:
        if self._tasks.cancel(alarm_id):
            logger.bind(tag=TAG).debug(f"cancelled in-flight calculation for {alarm_id}")
        self._processing.pop(alarm_id, None)

    def begin_processing(self, alarm_id: uuid.UUID) -> Optional[TaskHandle]:
        """
        Move ``alarm_id`` from Idle to Processing.

        Returns
        -------
        TaskHandle or None
            A tracked handle whose token is cancelled on deletion, or None if
            the alarm is already processing or being deleted.
        """
        with self._lock:
            if alarm_id in self._processing:
                logger.bind(tag=TAG).debug(f"alarm {alarm_id} already processing")
                return None
            if self.is_deleting(alarm_id):
                logger.bind(tag=TAG).debug(f"alarm {alarm_id} is being deleted")
                return None
            handle = TaskHandle(token=CancellationToken())
            self._processing[alarm_id] = handle.token
            self._tasks.register(alarm_id, handle)
            return handle

    def end_processing(self, alarm_id: uuid.UUID, token: CancellationToken) -> None:
        with self._lock:
            if self._processing.get(alarm_id) is token:
                del self._processing[alarm_id]
        self._tasks.release(alarm_id, token)

    # ---------- calculation ----------
    def _calculate_and_store(
        self,
        alarm: Alarm,
        token: CancellationToken,
        from_creation: bool = False,
        record: bool = True,
    ) -> Optional[AlarmAdjustment]:
        now = self._clock()
        try:
            token.raise_if_cancelled()
            if record and self._limiter is not None:
                self._limiter.record_request(alarm.id)
            adjustment = self._client.calculate(
                alarm,
                self._profile,
                force_recalculation=True,
                cancel_token=token,
                now=now,
            )
        except CalculationCancelled:
            logger.bind(tag=TAG).debug(f"calculation for {alarm.id} cancelled")
            return None
        except SmartAlarmError as e:
            logger.bind(tag=TAG).warning(f"calculation for '{alarm.name}' failed: {e}")
            return None

        if adjustment is None:
            return None
        return self.write_back(alarm.id, adjustment, token, from_creation=from_creation)

    def write_back(
        self,
        alarm_id: uuid.UUID,
        adjustment: AlarmAdjustment,
        token: CancellationToken,
        from_creation: bool = False,
    ) -> Optional[AlarmAdjustment]:
        """
        Attach ``adjustment`` to a fresh copy of the stored alarm.

        Dropped when the token was cancelled, the alarm is being deleted or
        is gone. The update skips recalculation.
        """
        with self._lock:
            if token.is_cancelled or self.is_deleting(alarm_id):
                logger.bind(tag=TAG).debug(f"write-back for {alarm_id} dropped: cancelled or deleting")
                return None
            current = self._store.get(alarm_id)
            if current is None:
                logger.bind(tag=TAG).debug(f"write-back for {alarm_id} dropped: alarm gone")
                return None
            self.update_alarm(
                replace(current, current_adjustment=adjustment),
                skip_adjustment_calculation=True,
                from_creation=from_creation,
            )
        logger.bind(tag=TAG).info(
            f"stored adjustment for '{current.name}': {adjustment.summary()}"
        )
        return adjustment

    # ---------- shutdown ----------
    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self._tasks.cancel_all()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
