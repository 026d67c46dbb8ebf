from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from smartwake.domain.models import Alarm, AlarmAdjustment, RepeatingDays, Weekday
from smartwake.logging_setup import setup_logging
from smartwake.notification.base import (
    CalendarTrigger,
    DateTrigger,
    NotificationAction,
    NotificationCategory,
    NotificationCenter,
    NotificationContent,
    NotificationRequest,
)

TAG = __name__
logger = setup_logging()

ALARM_CATEGORY_ID = "ALARM"
SNOOZE_ACTION_ID = "SNOOZE"
DISMISS_ACTION_ID = "DISMISS"
SILENT_TONE = "None"
PLAIN_BODY = "Time to wake up!"

ALARM_CATEGORY = NotificationCategory(
    identifier=ALARM_CATEGORY_ID,
    actions=(
        NotificationAction(identifier=SNOOZE_ACTION_ID, title="Snooze"),
        NotificationAction(identifier=DISMISS_ACTION_ID, title="Dismiss", destructive=True),
    ),
)


def adjusted_body(adjustment: AlarmAdjustment) -> str:
    minutes = abs(adjustment.adjustment_minutes)
    if adjustment.is_earlier:
        return f"Wake up {minutes} min earlier due to conditions"
    return f"Sleep in: {minutes} extra minutes"


def weekday_identifier(alarm_id: uuid.UUID, day: Weekday) -> str:
    return f"{alarm_id}-{day.value}"


def identifiers_for(alarm_id: uuid.UUID) -> List[str]:
    """Every identifier the scheduler may use for ``alarm_id``."""
    return [str(alarm_id)] + [weekday_identifier(alarm_id, d) for d in Weekday]


class NotificationScheduler:
    """
    Translate alarms into local notification requests.

    Identifiers
    -----------
    - one-time and specific-date alarms: ``"{alarm_id}"``
    - repeating alarms: ``"{alarm_id}-{weekday}"`` per selected day

    Scheduling is idempotent: when any identifier of an alarm is already
    pending, :meth:`schedule_alarm` does nothing. Callers that want to
    reschedule cancel first.

    Parameters
    ----------
    center
        Platform notification center. The ``ALARM`` category is registered on
        construction.
    """

    def __init__(self, center: NotificationCenter):
        self._center = center
        self._center.set_categories([ALARM_CATEGORY])

    @property
    def center(self) -> NotificationCenter:
        return self._center

    def has_pending(self, alarm_id: uuid.UUID) -> bool:
        pending = set(self._center.pending_identifiers())
        return any(i in pending for i in identifiers_for(alarm_id))

    def _content(self, alarm: Alarm, adjustment: Optional[AlarmAdjustment]) -> NotificationContent:
        return NotificationContent(
            title=alarm.name,
            body=adjusted_body(adjustment) if adjustment is not None else PLAIN_BODY,
            subtitle=adjustment.reason if adjustment is not None else "",
            sound=None if alarm.sound_tone == SILENT_TONE else alarm.sound_tone,
            category_identifier=ALARM_CATEGORY_ID,
            thread_identifier=str(alarm.id),
        )

    def schedule_alarm(self, alarm: Alarm, now: Optional[datetime] = None) -> bool:
        """
        Schedule notifications for ``alarm``'s next wake time.

        Smart alarms with a fresh adjustment ring at the adjusted time; all
        others (and adjustments whose time already passed) ring at the
        nominal occurrence.

        Returns
        -------
        bool
            True if at least one request was added.
        """
        if not alarm.is_enabled:
            logger.bind(tag=TAG).debug(f"not scheduling disabled alarm {alarm.id}")
            return False

        if self.has_pending(alarm.id):
            logger.bind(tag=TAG).debug(f"alarm {alarm.id} already has pending notifications")
            return False

        now = now or datetime.now(timezone.utc)
        occurrence = alarm.next_occurrence(now)
        if occurrence is None:
            logger.bind(tag=TAG).info(f"alarm {alarm.id} has no upcoming occurrence")
            return False

        adjustment = alarm.fresh_adjustment(now) if alarm.smart_enabled else None
        if adjustment is not None and adjustment.adjusted_wake_time <= now:
            adjustment = None

        schedule = alarm.schedule
        if not isinstance(schedule, RepeatingDays):
            wake = adjustment.adjusted_wake_time if adjustment is not None else occurrence
            self._center.add(
                NotificationRequest(
                    identifier=str(alarm.id),
                    content=self._content(alarm, adjustment),
                    trigger=DateTrigger(fire_at=wake),
                )
            )
            logger.bind(tag=TAG).info(f"scheduled '{alarm.name}' at {wake.isoformat()}")
            return True

        occurrence_day = Weekday.from_date(occurrence.date())
        for day in sorted(schedule.days, key=lambda d: d.iso_index):
            if adjustment is not None and day is occurrence_day:
                # Only the upcoming occurrence is adjusted; it is rescheduled
                # weekly once the adjustment goes stale.
                request = NotificationRequest(
                    identifier=weekday_identifier(alarm.id, day),
                    content=self._content(alarm, adjustment),
                    trigger=DateTrigger(fire_at=adjustment.adjusted_wake_time),
                )
            else:
                request = NotificationRequest(
                    identifier=weekday_identifier(alarm.id, day),
                    content=self._content(alarm, None),
                    trigger=CalendarTrigger(
                        weekday=day,
                        hour=alarm.alarm_time.hour,
                        minute=alarm.alarm_time.minute,
                    ),
                )
            self._center.add(request)

        logger.bind(tag=TAG).info(
            f"scheduled repeating '{alarm.name}' on {len(schedule.days)} day(s)"
        )
        return bool(schedule.days)

    def schedule_adjusted_alarm(
        self,
        alarm: Alarm,
        adjustment: AlarmAdjustment,
        now: Optional[datetime] = None,
    ) -> bool:
        """One-shot request at ``adjustment.adjusted_wake_time`` keyed by the alarm id."""
        if not alarm.is_enabled:
            logger.bind(tag=TAG).debug(f"not scheduling disabled alarm {alarm.id}")
            return False

        now = now or datetime.now(timezone.utc)
        wake = adjustment.adjusted_wake_time
        if wake <= now:
            logger.bind(tag=TAG).info(f"adjusted time for {alarm.id} already passed")
            return False

        self._center.add(
            NotificationRequest(
                identifier=str(alarm.id),
                content=self._content(alarm, adjustment),
                trigger=DateTrigger(fire_at=wake),
            )
        )
        logger.bind(tag=TAG).info(f"scheduled adjusted '{alarm.name}' at {wake.isoformat()}")
        return True

    def cancel_alarm(self, alarm_id: uuid.UUID) -> None:
        self._center.remove_pending(identifiers_for(alarm_id))
