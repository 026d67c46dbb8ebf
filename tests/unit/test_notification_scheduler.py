"""
Unit tests for smartwake.notification.scheduler.NotificationScheduler.

These tests validate against the in-memory notification center:
- one-shot scheduling at the nominal or adjusted wake time
- notification wording for earlier and later adjustments
- per-weekday identifiers and triggers for repeating alarms
- idempotency, disabled alarms and cancellation
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from smartwake.domain.models import AlarmAdjustment, RepeatingDays, Weekday
from smartwake.notification.base import CalendarTrigger, DateTrigger, InMemoryNotificationCenter
from smartwake.notification.scheduler import (
    ALARM_CATEGORY_ID,
    PLAIN_BODY,
    NotificationScheduler,
    weekday_identifier,
)

UTC = timezone.utc
NOW = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)  # Tuesday
OCC = datetime(2026, 3, 10, 7, 0, tzinfo=UTC)


def _adj(minutes: int, occurrence: datetime = OCC) -> AlarmAdjustment:
    return AlarmAdjustment(
        adjusted_wake_time=occurrence - timedelta(minutes=minutes),
        adjustment_minutes=minutes,
        reason="Weather: +12min, Traffic: +6min",
        calculated_at=NOW,
        confidence=0.85,
        occurrence_time=occurrence,
    )


def _setup():
    center = InMemoryNotificationCenter()
    return center, NotificationScheduler(center)


def test_category_registered_with_snooze_and_dismiss() -> None:
    center, _ = _setup()
    actions = center.categories[ALARM_CATEGORY_ID].actions
    assert [a.identifier for a in actions] == ["SNOOZE", "DISMISS"]
    assert actions[1].destructive


def test_plain_one_time_alarm(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(smart_enabled=False)

    assert scheduler.schedule_alarm(alarm, now=NOW)

    req = center.get(str(alarm.id))
    assert req is not None
    assert req.trigger == DateTrigger(fire_at=OCC)
    assert req.content.title == "Work"
    assert req.content.body == PLAIN_BODY
    assert req.content.sound == "Alarm.caf"
    assert req.content.thread_identifier == str(alarm.id)


def test_adjusted_earlier(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(current_adjustment=_adj(18))

    scheduler.schedule_alarm(alarm, now=NOW)

    req = center.get(str(alarm.id))
    assert req.trigger == DateTrigger(fire_at=datetime(2026, 3, 10, 6, 42, tzinfo=UTC))
    assert req.content.body == "Wake up 18 min earlier due to conditions"
    assert req.content.subtitle == "Weather: +12min, Traffic: +6min"


def test_adjusted_later(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(current_adjustment=_adj(-10))

    scheduler.schedule_alarm(alarm, now=NOW)

    req = center.get(str(alarm.id))
    assert req.trigger == DateTrigger(fire_at=datetime(2026, 3, 10, 7, 10, tzinfo=UTC))
    assert req.content.body == "Sleep in: 10 extra minutes"


def test_adjustment_ignored_when_not_smart_stale_or_passed(make_alarm) -> None:
    for alarm, now in (
        (make_alarm(smart_enabled=False, current_adjustment=_adj(18)), NOW),
        (make_alarm(current_adjustment=_adj(18, occurrence=OCC - timedelta(days=1))), NOW),
        (make_alarm(current_adjustment=_adj(18)), datetime(2026, 3, 10, 6, 50, tzinfo=UTC)),
    ):
        center, scheduler = _setup()
        scheduler.schedule_alarm(alarm, now=now)
        req = center.get(str(alarm.id))
        assert req.trigger == DateTrigger(fire_at=OCC)
        assert req.content.body == PLAIN_BODY


def test_scheduling_is_idempotent_until_cancelled(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm()

    assert scheduler.schedule_alarm(alarm, now=NOW)
    assert scheduler.schedule_alarm(alarm, now=NOW) is False
    assert scheduler.has_pending(alarm.id)

    scheduler.cancel_alarm(alarm.id)
    assert center.pending_identifiers() == []


def test_disabled_or_past_alarm_not_scheduled(make_alarm) -> None:
    center, scheduler = _setup()
    assert scheduler.schedule_alarm(make_alarm(is_enabled=False), now=NOW) is False
    assert scheduler.schedule_alarm(make_alarm(alarm_time=NOW - timedelta(hours=1)), now=NOW) is False
    assert center.pending_identifiers() == []


def test_repeating_alarm_uses_weekday_identifiers(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(smart_enabled=False, schedule=RepeatingDays([Weekday.MONDAY, Weekday.FRIDAY]))

    scheduler.schedule_alarm(alarm, now=NOW)

    assert sorted(center.pending_identifiers()) == sorted(
        [weekday_identifier(alarm.id, Weekday.MONDAY), weekday_identifier(alarm.id, Weekday.FRIDAY)]
    )
    req = center.get(f"{alarm.id}-friday")
    assert req.trigger == CalendarTrigger(weekday=Weekday.FRIDAY, hour=7, minute=0)
    assert req.trigger.repeats


def test_repeating_alarm_adjusts_only_upcoming_weekday(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(
        schedule=RepeatingDays([Weekday.TUESDAY, Weekday.THURSDAY]),
        current_adjustment=_adj(18),
    )

    scheduler.schedule_alarm(alarm, now=NOW)

    tuesday = center.get(f"{alarm.id}-tuesday")
    thursday = center.get(f"{alarm.id}-thursday")
    assert tuesday.trigger == DateTrigger(fire_at=datetime(2026, 3, 10, 6, 42, tzinfo=UTC))
    assert isinstance(thursday.trigger, CalendarTrigger)
    assert thursday.content.body == PLAIN_BODY


def test_silent_tone_has_no_sound(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm(sound_tone="None")
    scheduler.schedule_alarm(alarm, now=NOW)
    assert center.get(str(alarm.id)).content.sound is None


def test_schedule_adjusted_alarm(make_alarm) -> None:
    center, scheduler = _setup()
    alarm = make_alarm()

    assert scheduler.schedule_adjusted_alarm(alarm, _adj(18), now=NOW)
    assert center.get(str(alarm.id)).trigger == DateTrigger(fire_at=datetime(2026, 3, 10, 6, 42, tzinfo=UTC))

    assert scheduler.schedule_adjusted_alarm(alarm, _adj(18), now=OCC) is False


def test_deliver_due_removes_only_due_one_shots(make_alarm) -> None:
    center, scheduler = _setup()
    soon = make_alarm(smart_enabled=False)
    later = make_alarm(smart_enabled=False, alarm_time=datetime(2026, 3, 10, 9, 0, tzinfo=UTC))
    weekly = make_alarm(smart_enabled=False, schedule=RepeatingDays([Weekday.TUESDAY]))
    for a in (soon, later, weekly):
        scheduler.schedule_alarm(a, now=NOW)

    due = center.deliver_due(OCC)

    assert [r.identifier for r in due] == [str(soon.id)]
    assert center.get(str(later.id)) is not None
    assert center.get(f"{weekly.id}-tuesday") is not None
