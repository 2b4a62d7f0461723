from datetime import date

import pytest

from agenda.errors import NotFoundError, ValidationError
from agenda.schemas.availability import (
    AvailabilitySet,
    BlockedPeriodCreate,
    DayScheduleIn,
    ExceptionSet,
    ScheduledAvailabilitySet,
    TimeSlotIn,
)
from agenda.services.slots.blocked import (
    block_period,
    blocked_period_applies,
    blocked_period_overlaps,
    get_blocked_period,
    get_blocked_slots,
    unblock_period,
)
from agenda.services.slots.schedule import (
    apply_due_scheduled_changes,
    delete_exception,
    delete_scheduled_change,
    get_all_scheduled_changes,
    get_exceptions,
    get_scheduled_changes,
    get_weekly_schedule,
    get_weekly_timeline,
    set_availability,
    set_exception,
    set_scheduled_availability,
    set_weekly_schedule,
    validate_day_slots,
)
from agenda.services.slots.timeslot import TimeRange

from conftest import MONDAY, SUNDAY, TUESDAY, make_location, make_member


def slots(*pairs):
    return [TimeSlotIn(start=start, end=end) for start, end in pairs]


def week(**days):
    """7 DayScheduleIn entries; days given as d0=[("09:00", "12:00")], ..."""
    return [
        DayScheduleIn(day_of_week=d, slots=slots(*days.get(f"d{d}", [])), is_open=f"d{d}" in days)
        for d in range(7)
    ]


# ── Weekly availability ──────────────────────────────────────────────────


def test_day_slots_are_sorted_on_write():
    ranges = validate_day_slots(slots(("14:00", "18:00"), ("09:00", "12:00")))
    assert ranges == [TimeRange.parse("09:00", "12:00"), TimeRange.parse("14:00", "18:00")]


def test_adjacent_slots_are_allowed():
    ranges = validate_day_slots(slots(("09:00", "12:00"), ("12:00", "13:00")))
    assert len(ranges) == 2


@pytest.mark.parametrize(
    "pairs",
    [
        [("10:00", "10:00")],
        [("12:00", "09:00")],
        [("09:00", "12:00"), ("11:00", "13:00")],
    ],
)
def test_invalid_day_slots_are_rejected(pairs):
    with pytest.raises(ValidationError):
        validate_day_slots(slots(*pairs))


def test_set_availability_replaces_the_day(db, agenda):
    data = AvailabilitySet(
        member_id=agenda.member.id,
        location_id=agenda.location.id,
        day_of_week=1,
        slots=slots(("10:00", "16:00")),
    )
    template = set_availability(db, agenda.provider.id, data)

    assert template.slots == (TimeRange.parse("10:00", "16:00"),)
    days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert [d.day_of_week for d in days] == [1]
    assert days[0].slots == (TimeRange.parse("10:00", "16:00"),)


def test_set_availability_validates_before_writing(db, agenda):
    data = AvailabilitySet(
        member_id=agenda.member.id,
        location_id=agenda.location.id,
        day_of_week=1,
        slots=slots(("09:00", "12:00"), ("11:30", "13:00")),
    )
    with pytest.raises(ValidationError):
        set_availability(db, agenda.provider.id, data)

    days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert days[0].slots == (TimeRange.parse("09:00", "12:00"), TimeRange.parse("14:00", "18:00"))


def test_weekly_schedule_round_trip(db, agenda):
    schedule = week(d1=[("09:00", "12:00"), ("14:00", "18:00")], d3=[("13:00", "19:00")])
    set_weekly_schedule(db, agenda.provider.id, agenda.member.id, agenda.location.id, schedule)

    days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert [d.day_of_week for d in days] == list(range(7))
    assert [d.is_open for d in days] == [False, True, False, True, False, False, False]
    assert days[3].slots == (TimeRange.parse("13:00", "19:00"),)
    assert days[0].slots == ()


def test_weekly_schedule_needs_every_day_once(db, agenda):
    schedule = week(d1=[("09:00", "12:00")])
    with pytest.raises(ValidationError):
        set_weekly_schedule(db, agenda.provider.id, agenda.member.id, agenda.location.id, schedule[:6])

    schedule[6] = DayScheduleIn(day_of_week=1, slots=[])
    with pytest.raises(ValidationError):
        set_weekly_schedule(db, agenda.provider.id, agenda.member.id, agenda.location.id, schedule)


def test_weekly_schedule_is_all_or_nothing(db, agenda):
    schedule = week(d1=[("08:00", "10:00")], d2=[("09:00", "12:00"), ("10:00", "11:00")])
    with pytest.raises(ValidationError):
        set_weekly_schedule(db, agenda.provider.id, agenda.member.id, agenda.location.id, schedule)

    days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert [d.day_of_week for d in days] == [1]
    assert days[0].slots[0] == TimeRange.parse("09:00", "12:00")


def test_location_and_member_agendas_are_separate(db, agenda):
    set_weekly_schedule(
        db, agenda.provider.id, None, agenda.location.id, week(d2=[("10:00", "12:00")])
    )
    location_days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, None)
    member_days = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)

    assert len(location_days) == 7
    assert all(d.member_id is None for d in location_days)
    assert [d.day_of_week for d in member_days] == [1]


def test_member_must_work_at_the_location(db, agenda):
    other = make_location(db, agenda.provider, name="Annexe")
    data = AvailabilitySet(
        member_id=agenda.member.id,
        location_id=other.id,
        day_of_week=2,
        slots=slots(("09:00", "12:00")),
    )
    with pytest.raises(NotFoundError):
        set_availability(db, agenda.provider.id, data)


# ── Scheduled changes ────────────────────────────────────────────────────


def change_data(agenda, effective_from, pairs=(("10:00", "16:00"),), day_of_week=1, **overrides):
    values = dict(
        member_id=agenda.member.id,
        location_id=agenda.location.id,
        day_of_week=day_of_week,
        slots=slots(*pairs),
        effective_from=effective_from,
    )
    values.update(overrides)
    return ScheduledAvailabilitySet(**values)


def plan_change(db, agenda, *args, **kwargs):
    return set_scheduled_availability(db, agenda.provider.id, change_data(agenda, *args, **kwargs), SUNDAY)


def test_scheduled_change_keeps_the_current_template(db, agenda):
    scheduled = plan_change(db, agenda, date(2030, 1, 14))
    assert scheduled.effective_from == date(2030, 1, 14)

    [monday] = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert monday.effective_from is None
    assert monday.slots[0] == TimeRange.parse("09:00", "12:00")

    timeline = get_weekly_timeline(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert [t.effective_from for t in timeline[1]] == [None, date(2030, 1, 14)]


def test_scheduled_change_must_be_in_the_future(db, agenda):
    with pytest.raises(ValidationError):
        plan_change(db, agenda, SUNDAY)
    with pytest.raises(ValidationError):
        plan_change(db, agenda, date(2030, 1, 14), pairs=(("12:00", "09:00"),))


def test_scheduled_change_upserts_by_date(db, agenda):
    plan_change(db, agenda, date(2030, 1, 14))
    again = plan_change(db, agenda, date(2030, 1, 14), pairs=(("08:00", "12:00"),))

    [pending] = get_scheduled_changes(db, agenda.provider.id, agenda.location.id, agenda.member.id, SUNDAY)
    assert pending.id == again.id
    assert pending.slots == (TimeRange.parse("08:00", "12:00"),)


def test_pending_changes_per_agenda_and_provider(db, agenda):
    colleague = make_member(db, agenda.provider, agenda.location, name="Bruno Petit")
    mine = plan_change(db, agenda, date(2030, 1, 21))
    theirs = plan_change(db, agenda, date(2030, 1, 14), member_id=colleague.id)

    pending = get_scheduled_changes(db, agenda.provider.id, agenda.location.id, agenda.member.id, SUNDAY)
    assert [c.id for c in pending] == [mine.id]
    assert [c.id for c in get_all_scheduled_changes(db, agenda.provider.id, SUNDAY)] == [theirs.id, mine.id]
    # not pending any more once the date is reached
    assert [c.id for c in get_all_scheduled_changes(db, agenda.provider.id, date(2030, 1, 14))] == [mine.id]


def test_delete_scheduled_change_is_idempotent(db, agenda):
    scheduled = plan_change(db, agenda, date(2030, 1, 14))
    delete_scheduled_change(db, agenda.provider.id, scheduled.id)
    delete_scheduled_change(db, agenda.provider.id, scheduled.id)
    assert get_all_scheduled_changes(db, agenda.provider.id, SUNDAY) == []


def test_current_records_are_not_deleted_as_changes(db, agenda):
    [monday] = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    delete_scheduled_change(db, agenda.provider.id, monday.id)
    assert len(get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)) == 1


def test_apply_due_changes_folds_them_into_the_template(db, agenda):
    plan_change(db, agenda, date(2030, 1, 14))
    plan_change(db, agenda, date(2030, 1, 21), pairs=(("11:00", "13:00"),))
    plan_change(db, agenda, date(2030, 1, 15), day_of_week=2)
    later = plan_change(db, agenda, date(2030, 1, 28), pairs=(("08:00", "09:00"),))

    assert apply_due_scheduled_changes(db, agenda.provider.id, date(2030, 1, 21)) == 3

    monday, tuesday = get_weekly_schedule(db, agenda.provider.id, agenda.location.id, agenda.member.id)
    assert monday.slots == (TimeRange.parse("11:00", "13:00"),)
    assert tuesday.day_of_week == 2 and tuesday.effective_from is None
    assert [c.id for c in get_all_scheduled_changes(db, agenda.provider.id, date(2030, 1, 21))] == [later.id]
    assert apply_due_scheduled_changes(db, agenda.provider.id, date(2030, 1, 21)) == 0


# ── Exceptions ───────────────────────────────────────────────────────────


def test_exception_upsert_and_query(db, agenda):
    data = ExceptionSet(
        member_id=agenda.member.id,
        location_id=agenda.location.id,
        date=MONDAY,
        is_open=False,
        reason="Formation",
    )
    first = set_exception(db, agenda.provider.id, data)
    second = set_exception(
        db, agenda.provider.id,
        data.model_copy(update={"is_open": True, "slots": slots(("13:00", "15:00"))}),
    )

    assert first.id == second.id
    found = get_exceptions(db, agenda.provider.id, agenda.location.id, agenda.member.id, MONDAY, TUESDAY)
    assert len(found) == 1
    assert found[0].date == MONDAY
    assert found[0].is_open
    assert found[0].slots == (TimeRange.parse("13:00", "15:00"),)


def test_exception_query_is_bounded_by_dates(db, agenda):
    set_exception(db, agenda.provider.id, ExceptionSet(
        member_id=agenda.member.id, location_id=agenda.location.id, date=TUESDAY, is_open=False,
    ))
    assert get_exceptions(
        db, agenda.provider.id, agenda.location.id, agenda.member.id, MONDAY, MONDAY
    ) == []


def test_delete_exception_is_idempotent(db, agenda):
    template = set_exception(db, agenda.provider.id, ExceptionSet(
        member_id=agenda.member.id, location_id=agenda.location.id, date=MONDAY, is_open=False,
    ))
    delete_exception(db, agenda.provider.id, template.id)
    delete_exception(db, agenda.provider.id, template.id)
    assert get_exceptions(
        db, agenda.provider.id, agenda.location.id, agenda.member.id, MONDAY, MONDAY
    ) == []


# ── Blocked periods ──────────────────────────────────────────────────────


def test_block_and_unblock(db, agenda):
    blocked_id = block_period(db, agenda.provider.id, BlockedPeriodCreate(
        member_id=agenda.member.id,
        start_date=MONDAY,
        end_date=MONDAY,
        all_day=True,
        reason="Congés",
    ))
    period = get_blocked_period(db, agenda.provider.id, blocked_id)
    assert period.all_day
    assert period.time_range is None
    assert [p.id for p in get_blocked_slots(db, agenda.provider.id)] == [blocked_id]

    unblock_period(db, agenda.provider.id, blocked_id)
    unblock_period(db, agenda.provider.id, blocked_id)
    assert get_blocked_slots(db, agenda.provider.id) == []


def test_blocked_period_of_another_provider_is_invisible(db, agenda):
    blocked_id = block_period(db, agenda.provider.id, BlockedPeriodCreate(
        start_date=MONDAY, end_date=MONDAY, all_day=True,
    ))
    assert get_blocked_period(db, agenda.provider.id + 1, blocked_id) is None
    unblock_period(db, agenda.provider.id + 1, blocked_id)
    assert get_blocked_period(db, agenda.provider.id, blocked_id) is not None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start_date": TUESDAY, "end_date": MONDAY, "all_day": True},
        {"start_date": MONDAY, "end_date": MONDAY, "start_time": "10:00"},
        {"start_date": MONDAY, "end_date": MONDAY, "start_time": "11:00", "end_time": "10:00"},
        {"start_date": MONDAY, "end_date": MONDAY, "all_day": True, "is_recurring": True},
        {
            "start_date": MONDAY, "end_date": MONDAY, "all_day": True,
            "is_recurring": True, "recurring_days": [7],
        },
    ],
)
def test_invalid_blocked_periods_are_rejected(db, agenda, kwargs):
    with pytest.raises(ValidationError):
        block_period(db, agenda.provider.id, BlockedPeriodCreate(**kwargs))


def test_blocked_period_for_unknown_member_is_not_found(db, agenda):
    with pytest.raises(NotFoundError):
        block_period(db, agenda.provider.id, BlockedPeriodCreate(
            member_id=999, start_date=MONDAY, end_date=MONDAY, all_day=True,
        ))


def test_blocked_period_scope(db, agenda):
    colleague = make_member(db, agenda.provider, agenda.location, name="Bruno Petit")
    blocked_id = block_period(db, agenda.provider.id, BlockedPeriodCreate(
        member_id=agenda.member.id,
        location_id=agenda.location.id,
        start_date=MONDAY,
        end_date=date(2030, 1, 31),
        start_time="10:00",
        end_time="11:00",
        is_recurring=True,
        recurring_days=[1],
    ))
    period = get_blocked_period(db, agenda.provider.id, blocked_id)

    assert blocked_period_applies(period, MONDAY, agenda.member.id, agenda.location.id)
    assert blocked_period_applies(period, date(2030, 1, 14), agenda.member.id, agenda.location.id)
    assert not blocked_period_applies(period, TUESDAY, agenda.member.id, agenda.location.id)
    assert not blocked_period_applies(period, MONDAY, colleague.id, agenda.location.id)
    assert not blocked_period_applies(period, MONDAY, None, agenda.location.id)
    assert not blocked_period_applies(period, date(2030, 2, 4), agenda.member.id, agenda.location.id)

    assert blocked_period_overlaps(period, TimeRange.parse("10:30", "11:30"))
    assert not blocked_period_overlaps(period, TimeRange.parse("11:00", "12:00"))
    assert not blocked_period_overlaps(period, TimeRange.parse("09:00", "10:00"))
