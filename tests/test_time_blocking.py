# tests/test_time_blocking.py

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from life_manager.planner.time_blocking import (
    EnergyProfile,
    Gap,
    Schedule,
    TimeBlock,
    detect_schedule_conflicts,
    find_gaps,
    generate_schedule,
    reschedule_task,
    sort_flexible_tasks,
)
from life_manager.tasks.task_models import EnergyLevel, Task, TaskPriority, TaskStatus

UTC = timezone.utc
DAY = date(2025, 1, 15)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 15, hour, minute, tzinfo=UTC)


def make_task(
    task_id: int,
    minutes: int = 30,
    *,
    priority: TaskPriority = TaskPriority.SHOULD_DO,
    energy: EnergyLevel = EnergyLevel.MEDIUM,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Task:
    return Task(
        id=task_id,
        title=f"task {task_id}",
        description=None,
        domain_id=1,
        priority=priority,
        estimated_minutes=minutes,
        due_date=None,
        status=TaskStatus.TODO,
        energy_level=energy,
        scheduled_start=start,
        scheduled_end=end,
    )


def _plan(fixed, flexible, **kwargs) -> Schedule:
    return generate_schedule(fixed, flexible, EnergyProfile.default(), DAY, tz=UTC, **kwargs)


def test_energy_aware_placement_around_a_meeting() -> None:
    meeting = make_task(1, 60, priority=TaskPriority.MUST_DO, start=_at(10), end=_at(11))
    deep_work = make_task(2, 90, priority=TaskPriority.MUST_DO, energy=EnergyLevel.HIGH)
    email = make_task(3, 30, energy=EnergyLevel.LOW)
    review = make_task(4, 60, priority=TaskPriority.NICE_TO_HAVE)

    schedule = _plan([meeting], [deep_work, email, review])

    placed = {b.task_id: (b.start, b.end, b.is_fixed) for b in schedule.time_blocks}
    assert placed == {
        1: (_at(10), _at(11), True),
        # First gap starting in a peak hour.
        2: (_at(11), _at(12, 30), False),
        # Low energy scores the same everywhere here; earliest gap wins.
        3: (_at(8), _at(8, 30), False),
        4: (_at(8, 30), _at(9, 30), False),
    }
    assert [b.task_id for b in schedule.time_blocks] == [3, 4, 1, 2]
    assert schedule.unscheduled_tasks == []
    assert schedule.conflicts == []


def test_report_and_email_around_two_meetings() -> None:
    standup = make_task(1, 60, start=_at(9), end=_at(10))
    lunch = make_task(2, 60, start=_at(12), end=_at(13))
    report = make_task(3, 90, energy=EnergyLevel.HIGH)
    email = make_task(4, 30, energy=EnergyLevel.LOW)
    profile = EnergyProfile(peak_hours=frozenset({9, 10, 11, 14, 15}), low_hours=frozenset({13, 17, 18, 19}))

    schedule = generate_schedule([standup, lunch], [report, email], profile, DAY, tz=UTC)

    placed = {b.task_id: (b.start, b.end) for b in schedule.time_blocks}
    assert placed[3] == (_at(10), _at(11, 30))
    assert placed[4] == (_at(13), _at(13, 30))
    fixed = [b for b in schedule.time_blocks if b.is_fixed]
    for block in schedule.time_blocks:
        if not block.is_fixed:
            assert not any(block.overlaps(f) for f in fixed)


def test_task_longer_than_any_gap_is_unscheduled() -> None:
    marathon = make_task(7, 13 * 60)

    schedule = _plan([], [marathon])

    assert schedule.time_blocks == []
    assert schedule.unscheduled_tasks == [marathon]


def test_full_day_of_meetings_leaves_every_flexible_task_unscheduled() -> None:
    full_day = make_task(1, 720, start=_at(8), end=_at(20))
    report = make_task(2, 90, priority=TaskPriority.MUST_DO, energy=EnergyLevel.HIGH)
    email = make_task(3, 15, energy=EnergyLevel.LOW)

    schedule = _plan([full_day], [report, email])

    assert [(b.task_id, b.is_fixed) for b in schedule.time_blocks] == [(1, True)]
    assert [t.id for t in schedule.unscheduled_tasks] == [2, 3]
    assert schedule.conflicts == []


def test_task_without_positive_duration_is_unscheduled() -> None:
    meeting = make_task(100, 60, start=_at(9), end=_at(10))
    broken = make_task(1, -120, priority=TaskPriority.MUST_DO, energy=EnergyLevel.HIGH)
    empty = make_task(3, 0)
    errand = make_task(2, 120, energy=EnergyLevel.LOW)
    profile = EnergyProfile(peak_hours=frozenset({10}), low_hours=frozenset())

    schedule = generate_schedule([meeting], [broken, empty, errand], profile, DAY, tz=UTC)

    assert {t.id for t in schedule.unscheduled_tasks} == {1, 3}
    placed = {b.task_id: (b.start, b.end) for b in schedule.time_blocks}
    assert placed == {100: (_at(9), _at(10)), 2: (_at(10), _at(12))}
    assert detect_schedule_conflicts(schedule) == []
    assert reschedule_task(broken, schedule, profile, DAY, tz=UTC) is None


def test_low_energy_task_prefers_low_hours() -> None:
    early = make_task(1, 60, start=_at(8), end=_at(9))
    midday = make_task(2, 180, start=_at(10), end=_at(13))
    nap = make_task(3, 30, energy=EnergyLevel.LOW)

    schedule = _plan([early, midday], [nap])

    block = next(b for b in schedule.time_blocks if b.task_id == 3)
    assert block.start == _at(13)


def test_overlapping_fixed_tasks_are_reported() -> None:
    a = make_task(1, 60, start=_at(9), end=_at(10))
    b = make_task(2, 60, start=_at(9, 30), end=_at(10, 30))

    schedule = _plan([a, b], [])

    assert len(schedule.conflicts) == 1
    assert schedule.conflicts[0].description == "Tasks 1 and 2 have overlapping time blocks"
    assert detect_schedule_conflicts(schedule) == schedule.conflicts


def test_fixed_task_without_times_is_skipped() -> None:
    schedule = _plan([make_task(1, 60)], [])
    assert schedule.time_blocks == []


def test_sort_is_priority_then_energy_and_stable() -> None:
    tasks = [
        make_task(1, priority=TaskPriority.NICE_TO_HAVE, energy=EnergyLevel.HIGH),
        make_task(2, priority=TaskPriority.MUST_DO, energy=EnergyLevel.LOW),
        make_task(3, priority=TaskPriority.MUST_DO, energy=EnergyLevel.HIGH),
        make_task(4, priority=TaskPriority.SHOULD_DO),
        make_task(5, priority=TaskPriority.SHOULD_DO),
    ]
    assert [t.id for t in sort_flexible_tasks(tasks)] == [3, 2, 4, 5, 1]


def test_find_gaps_merges_overlaps_and_clips_to_window() -> None:
    blocks = [
        TimeBlock(1, _at(7), _at(8, 30), True),
        TimeBlock(2, _at(10), _at(11), True),
        TimeBlock(3, _at(10, 30), _at(12), True),
        TimeBlock(4, _at(19, 30), _at(21), True),
    ]
    assert find_gaps(blocks, _at(8), _at(20)) == [
        Gap(_at(8, 30), _at(10)),
        Gap(_at(12), _at(19, 30)),
    ]


def test_custom_working_window() -> None:
    schedule = _plan([], [make_task(1, 30)], work_day_start_hour=6, work_day_end_hour=7)
    assert schedule.time_blocks[0].start == _at(6)


def test_reschedule_moves_task_to_next_best_slot() -> None:
    meeting = make_task(1, 60, start=_at(10), end=_at(11))
    focus = make_task(2, 60, energy=EnergyLevel.HIGH)
    schedule = _plan([meeting], [focus])
    assert next(b for b in schedule.time_blocks if b.task_id == 2).start == _at(11)

    # Something else claims the late morning; the next peak-hour gap starts at 14:00.
    schedule.time_blocks.append(TimeBlock(3, _at(11), _at(14), True))
    block = reschedule_task(focus, schedule, EnergyProfile.default(), DAY, tz=UTC)

    assert block is not None
    assert block.start == _at(14)
    assert block.end == _at(15)
    assert block.is_fixed is False


def test_reschedule_returns_none_when_nothing_fits() -> None:
    full_day = make_task(1, 720, start=_at(8), end=_at(20))
    task = make_task(2, 30)
    schedule = _plan([full_day], [])

    assert reschedule_task(task, schedule, EnergyProfile.default(), DAY, tz=UTC) is None


_fixed_shapes = st.lists(
    st.tuples(st.integers(min_value=0, max_value=47), st.integers(min_value=1, max_value=12)),
    max_size=6,
)
_flexible_shapes = st.lists(
    st.tuples(
        st.integers(min_value=-60, max_value=300),
        st.sampled_from(list(TaskPriority)),
        st.sampled_from(list(EnergyLevel)),
    ),
    max_size=10,
)


@settings(max_examples=200, deadline=None)
@given(_fixed_shapes, _flexible_shapes)
def test_flexible_blocks_never_overlap_and_stay_in_window(fixed_shapes, flexible_shapes) -> None:
    fixed = []
    for i, (slot, quarters) in enumerate(fixed_shapes):
        start = _at(8) + timedelta(minutes=15 * slot)
        fixed.append(make_task(100 + i, 15 * quarters, start=start, end=start + timedelta(minutes=15 * quarters)))
    flexible = [
        make_task(i, minutes, priority=priority, energy=energy)
        for i, (minutes, priority, energy) in enumerate(flexible_shapes, start=1)
    ]

    schedule = _plan(fixed, flexible)

    flex_blocks = [b for b in schedule.time_blocks if not b.is_fixed]
    for block in flex_blocks:
        assert _at(8) <= block.start < block.end <= _at(20)
        for other in schedule.time_blocks:
            if other is not block:
                assert not block.overlaps(other)

    placed = {b.task_id for b in flex_blocks}
    unscheduled = {t.id for t in schedule.unscheduled_tasks}
    assert placed.isdisjoint(unscheduled)
    assert placed | unscheduled == {t.id for t in flexible}
    for task in flexible:
        if task.id in placed:
            block = next(b for b in flex_blocks if b.task_id == task.id)
            assert block.end - block.start == timedelta(minutes=task.estimated_minutes)
