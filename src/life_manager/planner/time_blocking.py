# src/life_manager/planner/time_blocking.py

from __future__ import annotations

"""
Energy-aware time blocking.

Fixed (calendar-derived) tasks are immovable. Flexible tasks are placed greedily,
most important first, into the free gaps of the working day, preferring gaps whose
starting hour matches the task's energy demand. The planner does not backtrack:
a task that fits in no gap is reported as unscheduled, never squeezed in.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo

from ..sync.sync_models import Conflict, ConflictType
from ..tasks.task_models import EnergyLevel, Task

logger = logging.getLogger(__name__)

WORK_DAY_START_HOUR = 8
WORK_DAY_END_HOUR = 20

SCORE_ALIGNED = 10
SCORE_MEDIUM = 5
SCORE_MISALIGNED = 1


@dataclass(frozen=True, slots=True)
class EnergyProfile:
    peak_hours: frozenset[int]
    low_hours: frozenset[int]
    preferred_task_minutes: int = 30

    @classmethod
    def default(cls) -> EnergyProfile:
        return cls(peak_hours=frozenset({9, 10, 11, 14, 15, 16}), low_hours=frozenset({13, 17, 18, 19}))

    @classmethod
    def from_settings(cls, settings) -> EnergyProfile:
        return cls(
            peak_hours=frozenset(getattr(settings, "peak_hours", (9, 10, 11, 14, 15, 16))),
            low_hours=frozenset(getattr(settings, "low_hours", (13, 17, 18, 19))),
            preferred_task_minutes=int(getattr(settings, "preferred_task_minutes", 30)),
        )


@dataclass(frozen=True, slots=True)
class TimeBlock:
    task_id: int
    start: datetime
    end: datetime
    is_fixed: bool

    def overlaps(self, other: TimeBlock) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(slots=True)
class Gap:
    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def fits(self, minutes: int) -> bool:
        return self.minutes >= minutes


@dataclass(slots=True)
class Schedule:
    time_blocks: list[TimeBlock] = field(default_factory=list)
    unscheduled_tasks: list[Task] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)


def _local_tz(tz: tzinfo | None) -> tzinfo:
    if tz is not None:
        return tz
    local = datetime.now().astimezone().tzinfo
    assert local is not None
    return local


def _aware(value: datetime, tz: tzinfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=tz)


def working_window(
    day: date,
    tz: tzinfo,
    *,
    start_hour: int = WORK_DAY_START_HOUR,
    end_hour: int = WORK_DAY_END_HOUR,
) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(hour=start_hour), tzinfo=tz)
    if end_hour >= 24:
        end = datetime.combine(day + timedelta(days=1), time(), tzinfo=tz)
    else:
        end = datetime.combine(day, time(hour=end_hour), tzinfo=tz)
    return start, end


def find_gaps(blocks: Iterable[TimeBlock], window_start: datetime, window_end: datetime) -> list[Gap]:
    """Complement of `blocks` within the window, ordered by start. Overlapping blocks are merged."""
    gaps: list[Gap] = []
    cursor = window_start
    for block in sorted(blocks, key=lambda b: b.start):
        start = max(block.start, window_start)
        end = min(block.end, window_end)
        if end <= start:
            continue
        if start > cursor:
            gaps.append(Gap(cursor, start))
        cursor = max(cursor, end)
    if cursor < window_end:
        gaps.append(Gap(cursor, window_end))
    return gaps


def sort_flexible_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Priority descending, then energy descending. Stable for equal keys."""
    return sorted(tasks, key=lambda t: (-t.priority.rank, -t.energy_level.rank))


def score_gap(gap: Gap, task: Task, profile: EnergyProfile, tz: tzinfo) -> int:
    hour = gap.start.astimezone(tz).hour
    energy = task.energy_level
    if energy is EnergyLevel.HIGH and hour in profile.peak_hours:
        return SCORE_ALIGNED
    if energy is EnergyLevel.LOW and hour in profile.low_hours:
        return SCORE_ALIGNED
    if energy is EnergyLevel.MEDIUM:
        return SCORE_MEDIUM
    return SCORE_MISALIGNED


def find_best_gap(task: Task, gaps: Sequence[Gap], profile: EnergyProfile, tz: tzinfo) -> int | None:
    """
    Index of the best-scoring gap that fits the task; ties go to the earliest start.

    A task without a positive duration fits nowhere.
    """
    if task.estimated_minutes <= 0:
        return None
    best_index: int | None = None
    best_score = -1
    for index, gap in enumerate(gaps):
        if not gap.fits(task.estimated_minutes):
            continue
        score = score_gap(gap, task, profile, tz)
        if score > best_score or (
            score == best_score and best_index is not None and gap.start < gaps[best_index].start
        ):
            best_index = index
            best_score = score
    return best_index


def split_gap(gap: Gap, start: datetime, end: datetime) -> list[Gap]:
    """What is left of `gap` after [start, end) is consumed: zero, one or two gaps."""
    rest: list[Gap] = []
    if start > gap.start:
        rest.append(Gap(gap.start, start))
    if end < gap.end:
        rest.append(Gap(end, gap.end))
    return rest


def detect_block_overlaps(blocks: Iterable[TimeBlock]) -> list[Conflict]:
    ordered = sorted(blocks, key=lambda b: b.start)
    conflicts: list[Conflict] = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1 :]:
            if second.start >= first.end:
                # Sorted by start: nothing later can overlap `first`.
                break
            if first.overlaps(second):
                conflicts.append(
                    Conflict(
                        type=ConflictType.OVERLAP,
                        entities=(str(first.task_id), str(second.task_id)),
                        description=f"Tasks {first.task_id} and {second.task_id} have overlapping time blocks",
                    )
                )
    return conflicts


def _fixed_blocks(fixed_tasks: Iterable[Task], tz: tzinfo) -> list[TimeBlock]:
    blocks: list[TimeBlock] = []
    for task in fixed_tasks:
        if task.scheduled_start is None or task.scheduled_end is None:
            logger.warning("Fixed task %s has no scheduled start/end; skipping", task.id)
            continue
        start = _aware(task.scheduled_start, tz)
        end = _aware(task.scheduled_end, tz)
        if end <= start:
            logger.warning("Fixed task %s ends before it starts; skipping", task.id)
            continue
        blocks.append(TimeBlock(task_id=task.id, start=start, end=end, is_fixed=True))
    blocks.sort(key=lambda b: b.start)
    return blocks


def generate_schedule(
    fixed_tasks: Iterable[Task],
    flexible_tasks: Iterable[Task],
    energy_profile: EnergyProfile | None = None,
    day: date | None = None,
    *,
    tz: tzinfo | None = None,
    work_day_start_hour: int = WORK_DAY_START_HOUR,
    work_day_end_hour: int = WORK_DAY_END_HOUR,
) -> Schedule:
    tz = _local_tz(tz)
    profile = energy_profile or EnergyProfile.default()
    day = day or datetime.now(tz).date()

    fixed = _fixed_blocks(fixed_tasks, tz)
    schedule = Schedule(time_blocks=list(fixed), conflicts=detect_block_overlaps(fixed))

    window_start, window_end = working_window(
        day, tz, start_hour=work_day_start_hour, end_hour=work_day_end_hour
    )
    gaps = find_gaps(fixed, window_start, window_end)

    for task in sort_flexible_tasks(flexible_tasks):
        index = find_best_gap(task, gaps, profile, tz)
        if index is None:
            logger.debug("Task %s (%s min) fits no gap; unscheduled", task.id, task.estimated_minutes)
            schedule.unscheduled_tasks.append(task)
            continue

        gap = gaps[index]
        start = gap.start
        end = start + timedelta(minutes=task.estimated_minutes)
        schedule.time_blocks.append(TimeBlock(task_id=task.id, start=start, end=end, is_fixed=False))

        gaps[index : index + 1] = split_gap(gap, start, end)
        gaps.sort(key=lambda g: g.start)

    schedule.time_blocks.sort(key=lambda b: b.start)
    logger.info(
        "Schedule for %s: blocks=%s unscheduled=%s conflicts=%s",
        day.isoformat(),
        len(schedule.time_blocks),
        len(schedule.unscheduled_tasks),
        len(schedule.conflicts),
    )
    return schedule


def reschedule_task(
    task: Task,
    existing_schedule: Schedule,
    energy_profile: EnergyProfile | None = None,
    day: date | None = None,
    *,
    tz: tzinfo | None = None,
    work_day_start_hour: int = WORK_DAY_START_HOUR,
    work_day_end_hour: int = WORK_DAY_END_HOUR,
) -> TimeBlock | None:
    """Best new slot for `task` once its current block is removed, or None if nothing fits."""
    tz = _local_tz(tz)
    profile = energy_profile or EnergyProfile.default()
    day = day or datetime.now(tz).date()

    remaining = [b for b in existing_schedule.time_blocks if b.task_id != task.id]
    window_start, window_end = working_window(
        day, tz, start_hour=work_day_start_hour, end_hour=work_day_end_hour
    )
    gaps = find_gaps(remaining, window_start, window_end)

    index = find_best_gap(task, gaps, profile, tz)
    if index is None:
        return None
    start = gaps[index].start
    return TimeBlock(
        task_id=task.id,
        start=start,
        end=start + timedelta(minutes=task.estimated_minutes),
        is_fixed=False,
    )


def detect_schedule_conflicts(schedule: Schedule) -> list[Conflict]:
    return detect_block_overlaps(schedule.time_blocks)
