# src/life_manager/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    DROPPED = "dropped"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(raw)
        except ValueError:
            return cls.TODO


class TaskPriority(StrEnum):
    """Priority buckets, ordered by `rank` (higher = more important)."""

    MUST_DO = "must-do"
    SHOULD_DO = "should-do"
    NICE_TO_HAVE = "nice-to-have"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.SHOULD_DO
        try:
            return cls(raw)
        except ValueError:
            return cls.SHOULD_DO


_PRIORITY_RANK = {
    TaskPriority.MUST_DO: 3,
    TaskPriority.SHOULD_DO: 2,
    TaskPriority.NICE_TO_HAVE: 1,
}


class EnergyLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _ENERGY_RANK[self]

    @classmethod
    def from_db(cls, raw: str | None) -> EnergyLevel:
        # Tasks without an explicit energy requirement are treated as medium.
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


_ENERGY_RANK = {
    EnergyLevel.HIGH: 3,
    EnergyLevel.MEDIUM: 2,
    EnergyLevel.LOW: 1,
}


@dataclass(slots=True)
class Domain:
    id: int
    name: str
    description: str


@dataclass(slots=True)
class Task:
    id: int
    title: str
    description: str | None
    domain_id: int
    priority: TaskPriority
    estimated_minutes: int
    due_date: str | None  # ISO date (YYYY-MM-DD)
    status: TaskStatus

    energy_level: EnergyLevel = EnergyLevel.MEDIUM

    # Only calendar-derived (fixed) tasks carry a concrete slot.
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None

    created_at: float = 0.0
    updated_at: float = 0.0
