# src/life_manager/sync/conflicts.py

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from .sync_models import CalendarEvent, Conflict, ConflictType


def ranges_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open overlap: ranges that only touch do not overlap."""
    return start1 < end2 and start2 < end1


def format_clock(value: datetime) -> str:
    """9:00 AM style, no leading zero on the hour."""
    hour12 = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour12}:{value.minute:02d} {suffix}"


def _conflict_key(id_a: str, id_b: str) -> tuple[str, str]:
    a, b = sorted((id_a, id_b))
    return a, b


def detect_event_conflicts(events: Sequence[CalendarEvent]) -> list[Conflict]:
    """
    One Conflict per overlapping pair within a fetched batch.

    Every pair is compared once; the sorted id pair dedupes repeated events.
    """
    conflicts: list[Conflict] = []
    seen: set[tuple[str, str]] = set()

    for i, first in enumerate(events):
        for second in events[i + 1 :]:
            if first.id == second.id:
                continue
            if not ranges_overlap(first.start, first.end, second.start, second.end):
                continue

            key = _conflict_key(first.id, second.id)
            if key in seen:
                continue
            seen.add(key)

            conflicts.append(
                Conflict(
                    type=ConflictType.OVERLAP,
                    entities=key,
                    description=(
                        f'"{first.title}" ({format_clock(first.start)}-{format_clock(first.end)}) '
                        f'overlaps with "{second.title}" ({format_clock(second.start)}-{format_clock(second.end)})'
                    ),
                )
            )

    return conflicts
