"""
Weekly schedule grid.

Each (weekday, time) cell holds at most one course. A course is placed in all of
its meeting slots or in none of them: if any slot is taken the whole add is
refused and the grid is left exactly as it was.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .config import TIME_SLOTS, WEEKDAYS
from .errors import ScheduleConflict, ValidationFailed
from .schemas import Course, CurriculumData

logger = logging.getLogger(__name__)


def _slot_key(day: str, time: str) -> tuple[str, str]:
    return day.strip(), time.strip()


class ScheduleBuilder:
    def __init__(
        self,
        courses: Iterable[Course] = (),
        completed: Iterable[str] = (),
        weekdays: Iterable[str] = WEEKDAYS,
        time_slots: Iterable[str] = TIME_SLOTS,
    ):
        self.courses = {c.id: c for c in courses}
        self.completed = set(completed)
        self.weekdays = tuple(weekdays)
        self.time_slots = tuple(time_slots)
        self.assignments: dict[tuple[str, str], Course] = {}

    @classmethod
    def from_catalog(cls, data: CurriculumData, **grid) -> "ScheduleBuilder":
        builder = cls(data.courses, data.completed_courses, **grid)
        for course in builder.candidates():
            try:
                builder.add_course(course)
            except ScheduleConflict as exc:
                logger.info("Not placing %s on the initial schedule: %s", course.id, exc.message)
        return builder

    def candidates(self) -> list[Course]:
        return sorted(
            (c for c in self.courses.values() if c.id not in self.completed and c.meeting_slots),
            key=lambda c: (c.period, c.name),
        )

    def conflicts_for(self, course: Course) -> list[tuple[str, str, Course]]:
        out = []
        for slot in course.meeting_slots:
            key = _slot_key(slot.day, slot.time)
            occupant = self.assignments.get(key)
            if occupant is not None and occupant.id != course.id:
                out.append((key[0], key[1], occupant))
        return out

    def add_course(self, course: Course) -> list[tuple[str, str]]:
        if course.id in self.completed:
            raise ValidationFailed(f"{course.name} is already completed and cannot be scheduled")
        if not course.meeting_slots:
            raise ValidationFailed(f"{course.name} has no meeting slots")
        conflicts = self.conflicts_for(course)
        if conflicts:
            day, time, occupant = conflicts[0]
            raise ScheduleConflict(day, time, occupant.id, occupant.name)
        keys = [_slot_key(s.day, s.time) for s in course.meeting_slots]
        for key in keys:
            self.assignments[key] = course
        self.courses.setdefault(course.id, course)
        return keys

    def remove_course(self, course_id: str) -> int:
        keys = [k for k, c in self.assignments.items() if c.id == course_id]
        for key in keys:
            del self.assignments[key]
        return len(keys)

    def remove_slot(self, day: str, time: str) -> Optional[Course]:
        """Clearing one cell clears the course from every cell it occupies."""
        occupant = self.assignments.get(_slot_key(day, time))
        if occupant is not None:
            self.remove_course(occupant.id)
        return occupant

    def mark_completed(self, course_id: str, completed: bool) -> None:
        if completed:
            self.completed.add(course_id)
            self.remove_course(course_id)
        else:
            self.completed.discard(course_id)

    def sync(self, data: CurriculumData) -> None:
        """Follow catalog edits and completion changes without losing manual placements."""
        self.courses = {c.id: c for c in data.courses}
        done = set(data.completed_courses)
        for key, course in list(self.assignments.items()):
            if key not in self.assignments:
                continue
            current = self.courses.get(course.id)
            if current is None or course.id in done:
                del self.assignments[key]
            elif current.meeting_slots != course.meeting_slots:
                # Slots changed under us; the course has to be placed again.
                self.remove_course(course.id)
            else:
                self.assignments[key] = current
        self.completed = done

    def scheduled_course_ids(self) -> set[str]:
        return {c.id for c in self.assignments.values()}

    def grid(self) -> dict[str, dict[str, Optional[Course]]]:
        days = list(self.weekdays) + sorted({d for d, _ in self.assignments if d not in self.weekdays})
        times = list(self.time_slots) + sorted({t for _, t in self.assignments if t not in self.time_slots})
        return {day: {time: self.assignments.get((day, time)) for time in times} for day in days}
