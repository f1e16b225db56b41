"""
Typed records exchanged between the database adapter, the engines and the HTTP layer.

Course and Prerequisite mirror the catalog tables; CurriculumData is the aggregate
that is fetched, cached, exported and swapped into the store as one unit.
"""

from __future__ import annotations

import re
import time
from enum import IntEnum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import COURSE_TYPES, MAX_WEEKLY_SLOTS
from .errors import ValidationFailed


class PrerequisiteKind(IntEnum):
    HARD = 1
    COREQUISITE = 2
    FLEXIBLE = 3


class MeetingSlot(BaseModel):
    model_config = ConfigDict(frozen=True)
    day: str
    time: str

    @field_validator("day", "time")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class Course(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    name: str
    period: int = Field(1, ge=1)
    row: int = 1
    hours: str
    type: str = "NB"
    credits: float = 0
    professor: Optional[str] = None
    schedules: Optional[list[MeetingSlot]] = None

    @field_validator("id", "name", "hours")
    @classmethod
    def required_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("is required")
        return value

    @field_validator("type")
    @classmethod
    def known_type(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in COURSE_TYPES:
            raise ValueError(f"must be one of {', '.join(COURSE_TYPES)}")
        return value

    @field_validator("schedules")
    @classmethod
    def slot_ceiling(cls, value: Optional[list[MeetingSlot]]) -> Optional[list[MeetingSlot]]:
        if value is not None and len(value) > MAX_WEEKLY_SLOTS:
            raise ValueError(f"at most {MAX_WEEKLY_SLOTS} weekly slots per course")
        return value or None

    @field_validator("professor")
    @classmethod
    def blank_professor_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def meeting_slots(self) -> list[MeetingSlot]:
        return list(self.schedules or [])


class Prerequisite(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    from_id: str = Field(validation_alias=AliasChoices("from", "from_id"), serialization_alias="from")
    to_id: str = Field(validation_alias=AliasChoices("to", "to_id"), serialization_alias="to")
    kind: PrerequisiteKind = Field(PrerequisiteKind.HARD, validation_alias=AliasChoices("kind", "tipo"))

    @model_validator(mode="after")
    def no_self_prerequisite(self) -> "Prerequisite":
        if self.from_id == self.to_id:
            raise ValueError("a course cannot be a prerequisite of itself")
        return self

    @property
    def key(self) -> tuple[str, str]:
        return self.from_id, self.to_id


class CurriculumData(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    courses: list[Course] = Field(default_factory=list)
    prerequisites: list[Prerequisite] = Field(default_factory=list)
    completed_courses: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("completedCourses", "completed_courses"),
        serialization_alias="completedCourses",
    )

    def course_by_id(self) -> dict[str, Course]:
        return {c.id: c for c in self.courses}

    def with_completions(self, ids) -> "CurriculumData":
        return self.model_copy(update={"completed_courses": sorted(set(ids))})

    def with_course(self, course: Course, prior_id: Optional[str] = None) -> "CurriculumData":
        old_id = prior_id or course.id
        courses = [c for c in self.courses if c.id not in (old_id, course.id)] + [course]
        prerequisites = self.prerequisites
        completed = self.completed_courses
        if old_id != course.id:
            prerequisites = [_rename_edge(p, old_id, course.id) for p in prerequisites]
            completed = [course.id if cid == old_id else cid for cid in completed]
        return self.model_copy(update={"courses": courses, "prerequisites": prerequisites, "completed_courses": completed})

    def without_course(self, course_id: str) -> "CurriculumData":
        return self.model_copy(
            update={
                "courses": [c for c in self.courses if c.id != course_id],
                "prerequisites": [p for p in self.prerequisites if course_id not in p.key],
                "completed_courses": [cid for cid in self.completed_courses if cid != course_id],
            }
        )

    def with_prerequisite(self, prerequisite: Prerequisite) -> "CurriculumData":
        kept = [p for p in self.prerequisites if p.key != prerequisite.key]
        return self.model_copy(update={"prerequisites": kept + [prerequisite]})

    def without_prerequisite(self, from_id: str, to_id: str) -> "CurriculumData":
        return self.model_copy(update={"prerequisites": [p for p in self.prerequisites if p.key != (from_id, to_id)]})

    def catalog(self) -> "CurriculumData":
        return self.model_copy(update={"completed_courses": []})


def _rename_edge(p: Prerequisite, old_id: str, new_id: str) -> Prerequisite:
    if old_id not in p.key:
        return p
    return Prerequisite(
        from_id=new_id if p.from_id == old_id else p.from_id,
        to_id=new_id if p.to_id == old_id else p.to_id,
        kind=p.kind,
    )


def parse_hours(label: Optional[str]) -> int:
    """Leading integer of an hour label such as "54h"; anything else counts as 0."""
    if not label:
        return 0
    m = re.match(r"^\s*([+-]?\d+)", str(label))
    return int(m.group(1)) if m else 0


def generate_course_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return f"{slug}-{str(int(time.time() * 1000))[-6:]}"


def validate_prerequisite_order(data: CurriculumData, from_id: str, to_id: str) -> None:
    """Checks applied when staff create an edge through the prerequisite form."""
    if from_id == to_id:
        raise ValidationFailed("A course cannot be a prerequisite for itself")
    courses = data.course_by_id()
    if from_id not in courses or to_id not in courses:
        raise ValidationFailed("Both courses must exist in the catalog")
    if courses[from_id].period >= courses[to_id].period:
        raise ValidationFailed("A prerequisite course must be in an earlier period")
