"""
Import/export documents.

The curriculum document is ``{"courses": [...], "prerequisites": [...]}``.
Completion state never travels with it; completions have their own small
document, ``{"completedCourses": [...]}``.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from .errors import ImportFormatError
from .schemas import Course, CurriculumData, Prerequisite

DEFAULT_CURRICULUM_PATH = Path(__file__).resolve().parent / "data" / "default_curriculum.json"


def export_document(data: CurriculumData) -> str:
    payload = {
        "courses": [c.model_dump(mode="json", exclude_none=True) for c in data.courses],
        "prerequisites": [p.model_dump(mode="json", by_alias=True) for p in data.prerequisites],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _load_json(text: str) -> dict:
    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ImportFormatError("Invalid data format: not a JSON document") from exc
    if not isinstance(payload, dict):
        raise ImportFormatError("Invalid data format: expected a JSON object")
    return payload


def parse_document(text: str) -> CurriculumData:
    """Checks the document shape only; prerequisites may name courses that do not exist."""
    payload = _load_json(text)
    courses = payload.get("courses")
    prerequisites = payload.get("prerequisites")
    if not isinstance(courses, list) or not isinstance(prerequisites, list):
        raise ImportFormatError("Invalid data format: 'courses' and 'prerequisites' must both be lists")
    try:
        data = CurriculumData(
            courses=[Course.model_validate(c) for c in courses],
            prerequisites=[Prerequisite.model_validate(p) for p in prerequisites],
        )
    except ValidationError as exc:
        raise ImportFormatError(f"Invalid data format: {exc.errors()[0]['msg']}") from exc
    seen: set[str] = set()
    for course in data.courses:
        if course.id in seen:
            raise ImportFormatError(f"Invalid data format: course id {course.id!r} appears more than once")
        seen.add(course.id)
    return data


def export_completions(data: CurriculumData) -> str:
    return json.dumps({"completedCourses": sorted(data.completed_courses)}, indent=2)


def parse_completions(text: str) -> list[str]:
    """Accepts the completions document or a full curriculum document carrying completedCourses."""
    payload = _load_json(text)
    ids = payload.get("completedCourses")
    if not isinstance(ids, list):
        raise ImportFormatError("Invalid data format: 'completedCourses' must be a list")
    if not all(isinstance(x, str) for x in ids):
        raise ImportFormatError("Invalid data format: course ids must be strings")
    return [x.strip() for x in ids if x.strip()]


def load_default_document(path: Path = DEFAULT_CURRICULUM_PATH) -> CurriculumData:
    """The catalog shipped with the package, used to seed an empty deployment."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ImportFormatError(f"Default curriculum is missing: {path.name}") from exc
    return parse_document(text)
