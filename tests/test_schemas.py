import re

import pytest
from pydantic import ValidationError

from curriculum_flow.errors import ValidationFailed
from curriculum_flow.schemas import (
    Course,
    CurriculumData,
    Prerequisite,
    PrerequisiteKind,
    generate_course_id,
    parse_hours,
    validate_prerequisite_order,
)

from .conftest import make_course


@pytest.mark.parametrize("label,expected", [("54h", 54), ("60", 60), (" 32 hours", 32), ("h54", 0), ("", 0), (None, 0)])
def test_parse_hours_takes_leading_integer(label, expected):
    assert parse_hours(label) == expected


def test_generate_course_id_is_slug_plus_timestamp_tail():
    cid = generate_course_id("Cálculo I & II")
    assert re.fullmatch(r"c-lculo-i-ii-\d{6}", cid)


def test_course_requires_name_and_hours():
    with pytest.raises(ValidationError):
        Course(id="x", name="  ", hours="60h")
    with pytest.raises(ValidationError):
        Course(id="x", name="Physics", hours="")


def test_course_rejects_unknown_type_and_normalizes_case():
    assert Course(id="x", name="Physics", hours="60h", type="np").type == "NP"
    with pytest.raises(ValidationError):
        Course(id="x", name="Physics", hours="60h", type="ZZ")


def test_fourth_meeting_slot_is_rejected():
    slots = [("Monday", "07:00"), ("Tuesday", "07:00"), ("Wednesday", "07:00")]
    assert len(make_course("x", slots=slots).meeting_slots) == 3
    with pytest.raises(ValidationError):
        make_course("x", slots=slots + [("Thursday", "07:00")])


def test_blank_professor_becomes_none():
    assert make_course("x", professor="   ").professor is None


def test_prerequisite_aliases_and_default_kind():
    p = Prerequisite.model_validate({"from": "a", "to": "b"})
    assert p.kind == PrerequisiteKind.HARD
    assert p.model_dump(by_alias=True) == {"from": "a", "to": "b", "kind": 1}
    assert Prerequisite.model_validate({"from": "a", "to": "b", "tipo": 2}).kind == PrerequisiteKind.COREQUISITE


def test_prerequisite_cannot_point_at_itself():
    with pytest.raises(ValidationError):
        Prerequisite(from_id="a", to_id="a")


def test_rename_repoints_edges_and_completions(sample_data):
    data = sample_data.with_completions({"b"})
    renamed = data.with_course(make_course("b2", period=2), prior_id="b")
    assert [c.id for c in renamed.courses if c.id.startswith("b")] == ["b2"]
    assert {p.key for p in renamed.prerequisites} == {("a", "b2"), ("b2", "c")}
    assert renamed.completed_courses == ["b2"]


def test_without_course_drops_its_edges(sample_data):
    data = sample_data.without_course("b")
    assert [c.id for c in data.courses] == ["a", "c"]
    assert data.prerequisites == []


def test_prerequisite_form_checks(sample_data):
    validate_prerequisite_order(sample_data, "a", "c")
    with pytest.raises(ValidationFailed):
        validate_prerequisite_order(sample_data, "a", "a")
    with pytest.raises(ValidationFailed):
        validate_prerequisite_order(sample_data, "c", "a")
    with pytest.raises(ValidationFailed):
        validate_prerequisite_order(sample_data, "a", "missing")


def test_catalog_strips_completions(sample_data):
    assert sample_data.with_completions({"a"}).catalog().completed_courses == []
    assert CurriculumData().catalog() == CurriculumData()
