import pytest

from curriculum_flow.errors import ScheduleConflict, ValidationFailed
from curriculum_flow.schedule import ScheduleBuilder
from curriculum_flow.schemas import CurriculumData

from .conftest import make_course

CALCULUS = make_course("calc", name="Calculus", slots=[("Monday", "08:00"), ("Wednesday", "08:00")])
PHYSICS = make_course("phys", name="Physics", slots=[("Monday", "08:00"), ("Tuesday", "10:00")])
CHEMISTRY = make_course("chem", name="Chemistry", period=2, slots=[("Friday", "07:00")])


def test_conflicting_course_is_rejected_as_a_whole():
    builder = ScheduleBuilder([CALCULUS, PHYSICS])
    builder.add_course(CALCULUS)
    before = dict(builder.assignments)
    with pytest.raises(ScheduleConflict) as excinfo:
        builder.add_course(PHYSICS)
    assert excinfo.value.occupant_id == "calc"
    assert excinfo.value.occupant_name == "Calculus"
    assert (excinfo.value.day, excinfo.value.time) == ("Monday", "08:00")
    assert builder.assignments == before
    assert ("Tuesday", "10:00") not in builder.assignments


def test_remove_course_frees_all_its_slots():
    builder = ScheduleBuilder([CALCULUS, PHYSICS])
    builder.add_course(CALCULUS)
    assert builder.remove_course("calc") == 2
    builder.add_course(PHYSICS)
    assert builder.scheduled_course_ids() == {"phys"}


def test_clearing_one_cell_clears_the_whole_course():
    builder = ScheduleBuilder([CALCULUS])
    builder.add_course(CALCULUS)
    assert builder.remove_slot("Wednesday", "08:00") == CALCULUS
    assert builder.assignments == {}
    assert builder.remove_slot("Wednesday", "08:00") is None


def test_completed_or_slotless_courses_cannot_be_added():
    builder = ScheduleBuilder([CALCULUS, make_course("free")], completed={"calc"})
    with pytest.raises(ValidationFailed):
        builder.add_course(CALCULUS)
    with pytest.raises(ValidationFailed):
        builder.add_course(make_course("free"))
    assert builder.candidates() == []


def test_from_catalog_skips_completed_and_conflicting_courses():
    data = CurriculumData(courses=[PHYSICS, CALCULUS, CHEMISTRY], completed_courses=["chem"])
    builder = ScheduleBuilder.from_catalog(data)
    # Candidates are placed in (period, name) order, so Calculus wins Monday 08:00.
    assert builder.scheduled_course_ids() == {"calc"}
    assert [c.id for c in builder.candidates()] == ["calc", "phys"]


def test_grid_lists_default_cells_plus_any_extra_ones():
    builder = ScheduleBuilder([CHEMISTRY, CALCULUS])
    builder.add_course(CHEMISTRY)
    builder.add_course(CALCULUS)
    grid = builder.grid()
    assert list(grid)[:5] == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    assert grid["Friday"]["07:00"] == CHEMISTRY
    assert grid["Monday"]["08:00"] == CALCULUS
    assert grid["Tuesday"]["08:45"] is None


def test_marking_completed_unschedules_the_course():
    builder = ScheduleBuilder([CALCULUS])
    builder.add_course(CALCULUS)
    builder.mark_completed("calc", True)
    assert builder.assignments == {}
    builder.mark_completed("calc", False)
    builder.add_course(CALCULUS)
    assert builder.scheduled_course_ids() == {"calc"}


def test_sync_follows_catalog_changes():
    builder = ScheduleBuilder([CALCULUS, CHEMISTRY])
    builder.add_course(CALCULUS)
    builder.add_course(CHEMISTRY)
    moved = make_course("calc", name="Calculus", slots=[("Thursday", "07:00")])
    builder.sync(CurriculumData(courses=[moved], completed_courses=[]))
    # chem was deleted, calc changed its slots and has to be placed again
    assert builder.assignments == {}
    builder.add_course(moved)
    builder.sync(CurriculumData(courses=[moved], completed_courses=["calc"]))
    assert builder.assignments == {}
