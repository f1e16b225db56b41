import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from curriculum_flow.errors import (
    AuthorizationRequired,
    CourseNotFound,
    PartialWriteError,
    PrerequisiteNotFound,
    ValidationFailed,
)
from curriculum_flow.models import AuditLog, CompletedCourseRow, PrerequisiteRow, WeeklySlotRow
from curriculum_flow.schemas import CurriculumData, Prerequisite, PrerequisiteKind

from .conftest import make_course


def seed(adapter, staff):
    adapter.upsert_course(staff, make_course("a", slots=[("Monday", "07:00"), ("Wednesday", "07:00")]))
    adapter.upsert_course(staff, make_course("b", period=2))
    adapter.add_prerequisite(staff, "a", "b")


def test_empty_database_gives_empty_aggregate(adapter, anon):
    assert adapter.fetch_all(anon) == CurriculumData()


def test_writes_require_login(adapter, anon):
    with pytest.raises(AuthorizationRequired) as excinfo:
        adapter.upsert_course(anon, make_course("a"))
    assert excinfo.value.message == "login required"
    with pytest.raises(AuthorizationRequired):
        adapter.add_prerequisite(anon, "a", "b")
    with pytest.raises(AuthorizationRequired):
        adapter.delete_course(anon, "a")


def test_course_round_trip_with_slots(adapter, staff):
    seed(adapter, staff)
    course = adapter.get_course("a")
    assert [(s.day, s.time) for s in course.meeting_slots] == [("Monday", "07:00"), ("Wednesday", "07:00")]
    data = adapter.fetch_catalog()
    assert [c.id for c in data.courses] == ["a", "b"]
    assert data.prerequisites == [Prerequisite(from_id="a", to_id="b")]


def test_upsert_replaces_slots(adapter, staff, session_factory):
    seed(adapter, staff)
    adapter.upsert_course(staff, make_course("a", slots=[("Friday", "10:15")]))
    assert [(s.day, s.time) for s in adapter.get_course("a").meeting_slots] == [("Friday", "10:15")]
    with session_factory() as db:
        assert len(db.scalars(select(WeeklySlotRow)).all()) == 1


def test_slot_pairs_with_a_missing_half_are_skipped(adapter, staff, session_factory):
    adapter.upsert_course(staff, make_course("a"))
    with session_factory() as db:
        db.add(WeeklySlotRow(course_id="a", day1="Monday", time1=None, day2="Tuesday", time2="08:45"))
        db.commit()
    assert [(s.day, s.time) for s in adapter.get_course("a").meeting_slots] == [("Tuesday", "08:45")]


def test_rename_repoints_references(adapter, staff, session_factory):
    seed(adapter, staff)
    adapter.set_completion(staff, "a", True)
    adapter.upsert_course(staff, make_course("a2", slots=[("Monday", "07:00")]), prior_id="a")
    data = adapter.fetch_all(staff)
    assert {c.id for c in data.courses} == {"a2", "b"}
    assert [p.key for p in data.prerequisites] == [("a2", "b")]
    assert data.completed_courses == ["a2"]
    with pytest.raises(CourseNotFound):
        adapter.get_course("a")


def test_rename_of_missing_course(adapter, staff):
    with pytest.raises(CourseNotFound):
        adapter.upsert_course(staff, make_course("new"), prior_id="nope")
    assert adapter.fetch_catalog().courses == []


def test_rename_onto_existing_id_is_refused(adapter, staff):
    seed(adapter, staff)
    with pytest.raises(ValidationFailed):
        adapter.upsert_course(staff, make_course("b"), prior_id="a")


def test_slot_failure_leaves_course_written(adapter, staff, monkeypatch):
    def broken(course):
        raise OperationalError("INSERT INTO weekly_slots", {}, Exception("connection lost"))

    monkeypatch.setattr(adapter, "_insert_slots", broken)
    with pytest.raises(PartialWriteError):
        adapter.upsert_course(staff, make_course("a", slots=[("Monday", "07:00")]))
    course = adapter.get_course("a")
    assert course.name == "A"
    assert course.meeting_slots == []


def test_delete_cascades_to_dependents(adapter, staff, session_factory, cache):
    seed(adapter, staff)
    adapter.upsert_course(staff, make_course("c", period=3))
    adapter.add_prerequisite(staff, "b", "c")
    adapter.set_completion(staff, "b", True)
    adapter.delete_course(staff, "b")
    data = adapter.fetch_all(staff)
    assert [c.id for c in data.courses] == ["a", "c"]
    assert data.prerequisites == []
    assert data.completed_courses == []
    assert cache.load_completions(staff.user_id) == set()
    with session_factory() as db:
        assert db.scalars(select(CompletedCourseRow)).all() == []
        actions = [r.action for r in db.scalars(select(AuditLog)).all()]
    assert "DELETE" in actions
    with pytest.raises(CourseNotFound):
        adapter.delete_course(staff, "b")


def test_delete_purges_anonymous_sessions(adapter, staff, anon):
    seed(adapter, staff)
    adapter.set_completion(anon, "a", True)
    adapter.delete_course(staff, "a")
    assert adapter.fetch_completions(anon) == set()


def test_prerequisite_add_is_idempotent_and_remove_round_trips(adapter, staff, session_factory):
    seed(adapter, staff)
    before = adapter.fetch_catalog()
    assert adapter.add_prerequisite(staff, "a", "b", PrerequisiteKind.FLEXIBLE) is False
    with session_factory() as db:
        assert len(db.scalars(select(PrerequisiteRow)).all()) == 1
    assert adapter.remove_prerequisite(staff, "a", "b") is True
    assert adapter.remove_prerequisite(staff, "a", "b") is False
    assert adapter.add_prerequisite(staff, "a", "b") is True
    assert adapter.fetch_catalog() == before


def test_self_prerequisite_is_refused(adapter, staff):
    with pytest.raises(ValidationFailed):
        adapter.add_prerequisite(staff, "a", "a")


def test_update_prerequisite_kind(adapter, staff):
    seed(adapter, staff)
    adapter.update_prerequisite_kind(staff, "a", "b", PrerequisiteKind.COREQUISITE)
    assert adapter.fetch_catalog().prerequisites[0].kind == PrerequisiteKind.COREQUISITE
    with pytest.raises(PrerequisiteNotFound):
        adapter.update_prerequisite_kind(staff, "b", "a", PrerequisiteKind.HARD)


def test_self_edge_rows_are_ignored_on_read(adapter, staff, session_factory):
    seed(adapter, staff)
    with session_factory() as db:
        db.add(PrerequisiteRow(from_course="a", to_course="a", kind=1))
        db.commit()
    assert [p.key for p in adapter.fetch_catalog().prerequisites] == [("a", "b")]


def test_completion_storage_follows_the_subject(adapter, staff, anon, cache):
    seed(adapter, staff)
    adapter.set_completion(anon, "a", True)
    assert adapter.fetch_completions(anon) == {"a"}
    assert adapter.fetch_completions(staff) == set()

    adapter.set_completion(staff, "b", True)
    adapter.set_completion(staff, "b", True)
    assert adapter.fetch_completions(staff) == {"b"}
    assert cache.load_completions(staff.user_id) == {"b"}
    # Anonymous ids never reach the durable cache.
    assert "anon" not in str(cache.path.read_text())

    adapter.set_completion(staff, "b", False)
    adapter.set_completion(staff, "b", False)
    assert adapter.fetch_completions(staff) == set()


def test_user_completion_of_unknown_course(adapter, staff):
    with pytest.raises(CourseNotFound):
        adapter.set_completion(staff, "ghost", True)


def test_replace_completions_drops_unknown_ids_for_users(adapter, staff, anon):
    seed(adapter, staff)
    assert adapter.replace_completions(staff, ["a", "ghost"]) == {"a"}
    assert adapter.fetch_completions(staff) == {"a"}
    assert adapter.replace_completions(anon, ["ghost"]) == {"ghost"}


def test_import_keeps_dangling_prerequisites(adapter, staff):
    document = CurriculumData(
        courses=[make_course("y", period=2, slots=[("Monday", "07:00")])],
        prerequisites=[Prerequisite(from_id="x", to_id="y")],
    )
    summary = adapter.import_document(staff, document)
    assert summary == {"courses_written": 1, "courses_skipped": 0, "prerequisites_created": 1}
    data = adapter.fetch_catalog()
    assert [p.key for p in data.prerequisites] == [("x", "y")]
    assert adapter.get_course("y").meeting_slots


def test_import_replaces_or_merges(adapter, staff):
    seed(adapter, staff)
    document = CurriculumData(courses=[make_course("b", period=2, name="Renamed"), make_course("z", period=4)])
    merged = adapter.import_document(staff, document, replace_existing=False)
    assert merged["courses_skipped"] == 1
    assert {c.id for c in adapter.fetch_catalog().courses} == {"a", "b", "z"}
    adapter.import_document(staff, document)
    data = adapter.fetch_catalog()
    assert {c.id for c in data.courses} == {"b", "z"}
    assert data.prerequisites == []
    assert adapter.get_course("b").name == "Renamed"


def test_ping(adapter):
    assert adapter.ping() is True


def test_import_writes_a_repeated_edge_once(adapter, staff, session_factory):
    document = CurriculumData(
        courses=[make_course("a"), make_course("b", period=2)],
        prerequisites=[Prerequisite(from_id="a", to_id="b"), Prerequisite(from_id="a", to_id="b", kind=PrerequisiteKind.COREQUISITE)],
    )
    summary = adapter.import_document(staff, document)
    assert summary["prerequisites_created"] == 1
    with session_factory() as db:
        rows = db.scalars(select(PrerequisiteRow)).all()
    assert [(r.from_course, r.to_course, r.kind) for r in rows] == [("a", "b", int(PrerequisiteKind.HARD))]


def test_import_refuses_repeated_course_ids(adapter, staff):
    seed(adapter, staff)
    document = CurriculumData(courses=[make_course("z"), make_course("z", period=3)])
    with pytest.raises(ValidationFailed):
        adapter.import_document(staff, document)
    assert {c.id for c in adapter.fetch_catalog().courses} == {"a", "b"}


def test_import_refreshes_the_local_cache(adapter, staff, cache):
    seed(adapter, staff)
    adapter.fetch_catalog()
    adapter.import_document(staff, CurriculumData(courses=[make_course("z")]))
    assert [c.id for c in cache.load_catalog().courses] == ["z"]
