"""
Database adapter for the curriculum tables.

Every read and write of courses, prerequisites, weekly slots, completions and
edge routes goes through PersistenceAdapter. Writes that change the catalog are
mirrored into the durable cache. Completion writes pick their storage on every
call: the database for logged-in users, the session store for anonymous ones.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .auth import Subject
from .cache import DurableCache, SessionStore
from .config import MAX_WEEKLY_SLOTS
from .errors import AuthorizationRequired, BackendUnavailable, CourseNotFound, PartialWriteError, PrerequisiteNotFound, ValidationFailed
from .models import AuditLog, CompletedCourseRow, CourseRow, EdgeRouteRow, PrerequisiteRow, WeeklySlotRow, serialize
from .realtime import ChangeFeed, Subscription
from .schemas import Course, CurriculumData, MeetingSlot, Prerequisite, PrerequisiteKind

logger = logging.getLogger(__name__)

ROUTINGS = ("step", "smoothstep", "straight")


def require_login(subject: Subject) -> None:
    if not subject.authenticated:
        raise AuthorizationRequired()


def write_audit(db: Session, subject: Subject, action: str, entity: str, entity_id: str, payload: Optional[str] = None) -> None:
    db.add(AuditLog(actor_user_id=subject.user_id or "", action=action, entity_type=entity, entity_id=entity_id, payload=payload))


def course_from_row(row: CourseRow, slots: Optional[list[MeetingSlot]] = None) -> Course:
    return Course(
        id=row.id,
        name=row.name,
        period=row.period,
        row=row.row,
        hours=row.hours,
        type=row.type,
        credits=row.credits,
        professor=row.professor,
        schedules=slots or None,
    )


def slots_from_row(row: WeeklySlotRow) -> list[MeetingSlot]:
    out = []
    for n in range(1, MAX_WEEKLY_SLOTS + 1):
        day = getattr(row, f"day{n}")
        time = getattr(row, f"time{n}")
        if day and time:
            out.append(MeetingSlot(day=day, time=time))
    return out


def slot_row_for(course: Course) -> WeeklySlotRow:
    row = WeeklySlotRow(course_id=course.id)
    for n, slot in enumerate(course.meeting_slots[:MAX_WEEKLY_SLOTS], start=1):
        setattr(row, f"day{n}", slot.day)
        setattr(row, f"time{n}", slot.time)
    return row


def prerequisite_from_row(row: PrerequisiteRow) -> Prerequisite:
    kind = row.kind if row.kind in {k.value for k in PrerequisiteKind} else PrerequisiteKind.HARD
    return Prerequisite(from_id=row.from_course, to_id=row.to_course, kind=kind)


class PersistenceAdapter:
    def __init__(self, session_factory: sessionmaker, cache: DurableCache, sessions: SessionStore):
        self.session_factory = session_factory
        self.cache = cache
        self.sessions = sessions
        self.feed = ChangeFeed(session_factory)

    # Reads

    def fetch_catalog(self) -> CurriculumData:
        with self.session_factory() as db:
            course_rows = db.scalars(select(CourseRow).order_by(CourseRow.period.asc(), CourseRow.row.asc(), CourseRow.id.asc())).all()
            prereq_rows = db.scalars(select(PrerequisiteRow).order_by(PrerequisiteRow.created_at.asc(), PrerequisiteRow.id.asc())).all()
            slot_rows = db.scalars(select(WeeklySlotRow).order_by(WeeklySlotRow.created_at.asc())).all()
            slots_by_course: dict[str, list[MeetingSlot]] = {}
            for row in slot_rows:
                # One row per course is expected; a stray second row cannot push past the ceiling.
                current = slots_by_course.setdefault(row.course_id, [])
                current.extend(slots_from_row(row))
                del current[MAX_WEEKLY_SLOTS:]
            data = CurriculumData(
                courses=[course_from_row(r, slots_by_course.get(r.id)) for r in course_rows],
                prerequisites=[prerequisite_from_row(r) for r in prereq_rows if r.from_course != r.to_course],
            )
        self.cache.save_catalog(data)
        return data

    def fetch_completions(self, subject: Subject) -> set[str]:
        if not subject.authenticated:
            return self.sessions.completed(subject.key)
        with self.session_factory() as db:
            ids = set(db.scalars(select(CompletedCourseRow.course_id).where(CompletedCourseRow.user_id == subject.user_id)).all())
        self.cache.save_completions(subject.user_id, ids)
        return ids

    def fetch_all(self, subject: Subject) -> CurriculumData:
        try:
            catalog = self.fetch_catalog()
            completed = self.fetch_completions(subject)
        except SQLAlchemyError as exc:
            logger.error("Database unavailable, serving cached curriculum: %s", exc)
            return self.cached_snapshot(subject)
        return catalog.with_completions(completed)

    def cached_snapshot(self, subject: Subject) -> CurriculumData:
        if subject.authenticated:
            return self.cache.snapshot(subject.user_id)
        return self.cache.snapshot().with_completions(self.sessions.completed(subject.key))

    def get_course(self, course_id: str) -> Course:
        with self.session_factory() as db:
            row = db.get(CourseRow, course_id)
            if not row:
                raise CourseNotFound(course_id)
            slot_row = db.scalar(select(WeeklySlotRow).where(WeeklySlotRow.course_id == course_id))
            return course_from_row(row, slots_from_row(slot_row) if slot_row else None)

    def fetch_edge_routes(self) -> dict[tuple[str, str], dict]:
        with self.session_factory() as db:
            out = {}
            for row in db.scalars(select(EdgeRouteRow)).all():
                try:
                    waypoints = json.loads(row.waypoints_json) if row.waypoints_json else []
                except json.JSONDecodeError:
                    logger.warning("Dropping unreadable waypoints for edge %s -> %s", row.from_course, row.to_course)
                    waypoints = []
                out[(row.from_course, row.to_course)] = {"routing": row.routing, "waypoints": waypoints}
            return out

    def ping(self) -> bool:
        try:
            with self.session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.warning("Database heartbeat failed: %s", exc)
            return False

    # Course writes

    def upsert_course(self, subject: Subject, course: Course, prior_id: Optional[str] = None) -> Course:
        require_login(subject)
        renaming = bool(prior_id) and prior_id != course.id
        try:
            with self.session_factory() as db:
                if renaming:
                    self._rename_course(db, course, prior_id)
                else:
                    row = db.get(CourseRow, course.id)
                    if row is None:
                        row = CourseRow(id=course.id, created_at=datetime.utcnow())
                        db.add(row)
                    self._apply_course(row, course)
                write_audit(db, subject, "RENAME" if renaming else "UPSERT", "Course", course.id, course.model_dump_json())
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to save course %s: %s", course.id, exc)
            raise BackendUnavailable(f"Failed to save course {course.id}") from exc
        self.cache.update_catalog(lambda data: data.with_course(course, prior_id))

        try:
            self._replace_slots(course)
        except SQLAlchemyError as exc:
            logger.error("Course %s saved but its weekly slots were not: %s", course.id, exc)
            raise PartialWriteError(f"Course {course.id} was saved but its weekly slots could not be written") from exc
        logger.info("Saved course %s%s", course.id, f" (was {prior_id})" if renaming else "")
        return course

    def _apply_course(self, row: CourseRow, course: Course) -> None:
        row.name = course.name
        row.period = course.period
        row.row = course.row
        row.hours = course.hours
        row.type = course.type
        row.credits = course.credits
        row.professor = course.professor
        row.updated_at = datetime.utcnow()

    def _rename_course(self, db: Session, course: Course, prior_id: str) -> None:
        old = db.get(CourseRow, prior_id)
        if old is None:
            raise CourseNotFound(prior_id)
        if db.get(CourseRow, course.id) is not None:
            raise ValidationFailed(f"A course with id {course.id} already exists")
        new = CourseRow(id=course.id, created_at=old.created_at)
        self._apply_course(new, course)
        db.add(new)
        db.flush()
        db.execute(update(WeeklySlotRow).where(WeeklySlotRow.course_id == prior_id).values(course_id=course.id))
        db.execute(update(PrerequisiteRow).where(PrerequisiteRow.from_course == prior_id).values(from_course=course.id))
        db.execute(update(PrerequisiteRow).where(PrerequisiteRow.to_course == prior_id).values(to_course=course.id))
        db.execute(update(EdgeRouteRow).where(EdgeRouteRow.from_course == prior_id).values(from_course=course.id))
        db.execute(update(EdgeRouteRow).where(EdgeRouteRow.to_course == prior_id).values(to_course=course.id))
        db.execute(update(CompletedCourseRow).where(CompletedCourseRow.course_id == prior_id).values(course_id=course.id))
        db.delete(old)

    def _replace_slots(self, course: Course) -> None:
        with self.session_factory() as db:
            db.execute(delete(WeeklySlotRow).where(WeeklySlotRow.course_id == course.id))
            db.commit()
        if course.meeting_slots:
            self._insert_slots(course)

    def _insert_slots(self, course: Course) -> None:
        with self.session_factory() as db:
            db.add(slot_row_for(course))
            db.commit()

    def delete_course(self, subject: Subject, course_id: str) -> None:
        require_login(subject)
        try:
            with self.session_factory() as db:
                row = db.get(CourseRow, course_id)
                if row is None:
                    raise CourseNotFound(course_id)
                payload = json.dumps(serialize(row), default=str)
                db.execute(delete(WeeklySlotRow).where(WeeklySlotRow.course_id == course_id))
                db.execute(delete(CompletedCourseRow).where(CompletedCourseRow.course_id == course_id))
                db.delete(row)
                db.flush()
                db.execute(delete(PrerequisiteRow).where((PrerequisiteRow.from_course == course_id) | (PrerequisiteRow.to_course == course_id)))
                db.execute(delete(EdgeRouteRow).where((EdgeRouteRow.from_course == course_id) | (EdgeRouteRow.to_course == course_id)))
                write_audit(db, subject, "DELETE", "Course", course_id, payload)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to delete course %s: %s", course_id, exc)
            raise BackendUnavailable(f"Failed to delete course {course_id}") from exc
        self.cache.purge_course(course_id)
        self.sessions.purge_course(course_id)
        logger.info("Deleted course %s", course_id)

    # Prerequisite writes

    def add_prerequisite(self, subject: Subject, from_id: str, to_id: str, kind: int = PrerequisiteKind.HARD) -> bool:
        """Returns False when the edge already exists."""
        require_login(subject)
        if from_id == to_id:
            raise ValidationFailed("A course cannot be a prerequisite for itself")
        prerequisite = Prerequisite(from_id=from_id, to_id=to_id, kind=kind)
        try:
            with self.session_factory() as db:
                existing = db.scalar(select(PrerequisiteRow).where(PrerequisiteRow.from_course == from_id, PrerequisiteRow.to_course == to_id))
                if existing is not None:
                    return False
                db.add(PrerequisiteRow(from_course=from_id, to_course=to_id, kind=int(prerequisite.kind)))
                write_audit(db, subject, "CREATE", "Prerequisite", f"{from_id}-{to_id}", str(int(prerequisite.kind)))
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to add prerequisite %s -> %s: %s", from_id, to_id, exc)
            raise BackendUnavailable("Failed to add the prerequisite") from exc
        self.cache.update_catalog(lambda data: data.with_prerequisite(prerequisite))
        return True

    def remove_prerequisite(self, subject: Subject, from_id: str, to_id: str) -> bool:
        require_login(subject)
        try:
            with self.session_factory() as db:
                row = db.scalar(select(PrerequisiteRow).where(PrerequisiteRow.from_course == from_id, PrerequisiteRow.to_course == to_id))
                if row is None:
                    return False
                db.delete(row)
                db.execute(delete(EdgeRouteRow).where(EdgeRouteRow.from_course == from_id, EdgeRouteRow.to_course == to_id))
                write_audit(db, subject, "DELETE", "Prerequisite", f"{from_id}-{to_id}")
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to remove prerequisite %s -> %s: %s", from_id, to_id, exc)
            raise BackendUnavailable("Failed to remove the prerequisite") from exc
        self.cache.update_catalog(lambda data: data.without_prerequisite(from_id, to_id))
        return True

    def update_prerequisite_kind(self, subject: Subject, from_id: str, to_id: str, kind: int) -> Prerequisite:
        require_login(subject)
        prerequisite = Prerequisite(from_id=from_id, to_id=to_id, kind=kind)
        try:
            with self.session_factory() as db:
                row = db.scalar(select(PrerequisiteRow).where(PrerequisiteRow.from_course == from_id, PrerequisiteRow.to_course == to_id))
                if row is None:
                    raise PrerequisiteNotFound(from_id, to_id)
                row.kind = int(prerequisite.kind)
                write_audit(db, subject, "UPDATE", "Prerequisite", f"{from_id}-{to_id}", str(row.kind))
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to update prerequisite %s -> %s: %s", from_id, to_id, exc)
            raise BackendUnavailable("Failed to update the prerequisite") from exc
        self.cache.update_catalog(lambda data: data.with_prerequisite(prerequisite))
        return prerequisite

    def save_edge_route(self, subject: Subject, from_id: str, to_id: str, routing: str, waypoints: list[dict]) -> None:
        require_login(subject)
        if routing not in ROUTINGS:
            raise ValidationFailed(f"routing must be one of {', '.join(ROUTINGS)}")
        try:
            with self.session_factory() as db:
                row = db.scalar(select(EdgeRouteRow).where(EdgeRouteRow.from_course == from_id, EdgeRouteRow.to_course == to_id))
                if row is None:
                    row = EdgeRouteRow(from_course=from_id, to_course=to_id)
                    db.add(row)
                row.routing = routing
                row.waypoints_json = json.dumps(waypoints)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to save route for %s -> %s: %s", from_id, to_id, exc)
            raise BackendUnavailable("Failed to save the edge route") from exc

    # Completion

    def set_completion(self, subject: Subject, course_id: str, completed: bool) -> None:
        if subject.authenticated:
            self._set_user_completion(subject, course_id, completed)
        else:
            self.sessions.set_completed(subject.key, course_id, completed)

    def _set_user_completion(self, subject: Subject, course_id: str, completed: bool) -> None:
        try:
            with self.session_factory() as db:
                row = db.scalar(
                    select(CompletedCourseRow).where(CompletedCourseRow.user_id == subject.user_id, CompletedCourseRow.course_id == course_id)
                )
                if completed and row is None:
                    if db.get(CourseRow, course_id) is None:
                        raise CourseNotFound(course_id)
                    db.add(CompletedCourseRow(course_id=course_id, user_id=subject.user_id))
                elif not completed and row is not None:
                    db.delete(row)
                db.commit()
                ids = set(db.scalars(select(CompletedCourseRow.course_id).where(CompletedCourseRow.user_id == subject.user_id)).all())
        except SQLAlchemyError as exc:
            logger.error("Failed to store completion of %s for %s: %s", course_id, subject.user_id, exc)
            raise BackendUnavailable("Failed to store course completion") from exc
        self.cache.save_completions(subject.user_id, ids)

    def replace_completions(self, subject: Subject, course_ids: Iterable[str]) -> set[str]:
        wanted = {cid for cid in course_ids if isinstance(cid, str) and cid}
        if not subject.authenticated:
            self.sessions.replace_completed(subject.key, wanted)
            return wanted
        try:
            with self.session_factory() as db:
                known = set(db.scalars(select(CourseRow.id).where(CourseRow.id.in_(wanted))).all()) if wanted else set()
                db.execute(delete(CompletedCourseRow).where(CompletedCourseRow.user_id == subject.user_id))
                for cid in sorted(known):
                    db.add(CompletedCourseRow(course_id=cid, user_id=subject.user_id))
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to replace completions for %s: %s", subject.user_id, exc)
            raise BackendUnavailable("Failed to store course completions") from exc
        self.cache.save_completions(subject.user_id, known)
        return known

    # Import

    def import_document(self, subject: Subject, document: CurriculumData, replace_existing: bool = True) -> dict:
        require_login(subject)
        ids = [c.id for c in document.courses]
        duplicates = sorted({cid for cid in ids if ids.count(cid) > 1})
        if duplicates:
            raise ValidationFailed(f"Duplicate course ids in document: {', '.join(duplicates)}")
        created_courses = 0
        skipped_courses = 0
        created_prereqs = 0
        try:
            with self.session_factory() as db:
                if replace_existing:
                    incoming = {c.id for c in document.courses}
                    db.execute(delete(WeeklySlotRow))
                    db.execute(delete(PrerequisiteRow))
                    db.execute(delete(EdgeRouteRow))
                    db.execute(delete(CompletedCourseRow).where(CompletedCourseRow.course_id.not_in(incoming)))
                    for row in db.scalars(select(CourseRow)).all():
                        if row.id not in incoming:
                            db.delete(row)
                    db.flush()
                for course in document.courses:
                    row = db.get(CourseRow, course.id)
                    if row is not None and not replace_existing:
                        skipped_courses += 1
                        continue
                    if row is None:
                        row = CourseRow(id=course.id, created_at=datetime.utcnow())
                        db.add(row)
                    self._apply_course(row, course)
                    if course.meeting_slots:
                        db.execute(delete(WeeklySlotRow).where(WeeklySlotRow.course_id == course.id))
                        db.add(slot_row_for(course))
                    created_courses += 1
                db.flush()
                seen = set()
                for p in document.prerequisites:
                    if p.key in seen:
                        continue
                    seen.add(p.key)
                    exists = db.scalar(select(PrerequisiteRow).where(PrerequisiteRow.from_course == p.from_id, PrerequisiteRow.to_course == p.to_id))
                    if exists is not None:
                        continue
                    db.add(PrerequisiteRow(from_course=p.from_id, to_course=p.to_id, kind=int(p.kind)))
                    created_prereqs += 1
                summary = {"courses_written": created_courses, "courses_skipped": skipped_courses, "prerequisites_created": created_prereqs}
                write_audit(db, subject, "IMPORT", "Curriculum", "catalog", json.dumps({"replace_existing": replace_existing, **summary}))
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Curriculum import failed: %s", exc)
            raise BackendUnavailable("Failed to import the curriculum") from exc
        try:
            self.fetch_catalog()
        except SQLAlchemyError as exc:
            logger.warning("Imported curriculum but could not refresh the local cache: %s", exc)
        logger.info("Imported curriculum document: %s", summary)
        return summary

    # Notifications

    def subscribe(self, on_change: Callable[[], None], view: str = "default") -> Subscription:
        return self.feed.subscribe(on_change, view=view)
