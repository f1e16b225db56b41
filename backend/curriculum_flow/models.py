from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.inspection import inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_user_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CourseRow(Base):
    __tablename__ = "courses"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    period: Mapped[int] = mapped_column(Integer, default=1)
    row: Mapped[int] = mapped_column(Integer, default=1)
    hours: Mapped[str] = mapped_column(String, default="")
    type: Mapped[str] = mapped_column(String, default="NB")
    credits: Mapped[float] = mapped_column(Float, default=0.0)
    professor: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PrerequisiteRow(Base):
    # No foreign keys: edges may outlive their courses and imports may carry dangling ids.
    __tablename__ = "prerequisites"
    __table_args__ = (UniqueConstraint("from_course", "to_course", name="uq_prerequisite_pair"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    from_course: Mapped[str] = mapped_column(String, index=True)
    to_course: Mapped[str] = mapped_column(String, index=True)
    kind: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class WeeklySlotRow(Base):
    __tablename__ = "weekly_slots"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    course_id: Mapped[str] = mapped_column(String, ForeignKey("courses.id"), index=True)
    day1: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time1: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    day2: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time2: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    day3: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time3: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CompletedCourseRow(Base):
    __tablename__ = "completed_courses"
    __table_args__ = (UniqueConstraint("course_id", "user_id", name="uq_completed_course_user"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    course_id: Mapped[str] = mapped_column(String, ForeignKey("courses.id"), index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class EdgeRouteRow(Base):
    __tablename__ = "edge_routes"
    __table_args__ = (UniqueConstraint("from_course", "to_course", name="uq_edge_route_pair"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    from_course: Mapped[str] = mapped_column(String, index=True)
    to_course: Mapped[str] = mapped_column(String, index=True)
    routing: Mapped[str] = mapped_column(String, default="step")
    waypoints_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


WATCHED_TABLES = (
    CourseRow.__tablename__,
    PrerequisiteRow.__tablename__,
    WeeklySlotRow.__tablename__,
    CompletedCourseRow.__tablename__,
)


def serialize(instance):
    return {c.key: getattr(instance, c.key) for c in inspect(instance).mapper.column_attrs}
