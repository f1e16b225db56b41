import os
import tempfile

# The application module builds its engine at import time.
os.environ.setdefault("CURRICULUM_FLOW_DATABASE_URL", "sqlite://")
os.environ.setdefault("CURRICULUM_FLOW_DATA_DIR", tempfile.mkdtemp(prefix="curriculum_flow_"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from curriculum_flow.auth import Subject, anonymous_subject  # noqa: E402
from curriculum_flow.cache import DurableCache, SessionStore  # noqa: E402
from curriculum_flow.config import Settings  # noqa: E402
from curriculum_flow.database import init_db, make_engine, make_session_factory  # noqa: E402
from curriculum_flow.main import create_app  # noqa: E402
from curriculum_flow.models import User  # noqa: E402
from curriculum_flow.persistence import PersistenceAdapter  # noqa: E402
from curriculum_flow.schemas import Course, CurriculumData, MeetingSlot, Prerequisite  # noqa: E402

STAFF = {"staff_admin": "staff_admin"}


def make_course(course_id, period=1, hours="60h", slots=(), **extra):
    return Course(
        id=course_id,
        name=extra.pop("name", course_id.upper()),
        period=period,
        hours=hours,
        schedules=[MeetingSlot(day=d, time=t) for d, t in slots] or None,
        **extra,
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    factory = make_session_factory(engine)
    init_db(engine, factory, STAFF)
    yield factory
    engine.dispose()


@pytest.fixture
def cache(tmp_path):
    return DurableCache(tmp_path / "cache.json")


@pytest.fixture
def adapter(session_factory, cache):
    return PersistenceAdapter(session_factory, cache, SessionStore())


@pytest.fixture
def staff(session_factory):
    with session_factory() as db:
        user = db.scalar(select(User).where(User.username == "staff_admin"))
        return Subject(session_id="staff-session", user_id=user.id, username=user.username)


@pytest.fixture
def anon():
    return anonymous_subject()


@pytest.fixture
def sample_data():
    return CurriculumData(
        courses=[
            make_course("a", period=1, hours="60h"),
            make_course("b", period=2, hours="40h"),
            make_course("c", period=3, hours="n/a"),
        ],
        prerequisites=[Prerequisite(from_id="a", to_id="b"), Prerequisite(from_id="b", to_id="c", kind=2)],
    )


@pytest.fixture
def app(tmp_path):
    return create_app(Settings(database_url="sqlite://", cache_path=tmp_path / "app_cache.json", seed_users=dict(STAFF)))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def staff_token(client):
    res = client.post("/auth/login", json={"username": "staff_admin", "password": "staff_admin"})
    assert res.status_code == 200
    return res.json()["session_token"]


@pytest.fixture
def anon_token(client):
    return client.post("/auth/anonymous").json()["session_token"]
