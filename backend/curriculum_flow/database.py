from __future__ import annotations

import logging

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .auth import hash_password
from .config import DATABASE_URL
from .models import Base, User

logger = logging.getLogger(__name__)


def make_engine(url: str = DATABASE_URL) -> Engine:
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees its own empty database.
            kwargs["poolclass"] = StaticPool
    return create_engine(url, future=True, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(engine: Engine, session_factory: sessionmaker, seed_users: dict[str, str] | None = None) -> None:
    Base.metadata.create_all(engine)
    with session_factory() as db:
        for username, password in (seed_users or {}).items():
            if not db.scalar(select(User).where(User.username == username)):
                db.add(User(username=username, password_hash=hash_password(password)))
                logger.info("Created user %s", username)
        db.commit()


def create_user(session_factory: sessionmaker, username: str, password: str) -> User:
    with session_factory() as db:
        user = db.scalar(select(User).where(User.username == username))
        if user is None:
            user = User(username=username)
            db.add(user)
        user.password_hash = hash_password(password)
        db.commit()
        db.refresh(user)
        return user


engine = make_engine()
SessionLocal = make_session_factory(engine)
