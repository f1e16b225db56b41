"""
Row-change notifications for the catalog tables.

ChangeFeed hooks SQLAlchemy session events on one sessionmaker. Tables touched
by a flush, or by a bulk UPDATE/DELETE statement, are collected on the session
and announced once the transaction commits. Subscribers get no payload: they
are expected to fetch again.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from .errors import SubscriptionError
from .models import WATCHED_TABLES

logger = logging.getLogger(__name__)

_PENDING_KEY = "curriculum_flow.changed_tables"


class Subscription:
    def __init__(self, feed: "ChangeFeed", view: str, callback: Callable[[], None]):
        self.feed = feed
        self.view = view
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class ChangeFeed:
    def __init__(self, session_factory: sessionmaker, tables=WATCHED_TABLES):
        self.tables = frozenset(tables)
        self.revision = 0
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()
        event.listen(session_factory, "after_flush", self._after_flush)
        event.listen(session_factory, "do_orm_execute", self._do_orm_execute)
        event.listen(session_factory, "after_commit", self._after_commit)
        event.listen(session_factory, "after_rollback", self._after_rollback)

    def subscribe(self, on_change: Callable[[], None], view: str = "default") -> Subscription:
        with self._lock:
            if view in self._subscriptions:
                raise SubscriptionError(f"view {view!r} is already subscribed")
            sub = Subscription(self, view, on_change)
            self._subscriptions[view] = sub
        logger.debug("Subscribed view %s to %s", view, ", ".join(sorted(self.tables)))
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if self._subscriptions.get(sub.view) is sub:
                del self._subscriptions[sub.view]

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _mark(self, session: Session, table: str) -> None:
        if table in self.tables:
            session.info.setdefault(_PENDING_KEY, set()).add(table)

    def _after_flush(self, session: Session, flush_context) -> None:
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            table = getattr(obj, "__tablename__", None)
            if table:
                self._mark(session, table)

    def _do_orm_execute(self, state) -> None:
        if (state.is_update or state.is_delete) and state.bind_mapper is not None:
            self._mark(state.session, state.bind_mapper.local_table.name)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    def _after_commit(self, session: Session) -> None:
        changed = session.info.pop(_PENDING_KEY, None)
        if not changed:
            return
        with self._lock:
            self.revision += 1
            subscribers = list(self._subscriptions.values())
        for table in sorted(changed):
            for sub in subscribers:
                if not sub.active:
                    continue
                try:
                    sub.callback()
                except Exception:
                    logger.exception("Change callback for view %s failed after %s changed", sub.view, table)
