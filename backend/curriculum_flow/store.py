from __future__ import annotations

import logging
import threading
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .auth import Subject
from .graph import GraphView
from .persistence import PersistenceAdapter
from .schedule import ScheduleBuilder
from .schemas import CurriculumData

logger = logging.getLogger(__name__)


class CurriculumStore:
    """Catalog snapshot owned by the application for its whole lifetime.

    A change notification only marks the snapshot stale; the next read fetches
    the whole catalog again and swaps it in at once. Each fetch remembers the
    generation it started in, and a result that comes back after ``reset`` or
    ``close`` is dropped instead of overwriting newer state.
    """

    def __init__(self, adapter: PersistenceAdapter, view: str = "store", weekdays=None, time_slots=None):
        self.adapter = adapter
        self.view = view
        self.grid = {k: v for k, v in (("weekdays", weekdays), ("time_slots", time_slots)) if v}
        self._catalog: Optional[CurriculumData] = None
        self._routes: dict = {}
        self._stale = True
        self._generation = 0
        self._changes = 0
        self._closed = False
        self._lock = threading.Lock()
        self.subscription = adapter.subscribe(self.invalidate, view=view)

    def invalidate(self) -> None:
        with self._lock:
            self._changes += 1
            self._stale = True

    def refresh(self) -> CurriculumData:
        with self._lock:
            generation = self._generation
            changes = self._changes
        try:
            catalog = self.adapter.fetch_catalog()
            routes = self.adapter.fetch_edge_routes()
        except SQLAlchemyError as exc:
            logger.error("Catalog refresh failed, falling back to the local cache: %s", exc)
            catalog = self.adapter.cache.load_catalog()
            routes = self._routes
        with self._lock:
            if self._closed or generation != self._generation:
                logger.debug("Discarding catalog fetched for generation %s", generation)
                return catalog
            self._catalog = catalog
            self._routes = routes
            # A notification that landed mid-fetch keeps the snapshot stale.
            self._stale = changes != self._changes
        return catalog

    def catalog(self) -> CurriculumData:
        with self._lock:
            current = None if self._stale else self._catalog
        return current if current is not None else self.refresh()

    def snapshot(self, subject: Subject) -> CurriculumData:
        catalog = self.catalog()
        try:
            completed = self.adapter.fetch_completions(subject)
        except SQLAlchemyError as exc:
            logger.error("Could not read completions for %s, using cached ones: %s", subject.key, exc)
            completed = self.adapter.cached_snapshot(subject).completed_courses
        return catalog.with_completions(completed)

    def graph(self, subject: Subject) -> GraphView:
        data = self.snapshot(subject)
        # Routes are not on the change feed, so they are read on every call.
        try:
            routes = self.adapter.fetch_edge_routes()
        except SQLAlchemyError as exc:
            logger.warning("Could not read edge routes, using the last ones seen: %s", exc)
            with self._lock:
                routes = dict(self._routes)
        else:
            with self._lock:
                self._routes = routes
        return GraphView(self.adapter, data, routes)

    def schedule(self, subject: Subject) -> ScheduleBuilder:
        data = self.snapshot(subject)
        state = self.adapter.sessions.state(subject.key)
        if state.schedule is None:
            state.schedule = ScheduleBuilder.from_catalog(data, **self.grid)
        else:
            state.schedule.sync(data)
        return state.schedule

    def reset(self) -> None:
        """Forget the snapshot, e.g. after the subject logs out."""
        with self._lock:
            self._generation += 1
            self._catalog = None
            self._routes = {}
            self._stale = True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._generation += 1
        self.subscription.cancel()
