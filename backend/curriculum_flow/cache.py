"""
Local copies of curriculum state.

DurableCache is a JSON file that survives restarts. It holds the last catalog
snapshot (courses and prerequisites) and, for logged-in users only, their
completed-course ids. It is only read back when the database cannot be reached.

SessionStore is process memory scoped to one subject session. Anonymous
completion state lives here and nowhere else, so it disappears with the session.
Schedule assignments for every subject live here too.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from .schedule import ScheduleBuilder
from .schemas import CurriculumData

logger = logging.getLogger(__name__)


class DurableCache:
    def __init__(self, path: str | Path | None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.RLock()

    def _read(self) -> dict:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write cache file %s: %s", self.path, exc)

    def load_catalog(self) -> CurriculumData:
        raw = self._read().get("catalog") or {}
        try:
            return CurriculumData.model_validate(raw).catalog()
        except ValidationError as exc:
            logger.warning("Cached catalog is invalid, ignoring it: %s", exc)
            return CurriculumData()

    def save_catalog(self, data: CurriculumData) -> None:
        with self._lock:
            payload = self._read()
            payload["catalog"] = data.catalog().model_dump(mode="json", by_alias=True, exclude={"completed_courses"})
            self._write(payload)

    def load_completions(self, user_id: str) -> set[str]:
        ids = (self._read().get("completions") or {}).get(user_id) or []
        return {x for x in ids if isinstance(x, str) and x}

    def save_completions(self, user_id: str, ids: Iterable[str]) -> None:
        with self._lock:
            payload = self._read()
            completions = payload.get("completions") or {}
            completions[user_id] = sorted(set(ids))
            payload["completions"] = completions
            self._write(payload)

    def snapshot(self, user_id: Optional[str] = None) -> CurriculumData:
        data = self.load_catalog()
        if user_id is None:
            return data
        return data.with_completions(self.load_completions(user_id))

    def update_catalog(self, change) -> None:
        """Apply ``change(CurriculumData) -> CurriculumData`` to the cached catalog."""
        with self._lock:
            self.save_catalog(change(self.load_catalog()))

    def purge_course(self, course_id: str) -> None:
        with self._lock:
            payload = self._read()
            if not payload:
                return
            completions = payload.get("completions") or {}
            for user_id, ids in completions.items():
                completions[user_id] = [x for x in ids if x != course_id]
            payload["completions"] = completions
            self._write(payload)
        self.update_catalog(lambda data: data.without_course(course_id))

    def clear(self) -> None:
        with self._lock:
            self._write({})


@dataclass
class SessionState:
    completed: set[str] = field(default_factory=set)
    schedule: Optional[ScheduleBuilder] = None


class SessionStore:
    def __init__(self):
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def state(self, key: str) -> SessionState:
        with self._lock:
            return self._sessions.setdefault(key, SessionState())

    def completed(self, key: str) -> set[str]:
        with self._lock:
            state = self._sessions.get(key)
            return set(state.completed) if state else set()

    def set_completed(self, key: str, course_id: str, completed: bool) -> None:
        state = self.state(key)
        with self._lock:
            if completed:
                state.completed.add(course_id)
            else:
                state.completed.discard(course_id)

    def replace_completed(self, key: str, ids: Iterable[str]) -> None:
        state = self.state(key)
        with self._lock:
            state.completed = set(ids)

    def end(self, key: str) -> None:
        with self._lock:
            self._sessions.pop(key, None)

    def purge_course(self, course_id: str) -> None:
        with self._lock:
            for state in self._sessions.values():
                state.completed.discard(course_id)
                if state.schedule is not None:
                    state.schedule.remove_course(course_id)
