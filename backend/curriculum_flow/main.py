from __future__ import annotations

import json
import logging
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select

from .auth import Subject, TokenSigner, anonymous_subject, check_password
from .cache import DurableCache, SessionStore
from .completion import CompletionEngine
from .config import Settings, configure_logging
from .database import init_db, make_engine, make_session_factory
from .errors import CourseNotFound, CurriculumError
from .models import User
from .persistence import PersistenceAdapter
from .schemas import Course, MeetingSlot, PrerequisiteKind, generate_course_id, validate_prerequisite_order
from .store import CurriculumStore
from .transfer import export_completions, export_document, load_default_document, parse_completions, parse_document

logger = logging.getLogger(__name__)


class LoginIn(BaseModel):
    username: str
    password: str


class CourseIn(BaseModel):
    id: Optional[str] = None
    name: str
    period: int = 1
    row: int = 1
    hours: str
    type: str = "NB"
    credits: float = 0
    professor: Optional[str] = None
    schedules: Optional[list[MeetingSlot]] = None


class PrerequisiteIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    from_id: str = Field(alias="from")
    to_id: str = Field(alias="to")
    kind: PrerequisiteKind = PrerequisiteKind.HARD


class KindIn(BaseModel):
    kind: PrerequisiteKind


class CompletionIn(BaseModel):
    completed: bool = True


class EdgeIn(BaseModel):
    source: str
    target: str
    kind: PrerequisiteKind = PrerequisiteKind.HARD


class RoutingIn(BaseModel):
    routing: str


class WaypointIn(BaseModel):
    index: Optional[int] = None
    x: float
    y: float


class DocumentIn(BaseModel):
    document: str
    replace_existing: bool = True


def course_out(course: Course) -> dict:
    return course.model_dump(mode="json")


def build_course(payload: CourseIn, course_id: str) -> Course:
    try:
        return Course(**{**payload.model_dump(), "id": course_id})
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors()[0]["msg"]) from exc


def get_store(request: Request) -> CurriculumStore:
    return request.app.state.store


def get_adapter(request: Request) -> PersistenceAdapter:
    return request.app.state.adapter


def current_subject(request: Request, session_token: str = Query(...)) -> Subject:
    signer: TokenSigner = request.app.state.signer
    try:
        payload = signer.read(session_token)
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    user_id = payload.get("user_id")
    if user_id is None:
        return anonymous_subject(payload["session_id"])
    with request.app.state.session_factory() as db:
        user = db.get(User, user_id)
        if not user:
            raise HTTPException(status_code=401, detail="Invalid user")
        return Subject(session_id=payload["session_id"], user_id=user.id, username=user.username)


def require_user(subject: Subject = Depends(current_subject)) -> Subject:
    if not subject.authenticated:
        raise HTTPException(status_code=401, detail="login required")
    return subject


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging()
    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    init_db(engine, session_factory, settings.seed_users)
    sessions = SessionStore()
    adapter = PersistenceAdapter(session_factory, DurableCache(settings.cache_path), sessions)

    app = FastAPI(title="Curriculum Flow")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.adapter = adapter
    app.state.signer = TokenSigner(settings.session_secret)
    app.state.store = CurriculumStore(adapter, weekdays=settings.weekdays, time_slots=settings.time_slots)

    @app.exception_handler(CurriculumError)
    async def curriculum_error_handler(request: Request, exc: CurriculumError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.get("/health")
    def health(adapter: PersistenceAdapter = Depends(get_adapter)):
        return {"status": "ok", "database": adapter.ping()}

    @app.post("/auth/login")
    def login(payload: LoginIn, request: Request):
        with session_factory() as db:
            user = db.scalar(select(User).where(User.username == payload.username))
            if not user or not check_password(payload.password, user.password_hash):
                raise HTTPException(status_code=401, detail="Invalid credentials")
            subject = Subject(session_id=str(uuid.uuid4()), user_id=user.id, username=user.username)
        logger.info("User %s logged in", subject.username)
        return {"session_token": request.app.state.signer.issue(subject), "username": subject.username}

    @app.post("/auth/anonymous")
    def start_anonymous_session(request: Request):
        return {"session_token": request.app.state.signer.issue(anonymous_subject())}

    @app.post("/auth/logout")
    def logout(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        store.adapter.sessions.end(subject.key)
        # The snapshot is shared; anonymous sessions come and go without touching it.
        if subject.authenticated:
            store.reset()
        return {"status": "ok"}

    @app.get("/curriculum")
    def curriculum(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        data = store.snapshot(subject)
        return {**data.model_dump(mode="json", by_alias=True, exclude_none=True), "summary": CompletionEngine(data).summary()}

    @app.get("/courses")
    def list_courses(period: Optional[int] = None, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        courses = store.catalog().courses
        if period is not None:
            courses = [c for c in courses if c.period == period]
        return [course_out(c) for c in courses]

    @app.get("/courses/{course_id}")
    def get_course(course_id: str, _: Subject = Depends(current_subject), adapter: PersistenceAdapter = Depends(get_adapter)):
        return course_out(adapter.get_course(course_id))

    @app.get("/courses/{course_id}/detail")
    def course_detail(course_id: str, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        data = store.snapshot(subject)
        engine = CompletionEngine(data)
        course = engine.courses.get(course_id)
        if course is None:
            raise CourseNotFound(course_id)
        return {
            "course": course_out(course),
            "completed": engine.is_completed(course_id),
            "eligible": engine.is_eligible(course_id),
            "missing_prerequisites": engine.missing_prerequisites(course_id),
            "ancestors": [course_out(c) for c in engine.ancestors(course_id)],
            "descendants": [course_out(c) for c in engine.descendants(course_id)],
        }

    @app.post("/courses")
    def create_course(payload: CourseIn, subject: Subject = Depends(require_user), adapter: PersistenceAdapter = Depends(get_adapter)):
        course = build_course(payload, payload.id or generate_course_id(payload.name))
        return course_out(adapter.upsert_course(subject, course))

    @app.put("/courses/{course_id}")
    def update_course(course_id: str, payload: CourseIn, subject: Subject = Depends(require_user), adapter: PersistenceAdapter = Depends(get_adapter)):
        course = build_course(payload, payload.id or course_id)
        return course_out(adapter.upsert_course(subject, course, prior_id=course_id))

    @app.delete("/courses/{course_id}")
    def delete_course(course_id: str, subject: Subject = Depends(require_user), adapter: PersistenceAdapter = Depends(get_adapter)):
        adapter.delete_course(subject, course_id)
        return {"status": "deleted"}

    @app.get("/prerequisites")
    def list_prerequisites(_: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        return [p.model_dump(mode="json", by_alias=True) for p in store.catalog().prerequisites]

    @app.post("/prerequisites")
    def create_prerequisite(payload: PrerequisiteIn, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        validate_prerequisite_order(store.catalog(), payload.from_id, payload.to_id)
        created = store.adapter.add_prerequisite(subject, payload.from_id, payload.to_id, payload.kind)
        return {"created": created}

    @app.put("/prerequisites/{from_id}/{to_id}")
    def update_prerequisite(from_id: str, to_id: str, payload: KindIn, subject: Subject = Depends(require_user), adapter: PersistenceAdapter = Depends(get_adapter)):
        return adapter.update_prerequisite_kind(subject, from_id, to_id, payload.kind).model_dump(mode="json", by_alias=True)

    @app.delete("/prerequisites/{from_id}/{to_id}")
    def delete_prerequisite(from_id: str, to_id: str, subject: Subject = Depends(require_user), adapter: PersistenceAdapter = Depends(get_adapter)):
        if not adapter.remove_prerequisite(subject, from_id, to_id):
            raise HTTPException(status_code=404, detail="Prerequisite not found")
        return {"status": "deleted"}

    @app.put("/completions/{course_id}")
    def set_completion(course_id: str, payload: CompletionIn, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        if course_id not in store.catalog().course_by_id():
            raise CourseNotFound(course_id)
        store.adapter.set_completion(subject, course_id, payload.completed)
        state = store.adapter.sessions.state(subject.key)
        if state.schedule is not None:
            state.schedule.mark_completed(course_id, payload.completed)
        engine = CompletionEngine(store.snapshot(subject))
        return {"course_id": course_id, "completed": engine.is_completed(course_id), "percentage": engine.completed_credit_percentage()}

    @app.get("/progress")
    def progress(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        engine = CompletionEngine(store.snapshot(subject))
        return {**engine.summary(), "eligible": [c.id for c in engine.eligible_courses()]}

    @app.get("/graph")
    def graph(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        view = store.graph(subject)
        return {"nodes": view.nodes(), "edges": [e.to_dict() for e in view.edge_list()]}

    @app.post("/graph/edges")
    def connect_edge(payload: EdgeIn, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        edge = store.graph(subject).connect(subject, payload.source, payload.target, payload.kind)
        if edge is None:
            return {"edge": None, "detail": "login required"}
        return {"edge": edge.to_dict()}

    @app.delete("/graph/edges/{edge_id}")
    def disconnect_edge(edge_id: str, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        view = store.graph(subject)
        edge = view.find(edge_id)
        view.disconnect(subject, edge.prerequisite.from_id, edge.prerequisite.to_id)
        return {"status": "deleted"}

    @app.put("/graph/edges/{edge_id}/routing")
    def set_edge_routing(edge_id: str, payload: RoutingIn, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        return store.graph(subject).set_routing(subject, edge_id, payload.routing).to_dict()

    @app.post("/graph/edges/{edge_id}/waypoints")
    def add_waypoint(edge_id: str, payload: WaypointIn, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        view = store.graph(subject)
        index = payload.index if payload.index is not None else len(view.find(edge_id).waypoints)
        return view.add_waypoint(subject, edge_id, index, payload.x, payload.y).to_dict()

    @app.put("/graph/edges/{edge_id}/waypoints/{index}")
    def move_waypoint(edge_id: str, index: int, payload: WaypointIn, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        return store.graph(subject).move_waypoint(subject, edge_id, index, payload.x, payload.y).to_dict()

    @app.delete("/graph/edges/{edge_id}/waypoints/{index}")
    def remove_waypoint(edge_id: str, index: int, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        return store.graph(subject).remove_waypoint(subject, edge_id, index).to_dict()

    def schedule_out(builder) -> dict:
        return {
            "grid": {day: {time: (c.id if c else None) for time, c in row.items()} for day, row in builder.grid().items()},
            "scheduled": sorted(builder.scheduled_course_ids()),
            "candidates": [c.id for c in builder.candidates()],
        }

    @app.get("/schedule")
    def get_schedule(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        return schedule_out(store.schedule(subject))

    @app.post("/schedule/{course_id}")
    def schedule_course(course_id: str, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        builder = store.schedule(subject)
        course = builder.courses.get(course_id)
        if course is None:
            raise CourseNotFound(course_id)
        builder.add_course(course)
        return schedule_out(builder)

    @app.delete("/schedule/{course_id}")
    def unschedule_course(course_id: str, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        builder = store.schedule(subject)
        builder.remove_course(course_id)
        return schedule_out(builder)

    @app.get("/curriculum/export")
    def export_curriculum(_: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        return Response(content=export_document(store.catalog()), media_type="application/json")

    @app.post("/curriculum/import")
    def import_curriculum(payload: DocumentIn, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        document = parse_document(payload.document)
        summary = store.adapter.import_document(subject, document, replace_existing=payload.replace_existing)
        return {"status": "ok", **summary}

    @app.post("/curriculum/import/file")
    def import_curriculum_file(
        replace_existing: bool = True,
        file: UploadFile = File(...),
        subject: Subject = Depends(require_user),
        store: CurriculumStore = Depends(get_store),
    ):
        try:
            text = file.file.read().decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid data format: file is not UTF-8 text") from exc
        document = parse_document(text)
        summary = store.adapter.import_document(subject, document, replace_existing=replace_existing)
        return {"status": "ok", "filename": file.filename, **summary}

    @app.post("/curriculum/import/default")
    def import_default_curriculum(replace_existing: bool = True, subject: Subject = Depends(require_user), store: CurriculumStore = Depends(get_store)):
        summary = store.adapter.import_document(subject, load_default_document(), replace_existing=replace_existing)
        return {"status": "ok", **summary}

    @app.get("/completions/export")
    def export_completed(subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        return json.loads(export_completions(store.snapshot(subject)))

    @app.post("/completions/import")
    def import_completed(payload: DocumentIn, subject: Subject = Depends(current_subject), store: CurriculumStore = Depends(get_store)):
        ids = parse_completions(payload.document)
        stored = store.adapter.replace_completions(subject, ids)
        store.adapter.sessions.state(subject.key).schedule = None
        return {"status": "ok", "imported": len(stored)}

    @app.get("/realtime/revision")
    def realtime_revision(adapter: PersistenceAdapter = Depends(get_adapter)):
        return {"revision": adapter.feed.revision, "subscribers": adapter.feed.subscriber_count()}

    return app


app = create_app()
