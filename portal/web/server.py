"""FastAPI application exposing catalog navigation and the solution viewers."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import mimetypes
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..core.errors import CatalogFetchError, InvalidTransitionError, UnknownSelectionError
from ..core.navigation import Level, NavigationController, SelectionOutcome
from ..core.preload import ImagePreloadCache, storage_image_loader
from ..core.resolver import Resolution, SolutionResolver
from ..core.viewer import GalleryViewer
from ..services.catalog import AsyncCatalogStore
from ..services.events import emit_db_event, emit_structured_event
from ..services.storage import (
    CatalogRepository,
    CourseRecord,
    DepartmentRecord,
    ExerciseRecord,
    ExerciseType,
)
from .sessions import BrowsingSession, SessionRegistry


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "portal_request_id",
    default=None,
)

_HISTORY_LIMIT = 50


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    request_id = _REQUEST_ID_VAR.get()
    return {"request_id": str(request_id)} if request_id else {}


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.setdefault("state", {})
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("solution_portal.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------
class SessionCreatePayload(BaseModel):
    faculty_id: int
    viewer_id: str = Field(min_length=1)


class DepartmentSelectionPayload(BaseModel):
    department_id: int


class CourseSelectionPayload(BaseModel):
    course_id: int


class TypeSelectionPayload(BaseModel):
    exercise_type: ExerciseType


class YearSelectionPayload(BaseModel):
    year: str = Field(min_length=1)


class LightboxOpenPayload(BaseModel):
    index: Optional[int] = None


class LightboxJumpPayload(BaseModel):
    index: int


class KeyPayload(BaseModel):
    key: str


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def _serialize_department(record: DepartmentRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "faculty_id": record.faculty_id,
        "name": record.name,
        "description": record.description,
        "image_url": record.image_url,
    }


def _serialize_course(record: CourseRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "department_id": record.department_id,
        "name": record.name,
        "description": record.description,
    }


def _serialize_exercise(record: ExerciseRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "course_id": record.course_id,
        "number": record.number,
        "type": record.type.value,
        "year": record.year,
        "description": record.description,
    }


def _serialize_navigation(navigation: NavigationController) -> Dict[str, Any]:
    department = navigation.department
    course = navigation.course
    exercise_type = navigation.exercise_type
    pending = navigation.pending_level
    return {
        "level": navigation.level.value,
        "status": navigation.status.value,
        "pending_level": pending.value if pending else None,
        "error": navigation.error,
        "timed_out": navigation.error_timed_out,
        "retryable": navigation.can_retry,
        "faculty_id": navigation.faculty_id,
        "departments": [_serialize_department(item) for item in navigation.departments],
        "department": _serialize_department(department) if department else None,
        "courses": [_serialize_course(item) for item in navigation.courses],
        "course": _serialize_course(course) if course else None,
        "exercise_type": exercise_type.value if exercise_type else None,
        "years": list(navigation.years),
        "year": navigation.year,
        "exercises": [_serialize_exercise(item) for item in navigation.exercises],
    }


def _serialize_viewer(session: BrowsingSession) -> Optional[Dict[str, Any]]:
    gallery: Optional[GalleryViewer] = session.gallery
    if gallery is None:
        return None
    lightbox = gallery.lightbox
    return {
        "empty": gallery.empty,
        "images": list(gallery.images),
        "gallery_open": gallery.is_open,
        "lightbox_open": lightbox.is_open,
        "current_index": lightbox.current_index,
        "current_image": lightbox.current_image,
        "position": lightbox.position_label,
        "has_previous": lightbox.has_previous,
        "has_next": lightbox.has_next,
        "thumbnails": [
            {"index": thumb.index, "image": thumb.image, "active": thumb.active}
            for thumb in lightbox.thumbnails()
        ],
        "scroll_locked": session.page.scroll_locked,
    }


def _serialize_session(session: BrowsingSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "viewer_id": session.viewer_id,
        "navigation": _serialize_navigation(session.navigation),
        "viewer": _serialize_viewer(session),
    }


def _serialize_resolution(resolution: Resolution) -> Dict[str, Any]:
    return {
        "exercise_id": resolution.exercise_id,
        "images": list(resolution.images),
        "solution_set_ids": [item.id for item in resolution.solution_sets],
        "consultation_logged": resolution.consultation_logged,
        "empty": resolution.empty,
    }


def create_app(
    repository: CatalogRepository,
    *,
    config: AppConfig,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    @contextlib.asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        app.state.sessions.clear()
        app.state.image_cache.clear()

    app = FastAPI(
        title="Solution Portal",
        description="Browse the catalog and view worked solutions",
        root_path=root_path or "",
        lifespan=_lifespan,
    )
    app.state.server = None

    def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        if event_type == "DB_QUERY":
            emit_db_event(
                message,
                correlation=_collect_correlation_context(),
                logger=EVENT_LOGGER,
                **kwargs,
            )
        else:
            emit_structured_event(event_type, message, logger=EVENT_LOGGER, **kwargs)

    repository.configure_event_emitter(_repository_event_emitter)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = AsyncCatalogStore(repository)
    image_cache = ImagePreloadCache(storage_image_loader(config.images_root))
    resolver = SolutionResolver(
        store,
        preloader=image_cache,
        timeout=config.fetch_timeout_seconds,
    )

    def _navigation_factory(faculty_id: int) -> NavigationController:
        return NavigationController(store, faculty_id, timeout=config.fetch_timeout_seconds)

    sessions = SessionRegistry(_navigation_factory)
    app.state.catalog_store = store
    app.state.image_cache = image_cache
    app.state.resolver = resolver
    app.state.sessions = sessions

    def _require_session(session_id: str) -> BrowsingSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    def _require_gallery(session: BrowsingSession) -> GalleryViewer:
        if session.gallery is None:
            raise HTTPException(status_code=409, detail="No exercise is open")
        return session.gallery

    def _navigation_response(session: BrowsingSession, outcome: SelectionOutcome) -> Dict[str, Any]:
        _log_event(
            "Navigation outcome",
            session_id=session.id,
            outcome=outcome.value,
            **session.navigation.describe(),
        )
        return {"outcome": outcome.value, "session": _serialize_session(session)}

    async def _run_selection(session: BrowsingSession, operation: Any) -> Dict[str, Any]:
        session.reset_viewer()
        try:
            outcome = await operation()
        except UnknownSelectionError as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        except InvalidTransitionError as error:
            raise HTTPException(status_code=409, detail=str(error)) from error
        return _navigation_response(session, outcome)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    @app.get("/api/faculties")
    def list_faculties() -> Dict[str, Any]:
        faculties = repository.list_faculties()
        return {
            "faculties": [
                {
                    "id": record.id,
                    "name": record.name,
                    "description": record.description,
                    "image_url": record.image_url,
                }
                for record in faculties
            ]
        }

    @app.get("/api/users/{viewer_id}/history")
    def consultation_history(viewer_id: str) -> Dict[str, Any]:
        entries = repository.list_consultations(viewer_id, limit=_HISTORY_LIMIT)
        return {
            "history": [
                {
                    "id": entry.id,
                    "viewed_at": entry.viewed_at,
                    "solution_set_id": entry.solution_set_id,
                    "course": entry.course_name,
                    "exercise_type": entry.exercise_type.value if entry.exercise_type else None,
                    "year": entry.exercise_year,
                    "number": entry.exercise_number,
                }
                for entry in entries
            ]
        }

    @app.get("/api/stats")
    def catalog_stats() -> Dict[str, int]:
        return repository.count_catalog()

    @app.get("/storage/{path:path}")
    async def serve_image(path: str) -> Response:
        try:
            data = await image_cache.fetch(path)
        except OSError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return Response(content=data, media_type=media_type)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    @app.post("/api/sessions", status_code=status.HTTP_201_CREATED)
    async def create_session(payload: SessionCreatePayload) -> Dict[str, Any]:
        session = sessions.create(payload.faculty_id, payload.viewer_id.strip())
        _log_event("Created browsing session", session_id=session.id, faculty_id=payload.faculty_id)
        return await _run_selection(session, session.navigation.load_departments)

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        return {"session": _serialize_session(_require_session(session_id))}

    @app.delete("/api/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_session(session_id: str) -> Response:
        if not sessions.remove(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/sessions/{session_id}/departments")
    async def reload_departments(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        return await _run_selection(session, session.navigation.load_departments)

    @app.post("/api/sessions/{session_id}/department")
    async def select_department(session_id: str, payload: DepartmentSelectionPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        return await _run_selection(
            session, lambda: session.navigation.select_department(payload.department_id)
        )

    @app.post("/api/sessions/{session_id}/course")
    async def select_course(session_id: str, payload: CourseSelectionPayload) -> Dict[str, Any]:
        session = _require_session(session_id)

        async def _select() -> SelectionOutcome:
            return session.navigation.select_course(payload.course_id)

        return await _run_selection(session, _select)

    @app.post("/api/sessions/{session_id}/type")
    async def select_type(session_id: str, payload: TypeSelectionPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        return await _run_selection(
            session, lambda: session.navigation.select_type(payload.exercise_type)
        )

    @app.post("/api/sessions/{session_id}/year")
    async def select_year(session_id: str, payload: YearSelectionPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        return await _run_selection(session, lambda: session.navigation.select_year(payload.year))

    @app.post("/api/sessions/{session_id}/back")
    async def go_back(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        moved = session.navigation.go_back()
        if moved:
            session.reset_viewer()
        return {"moved": moved, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/retry")
    async def retry(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        return await _run_selection(session, session.navigation.retry)

    # ------------------------------------------------------------------
    # Solutions
    # ------------------------------------------------------------------
    @app.post("/api/sessions/{session_id}/exercises/{exercise_id}/open")
    async def open_exercise(session_id: str, exercise_id: int) -> Dict[str, Any]:
        session = _require_session(session_id)
        navigation = session.navigation
        if navigation.level is not Level.EXERCISE_LIST:
            raise HTTPException(status_code=409, detail="Select a year before opening an exercise")
        if all(item.id != exercise_id for item in navigation.exercises):
            raise HTTPException(status_code=404, detail="Exercise not found")

        token = session.next_resolve_token()
        try:
            resolution = await resolver.resolve(exercise_id, session.viewer_id)
        except CatalogFetchError as error:
            LOGGER.warning("Opening exercise %s failed: %s", exercise_id, error)
            status_code = 504 if error.timed_out else 503
            raise HTTPException(
                status_code=status_code,
                detail={"message": str(error), "retryable": True},
            ) from error

        stale = (
            token != session.resolve_token
            or navigation.level is not Level.EXERCISE_LIST
            or all(item.id != exercise_id for item in navigation.exercises)
        )
        if not stale:
            session.mount(resolution)
        _log_event(
            "Opened exercise",
            session_id=session.id,
            exercise_id=exercise_id,
            pages=len(resolution.images),
            stale=stale,
        )
        return {
            "resolution": _serialize_resolution(resolution),
            "stale": stale,
            "session": _serialize_session(session),
        }

    @app.post("/api/sessions/{session_id}/gallery/close")
    async def close_gallery(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        _require_gallery(session).close()
        return {"session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/gallery/{index}/click")
    async def click_gallery_cell(session_id: str, index: int) -> Dict[str, Any]:
        session = _require_session(session_id)
        opened = _require_gallery(session).click(index)
        return {"opened": opened, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/lightbox/open")
    async def open_lightbox(session_id: str, payload: LightboxOpenPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        opened = _require_gallery(session).lightbox.open(payload.index)
        return {"opened": opened, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/lightbox/next")
    async def lightbox_next(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        moved = _require_gallery(session).lightbox.next()
        return {"moved": moved, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/lightbox/previous")
    async def lightbox_previous(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        moved = _require_gallery(session).lightbox.previous()
        return {"moved": moved, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/lightbox/jump")
    async def lightbox_jump(session_id: str, payload: LightboxJumpPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        moved = _require_gallery(session).lightbox.jump_to(payload.index)
        return {"moved": moved, "session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/lightbox/close")
    async def close_lightbox(session_id: str) -> Dict[str, Any]:
        session = _require_session(session_id)
        _require_gallery(session).lightbox.close()
        return {"session": _serialize_session(session)}

    @app.post("/api/sessions/{session_id}/keys")
    async def press_key(session_id: str, payload: KeyPayload) -> Dict[str, Any]:
        session = _require_session(session_id)
        handled = session.keyboard.dispatch(payload.key)
        return {"handled": handled, "session": _serialize_session(session)}

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
