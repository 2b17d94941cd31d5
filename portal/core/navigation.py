"""Drill-down navigation through the catalog.

A user starts from the faculty fixed by their profile and drills down
department → course → document type/year → exercise list. Each level is an
immutable view object that keeps a reference to the level it was reached
from, so stepping back is a matter of returning to the parent view and
everything fetched below it is dropped with the child.

Every fetch carries the controller's request token. Any later navigation
action (a new selection, ``go_back``, a course switch) supersedes it: the
in-flight query is cancelled and, should its answer still arrive, the answer
is discarded instead of being applied.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from ..config import DEFAULT_FETCH_TIMEOUT_SECONDS
from ..services.catalog import CatalogStore
from ..services.events import emit_navigation_event
from ..services.storage import CourseRecord, DepartmentRecord, ExerciseRecord, ExerciseType
from .errors import InvalidTransitionError, UnknownSelectionError

T = TypeVar("T")
R = TypeVar("R", DepartmentRecord, CourseRecord)

LOGGER = logging.getLogger(__name__)


class Level(str, Enum):
    FACULTY = "faculty"
    DEPARTMENT = "department"
    COURSE = "course"
    TYPE_YEAR = "type_year"
    EXERCISE_LIST = "exercise_list"


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class SelectionOutcome(str, Enum):
    """What happened to the response of a navigation request."""

    APPLIED = "applied"
    FAILED = "failed"
    STALE = "stale"


@dataclass(frozen=True)
class FacultyView:
    faculty_id: int

    level: ClassVar[Level] = Level.FACULTY


@dataclass(frozen=True)
class DepartmentListView:
    faculty_id: int
    departments: Tuple[DepartmentRecord, ...]

    level: ClassVar[Level] = Level.DEPARTMENT


@dataclass(frozen=True)
class CourseListView:
    parent: DepartmentListView
    department: DepartmentRecord
    courses: Tuple[CourseRecord, ...]

    level: ClassVar[Level] = Level.COURSE


@dataclass(frozen=True)
class TypeYearView:
    parent: CourseListView
    course: CourseRecord
    exercise_type: Optional[ExerciseType] = None
    years: Tuple[str, ...] = ()

    level: ClassVar[Level] = Level.TYPE_YEAR


@dataclass(frozen=True)
class ExerciseListView:
    parent: TypeYearView
    year: str
    exercises: Tuple[ExerciseRecord, ...]

    level: ClassVar[Level] = Level.EXERCISE_LIST


NavigationView = Union[FacultyView, DepartmentListView, CourseListView, TypeYearView, ExerciseListView]


def _pick(items: Sequence[R], selection: Union[R, int], label: str) -> R:
    """Return the listed item matching ``selection`` (a record or an id)."""

    wanted = selection if isinstance(selection, int) else selection.id
    for item in items:
        if item.id == wanted:
            return item
    raise UnknownSelectionError(f"{label} {wanted} is not in the current list")


class NavigationController:
    """Own the drill-down state for one user and issue the next-level queries."""

    def __init__(
        self,
        store: CatalogStore,
        faculty_id: int,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        cancel_superseded: bool = True,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._cancel_superseded = cancel_superseded
        self._view: NavigationView = FacultyView(faculty_id=faculty_id)
        self._status = LoadStatus.IDLE
        self._pending_level: Optional[Level] = None
        self._error: Optional[str] = None
        self._error_timed_out = False
        self._retry: Optional[Callable[[], Awaitable[SelectionOutcome]]] = None
        self._token = 0
        self._inflight: Optional[asyncio.Future[Any]] = None

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def view(self) -> NavigationView:
        return self._view

    @property
    def level(self) -> Level:
        return self._view.level

    @property
    def faculty_id(self) -> int:
        view = self._find(FacultyView) or self._find(DepartmentListView)
        assert view is not None
        return view.faculty_id

    @property
    def status(self) -> LoadStatus:
        return self._status

    @property
    def pending_level(self) -> Optional[Level]:
        return self._pending_level

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def error_timed_out(self) -> bool:
        return self._error_timed_out

    @property
    def can_retry(self) -> bool:
        return self._status is LoadStatus.ERROR and self._retry is not None

    @property
    def departments(self) -> Tuple[DepartmentRecord, ...]:
        view = self._find(DepartmentListView)
        return view.departments if view else ()

    @property
    def department(self) -> Optional[DepartmentRecord]:
        view = self._find(CourseListView)
        return view.department if view else None

    @property
    def courses(self) -> Tuple[CourseRecord, ...]:
        view = self._find(CourseListView)
        return view.courses if view else ()

    @property
    def course(self) -> Optional[CourseRecord]:
        view = self._find(TypeYearView)
        return view.course if view else None

    @property
    def exercise_type(self) -> Optional[ExerciseType]:
        view = self._find(TypeYearView)
        return view.exercise_type if view else None

    @property
    def years(self) -> Tuple[str, ...]:
        view = self._find(TypeYearView)
        return view.years if view else ()

    @property
    def year(self) -> Optional[str]:
        view = self._find(ExerciseListView)
        return view.year if view else None

    @property
    def exercises(self) -> Tuple[ExerciseRecord, ...]:
        view = self._find(ExerciseListView)
        return view.exercises if view else ()

    def _find(self, kind: type) -> Any:
        view: Any = self._view
        while view is not None:
            if isinstance(view, kind):
                return view
            view = getattr(view, "parent", None)
        return None

    def _require(self, operation: str, *levels: Level) -> None:
        if self.level not in levels:
            raise InvalidTransitionError(operation, self.level.value)

    # ------------------------------------------------------------------
    # Request bookkeeping
    # ------------------------------------------------------------------
    def _supersede(self) -> int:
        """Invalidate whatever request is in flight and return a fresh token."""

        self._token += 1
        inflight = self._inflight
        self._inflight = None
        if inflight is not None and not inflight.done():
            if self._cancel_superseded:
                inflight.cancel()
            LOGGER.debug("Superseded in-flight %s request", self._pending_level)
        self._pending_level = None
        return self._token

    def _settle(self) -> None:
        self._status = LoadStatus.IDLE if isinstance(self._view, FacultyView) else LoadStatus.READY
        self._pending_level = None
        self._error = None
        self._error_timed_out = False
        self._retry = None

    def _discard(self, level: Level, description: str) -> SelectionOutcome:
        LOGGER.debug("Discarding stale %s response (%s)", level.value, description)
        emit_navigation_event(
            "Discarded stale response",
            payload={"level": level, "request": description},
            level=logging.DEBUG,
        )
        return SelectionOutcome.STALE

    def _fail(
        self,
        level: Level,
        description: str,
        message: str,
        retry: Callable[[], Awaitable[SelectionOutcome]],
        *,
        timed_out: bool = False,
    ) -> SelectionOutcome:
        self._status = LoadStatus.ERROR
        self._pending_level = None
        self._error = message
        self._error_timed_out = timed_out
        self._retry = retry
        LOGGER.warning("Fetching %s failed (%s): %s", level.value, description, message)
        emit_navigation_event(
            "Fetch failed",
            payload={"level": level, "request": description, "error": message, "timed_out": timed_out},
            level=logging.WARNING,
        )
        return SelectionOutcome.FAILED

    async def _fetch(
        self,
        level: Level,
        description: str,
        query: Callable[[], Awaitable[T]],
        apply: Callable[[T], None],
        retry: Callable[[], Awaitable[SelectionOutcome]],
    ) -> SelectionOutcome:
        token = self._supersede()
        self._status = LoadStatus.LOADING
        self._pending_level = level
        self._error = None
        self._error_timed_out = False
        self._retry = None

        task = asyncio.ensure_future(query())
        self._inflight = task
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(task, timeout=self._timeout)
        except asyncio.CancelledError:
            if token == self._token:
                # The caller itself was cancelled; leave the current level usable.
                self._settle()
                raise
            return self._discard(level, description)
        except asyncio.TimeoutError:
            if token != self._token:
                return self._discard(level, description)
            return self._fail(
                level,
                description,
                f"No answer from the catalog after {self._timeout:g}s",
                retry,
                timed_out=True,
            )
        except Exception as error:  # noqa: BLE001 - the store is an opaque collaborator
            if token != self._token:
                return self._discard(level, description)
            return self._fail(level, description, f"{error.__class__.__name__}: {error}", retry)
        finally:
            if self._inflight is task:
                self._inflight = None

        if token != self._token:
            return self._discard(level, description)

        apply(result)
        self._settle()
        emit_navigation_event(
            "Entered level",
            payload={"level": self.level, "request": description},
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return SelectionOutcome.APPLIED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def load_departments(self) -> SelectionOutcome:
        """Fetch the faculty's department list (initial entry or refresh)."""

        self._require("load_departments", Level.FACULTY, Level.DEPARTMENT)
        faculty_id = self.faculty_id

        def apply(departments: Sequence[DepartmentRecord]) -> None:
            self._view = DepartmentListView(faculty_id=faculty_id, departments=tuple(departments))

        return await self._fetch(
            Level.DEPARTMENT,
            f"faculty={faculty_id}",
            lambda: self._store.list_departments(faculty_id),
            apply,
            self.load_departments,
        )

    async def select_department(self, department: Union[DepartmentRecord, int]) -> SelectionOutcome:
        self._require("select_department", Level.DEPARTMENT)
        base = self._view
        assert isinstance(base, DepartmentListView)
        chosen = _pick(base.departments, department, "department")

        def apply(courses: Sequence[CourseRecord]) -> None:
            self._view = CourseListView(parent=base, department=chosen, courses=tuple(courses))

        return await self._fetch(
            Level.COURSE,
            f"department={chosen.id}",
            lambda: self._store.list_courses(chosen.id),
            apply,
            lambda: self.select_department(chosen),
        )

    def select_course(self, course: Union[CourseRecord, int]) -> SelectionOutcome:
        """Open the type/year selection for ``course``.

        Allowed from the course list and from an open type/year selection, in
        which case the previous course's type and years are dropped.
        """

        self._require("select_course", Level.COURSE, Level.TYPE_YEAR)
        base = self._find(CourseListView)
        chosen = _pick(base.courses, course, "course")
        self._supersede()
        self._view = TypeYearView(parent=base, course=chosen)
        self._settle()
        emit_navigation_event("Entered level", payload={"level": self.level, "course": chosen.id})
        return SelectionOutcome.APPLIED

    async def select_type(self, exercise_type: Union[ExerciseType, str]) -> SelectionOutcome:
        self._require("select_type", Level.TYPE_YEAR)
        base = self._view
        assert isinstance(base, TypeYearView)
        kind = ExerciseType(exercise_type)
        course_id = base.course.id

        def apply(years: Sequence[str]) -> None:
            self._view = TypeYearView(
                parent=base.parent,
                course=base.course,
                exercise_type=kind,
                years=tuple(years),
            )

        return await self._fetch(
            Level.TYPE_YEAR,
            f"course={course_id} type={kind.value}",
            lambda: self._store.list_distinct_years(course_id, kind),
            apply,
            lambda: self.select_type(kind),
        )

    async def select_year(self, year: str) -> SelectionOutcome:
        """Fetch the exercises for ``year``; re-selecting from the exercise list is allowed."""

        self._require("select_year", Level.TYPE_YEAR, Level.EXERCISE_LIST)
        base = self._find(TypeYearView)
        if base.exercise_type is None:
            raise InvalidTransitionError("select_year", self.level.value, "no document type selected")
        year = str(year)
        if year not in base.years:
            raise UnknownSelectionError(f"year {year!r} is not in the current list")
        course_id = base.course.id
        kind = base.exercise_type

        def apply(exercises: Sequence[ExerciseRecord]) -> None:
            self._view = ExerciseListView(parent=base, year=year, exercises=tuple(exercises))

        return await self._fetch(
            Level.EXERCISE_LIST,
            f"course={course_id} type={kind.value} year={year}",
            lambda: self._store.list_exercises(course_id, kind, year),
            apply,
            lambda: self.select_year(year),
        )

    def go_back(self) -> bool:
        """Step back one level; returns ``False`` when there is nothing to leave.

        At the department list there is no level above, so only a pending or
        failed request is abandoned. Leaving the exercise list or the type/year selection returns to the
        course list and forgets the chosen course together with its type and
        year. Leaving the course list forgets the department but keeps the
        department list that was already fetched.
        """

        view = self._view
        target: Optional[NavigationView]
        if isinstance(view, ExerciseListView):
            target = view.parent.parent
        elif isinstance(view, (TypeYearView, CourseListView)):
            target = view.parent
        else:
            target = None

        if target is None:
            if self._status is LoadStatus.LOADING or self._status is LoadStatus.ERROR:
                self._supersede()
                self._settle()
                return True
            return False

        previous = view.level
        self._supersede()
        self._view = target
        self._settle()
        emit_navigation_event("Stepped back", payload={"from": previous, "to": self.level})
        return True

    async def retry(self) -> SelectionOutcome:
        """Re-issue the request that last failed at the current level."""

        if not self.can_retry:
            raise InvalidTransitionError("retry", self.level.value, "no failed request to retry")
        assert self._retry is not None
        emit_navigation_event("Retrying", payload={"level": self.level})
        return await self._retry()

    def describe(self) -> Dict[str, Any]:
        """Compact summary used in log lines and diagnostics."""

        return {
            "level": self.level.value,
            "status": self._status.value,
            "department": self.department.id if self.department else None,
            "course": self.course.id if self.course else None,
            "type": self.exercise_type.value if self.exercise_type else None,
            "year": self.year,
        }


__all__ = [
    "CourseListView",
    "DepartmentListView",
    "ExerciseListView",
    "FacultyView",
    "Level",
    "LoadStatus",
    "NavigationController",
    "NavigationView",
    "SelectionOutcome",
    "TypeYearView",
]
