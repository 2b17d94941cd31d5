"""Persistence helpers backed by SQLite.

:class:`CatalogRepository` is the record store behind the portal. The
navigation core only ever reads from it (plus appending consultation rows);
the ``add_*`` and ``set_visibility`` writers stand in for the administration
tooling that maintains the catalog.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig


class ExerciseType(str, Enum):
    """Kinds of exercise documents published for a course."""

    PRACTICE_SHEET = "TD"
    FINAL_EXAM = "Examen"


@dataclass(frozen=True)
class FacultyRecord:
    id: int
    name: str
    description: str
    image_url: Optional[str]
    visible: bool


@dataclass(frozen=True)
class DepartmentRecord:
    id: int
    faculty_id: Optional[int]
    name: str
    description: str
    image_url: Optional[str]
    visible: bool


@dataclass(frozen=True)
class CourseRecord:
    id: int
    department_id: int
    name: str
    description: str
    visible: bool


@dataclass(frozen=True)
class ExerciseRecord:
    id: int
    course_id: int
    number: int
    type: ExerciseType
    year: str
    description: str
    visible: bool


@dataclass(frozen=True)
class SolutionSetRecord:
    id: int
    exercise_id: int
    images: Tuple[str, ...]
    visible: bool
    created_at: str


@dataclass(frozen=True)
class ConsultationRecord:
    id: int
    solution_set_id: Optional[int]
    viewer_id: str
    viewed_at: str


@dataclass(frozen=True)
class ConsultationHistoryEntry:
    """A consultation joined with the catalog entries it refers to.

    Catalog fields are ``None`` once the consulted solution set has been
    deleted; ``course_name`` then falls back to :data:`DELETED_COURSE_LABEL`.
    """

    id: int
    viewed_at: str
    solution_set_id: Optional[int]
    course_name: str
    exercise_type: Optional[ExerciseType]
    exercise_year: Optional[str]
    exercise_number: Optional[int]


DELETED_COURSE_LABEL = "Deleted course"

LOGGER = logging.getLogger(__name__)

_VISIBILITY_TABLES = {
    "faculty": "faculties",
    "department": "departments",
    "course": "courses",
    "exercise": "exercises",
    "solution_set": "solution_sets",
}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


class CatalogRepository:
    """SQLite-backed catalog exposing filtered, ordered list queries."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                "DB_QUERY",
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and is always closed."""

        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        try:
            self._execute(connection, "PRAGMA foreign_keys = ON", action="pragma_foreign_keys")
            with connection:
                yield connection
        finally:
            connection.close()

    # ---------------------------------------------------------------------
    # Row mapping
    # ---------------------------------------------------------------------
    @staticmethod
    def _faculty(row: sqlite3.Row) -> FacultyRecord:
        return FacultyRecord(
            id=int(row["id"]),
            name=row["name"],
            description=row["description"] or "",
            image_url=row["image_url"],
            visible=bool(row["visible"]),
        )

    @staticmethod
    def _department(row: sqlite3.Row) -> DepartmentRecord:
        faculty_id = row["faculty_id"]
        return DepartmentRecord(
            id=int(row["id"]),
            faculty_id=int(faculty_id) if faculty_id is not None else None,
            name=row["name"],
            description=row["description"] or "",
            image_url=row["image_url"],
            visible=bool(row["visible"]),
        )

    @staticmethod
    def _course(row: sqlite3.Row) -> CourseRecord:
        return CourseRecord(
            id=int(row["id"]),
            department_id=int(row["department_id"]),
            name=row["name"],
            description=row["description"] or "",
            visible=bool(row["visible"]),
        )

    @staticmethod
    def _exercise(row: sqlite3.Row) -> ExerciseRecord:
        return ExerciseRecord(
            id=int(row["id"]),
            course_id=int(row["course_id"]),
            number=int(row["number"]),
            type=ExerciseType(row["type"]),
            year=row["year"],
            description=row["description"] or "",
            visible=bool(row["visible"]),
        )

    # ---------------------------------------------------------------------
    # Catalog writers (administration side)
    # ---------------------------------------------------------------------
    def add_faculty(
        self,
        name: str,
        description: str = "",
        *,
        image_url: Optional[str] = None,
        visible: bool = True,
    ) -> int:
        with self._track_db_event("add_faculty", table="faculties", name=name) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO faculties(name, description, image_url, visible) VALUES (?, ?, ?, ?)",
                    (name, description, image_url, int(visible)),
                    action="faculties.insert",
                    table="faculties",
                )
                event["faculty_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def add_department(
        self,
        faculty_id: Optional[int],
        name: str,
        description: str = "",
        *,
        image_url: Optional[str] = None,
        visible: bool = True,
    ) -> int:
        with self._track_db_event(
            "add_department", table="departments", faculty_id=faculty_id, name=name
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO departments(faculty_id, name, description, image_url, visible) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (faculty_id, name, description, image_url, int(visible)),
                    action="departments.insert",
                    table="departments",
                )
                event["department_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def add_course(
        self,
        department_id: int,
        name: str,
        description: str = "",
        *,
        visible: bool = True,
    ) -> int:
        with self._track_db_event(
            "add_course", table="courses", department_id=department_id, name=name
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO courses(department_id, name, description, visible) VALUES (?, ?, ?, ?)",
                    (department_id, name, description, int(visible)),
                    action="courses.insert",
                    table="courses",
                )
                event["course_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def add_exercise(
        self,
        course_id: int,
        number: int,
        exercise_type: ExerciseType | str,
        year: str,
        description: str = "",
        *,
        visible: bool = True,
    ) -> int:
        kind = ExerciseType(exercise_type)
        with self._track_db_event(
            "add_exercise",
            table="exercises",
            course_id=course_id,
            number=number,
            type=kind.value,
            year=year,
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO exercises(course_id, number, type, year, description, visible) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (course_id, int(number), kind.value, str(year), description, int(visible)),
                    action="exercises.insert",
                    table="exercises",
                )
                event["exercise_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def add_solution_set(
        self,
        exercise_id: int,
        images: Sequence[str],
        *,
        visible: bool = True,
        created_at: Optional[str] = None,
    ) -> int:
        """Store a solution set whose pages keep the order of ``images``."""

        if not images:
            raise ValueError("A solution set needs at least one image")
        with self._track_db_event(
            "add_solution_set",
            table="solution_sets",
            exercise_id=exercise_id,
            page_count=len(images),
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO solution_sets(exercise_id, visible, created_at) VALUES (?, ?, ?)",
                    (exercise_id, int(visible), created_at or _utcnow()),
                    action="solution_sets.insert",
                    table="solution_sets",
                )
                solution_set_id = int(cursor.lastrowid)
                for position, image_ref in enumerate(images):
                    self._execute(
                        connection,
                        "INSERT INTO solution_images(solution_set_id, position, image_ref) VALUES (?, ?, ?)",
                        (solution_set_id, position, image_ref),
                        action="solution_images.insert",
                        table="solution_images",
                    )
                event["solution_set_id"] = solution_set_id
                return solution_set_id

    def set_visibility(self, kind: str, record_id: int, visible: bool) -> None:
        table = _VISIBILITY_TABLES.get(kind)
        if table is None:
            raise ValueError(f"Unknown catalog entity kind: {kind!r}")
        with self._track_db_event("set_visibility", table=table, record_id=record_id, visible=visible):
            with self._session() as connection:
                self._execute(
                    connection,
                    f"UPDATE {table} SET visible = ? WHERE id = ?",
                    (int(visible), record_id),
                    action=f"{table}.update_visibility",
                    table=table,
                )

    def remove_course(self, course_id: int) -> None:
        """Delete a course with its exercises and solution sets.

        Consultation rows survive; they lose their solution set reference.
        """

        with self._track_db_event("remove_course", table="courses", course_id=course_id):
            with self._session() as connection:
                self._execute(
                    connection,
                    "DELETE FROM courses WHERE id = ?",
                    (course_id,),
                    action="courses.delete",
                    table="courses",
                )

    # ---------------------------------------------------------------------
    # Catalog queries
    # ---------------------------------------------------------------------
    def list_faculties(self) -> List[FacultyRecord]:
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT * FROM faculties WHERE visible = 1 ORDER BY name, id",
                action="faculties.list",
                table="faculties",
            )
            return [self._faculty(row) for row in cursor.fetchall()]

    def list_departments(self, faculty_id: int) -> List[DepartmentRecord]:
        """Visible departments of ``faculty_id``; orphans never match."""

        LOGGER.debug("Listing departments for faculty_id=%s", faculty_id)
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT * FROM departments WHERE faculty_id = ? AND visible = 1 ORDER BY name, id",
                (faculty_id,),
                action="departments.list",
                table="departments",
            )
            return [self._department(row) for row in cursor.fetchall()]

    def list_courses(self, department_id: int) -> List[CourseRecord]:
        LOGGER.debug("Listing courses for department_id=%s", department_id)
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT * FROM courses WHERE department_id = ? AND visible = 1 ORDER BY name, id",
                (department_id,),
                action="courses.list",
                table="courses",
            )
            return [self._course(row) for row in cursor.fetchall()]

    def list_distinct_years(self, course_id: int, exercise_type: ExerciseType | str) -> List[str]:
        """Distinct year labels, most recent first.

        Labels are free-form (``"2023"``, ``"2022-2023"``), so they are ordered
        as strings rather than numbers.
        """

        kind = ExerciseType(exercise_type)
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT DISTINCT year FROM exercises WHERE course_id = ? AND type = ? AND visible = 1",
                (course_id, kind.value),
                action="exercises.distinct_years",
                table="exercises",
            )
            years = {row["year"] for row in cursor.fetchall()}
        return sorted(years, reverse=True)

    def list_exercises(
        self, course_id: int, exercise_type: ExerciseType | str, year: str
    ) -> List[ExerciseRecord]:
        kind = ExerciseType(exercise_type)
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT * FROM exercises WHERE course_id = ? AND type = ? AND year = ? AND visible = 1 "
                "ORDER BY number, id",
                (course_id, kind.value, str(year)),
                action="exercises.list",
                table="exercises",
            )
            return [self._exercise(row) for row in cursor.fetchall()]

    def get_exercise(self, exercise_id: int) -> Optional[ExerciseRecord]:
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT * FROM exercises WHERE id = ?",
                (exercise_id,),
                action="exercises.get",
                table="exercises",
            )
            row = cursor.fetchone()
            return self._exercise(row) if row else None

    def list_solution_sets(self, exercise_id: int) -> List[SolutionSetRecord]:
        """Visible solution sets in creation order, each with its ordered pages."""

        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT id, exercise_id, visible, created_at FROM solution_sets "
                "WHERE exercise_id = ? AND visible = 1 ORDER BY created_at, id",
                (exercise_id,),
                action="solution_sets.list",
                table="solution_sets",
            )
            set_rows = cursor.fetchall()
            if not set_rows:
                return []

            set_ids = [int(row["id"]) for row in set_rows]
            placeholders = ", ".join("?" for _ in set_ids)
            cursor = self._execute(
                connection,
                f"SELECT solution_set_id, image_ref FROM solution_images "
                f"WHERE solution_set_id IN ({placeholders}) ORDER BY solution_set_id, position",
                set_ids,
                action="solution_images.list",
                table="solution_images",
            )
            pages: Dict[int, List[str]] = {set_id: [] for set_id in set_ids}
            for row in cursor.fetchall():
                pages[int(row["solution_set_id"])].append(row["image_ref"])

        return [
            SolutionSetRecord(
                id=int(row["id"]),
                exercise_id=int(row["exercise_id"]),
                images=tuple(pages[int(row["id"])]),
                visible=bool(row["visible"]),
                created_at=row["created_at"],
            )
            for row in set_rows
        ]

    # ---------------------------------------------------------------------
    # Consultation log
    # ---------------------------------------------------------------------
    def append_consultation(
        self,
        solution_set_id: int,
        viewer_id: str,
        viewed_at: Optional[datetime] = None,
    ) -> int:
        timestamp = (viewed_at or datetime.now(timezone.utc)).isoformat()
        with self._track_db_event(
            "append_consultation",
            table="consultations",
            solution_set_id=solution_set_id,
            viewer_id=viewer_id,
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO consultations(solution_set_id, viewer_id, viewed_at) VALUES (?, ?, ?)",
                    (solution_set_id, viewer_id, timestamp),
                    action="consultations.insert",
                    table="consultations",
                )
                event["consultation_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def list_consultations(self, viewer_id: str, *, limit: int = 50) -> List[ConsultationHistoryEntry]:
        """Latest consultations of ``viewer_id``, newest first."""

        with self._session() as connection:
            cursor = self._execute(
                connection,
                """
                SELECT consultations.id, consultations.viewed_at, consultations.solution_set_id,
                       courses.name AS course_name, exercises.type, exercises.year, exercises.number
                FROM consultations
                LEFT JOIN solution_sets ON solution_sets.id = consultations.solution_set_id
                LEFT JOIN exercises ON exercises.id = solution_sets.exercise_id
                LEFT JOIN courses ON courses.id = exercises.course_id
                WHERE consultations.viewer_id = ?
                ORDER BY consultations.viewed_at DESC, consultations.id DESC
                LIMIT ?
                """,
                (viewer_id, int(limit)),
                action="consultations.history",
                table="consultations",
            )
            return [
                ConsultationHistoryEntry(
                    id=int(row["id"]),
                    viewed_at=row["viewed_at"],
                    solution_set_id=_optional_int(row["solution_set_id"]),
                    course_name=row["course_name"] or DELETED_COURSE_LABEL,
                    exercise_type=ExerciseType(row["type"]) if row["type"] is not None else None,
                    exercise_year=row["year"],
                    exercise_number=_optional_int(row["number"]),
                )
                for row in cursor.fetchall()
            ]

    def iter_consultations(self) -> Iterator[ConsultationRecord]:
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "SELECT id, solution_set_id, viewer_id, viewed_at FROM consultations ORDER BY id",
                action="consultations.iter",
                table="consultations",
            )
            rows = cursor.fetchall()
        for row in rows:
            yield ConsultationRecord(
                id=int(row["id"]),
                solution_set_id=_optional_int(row["solution_set_id"]),
                viewer_id=row["viewer_id"],
                viewed_at=row["viewed_at"],
            )

    def count_catalog(self) -> Dict[str, int]:
        """Headline counts for the administration statistics panel."""

        counts: Dict[str, int] = {}
        with self._session() as connection:
            for key, table in (
                ("courses", "courses"),
                ("solution_sets", "solution_sets"),
                ("consultations", "consultations"),
            ):
                cursor = self._execute(
                    connection,
                    f"SELECT COUNT(*) FROM {table}",
                    action=f"{table}.count",
                    table=table,
                )
                counts[key] = int(cursor.fetchone()[0])
        return counts


__all__ = [
    "DELETED_COURSE_LABEL",
    "CatalogRepository",
    "ConsultationHistoryEntry",
    "ConsultationRecord",
    "CourseRecord",
    "DepartmentRecord",
    "ExerciseRecord",
    "ExerciseType",
    "FacultyRecord",
    "SolutionSetRecord",
]
