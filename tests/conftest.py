from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence, Set, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.bootstrap import Bootstrapper
from portal.config import AppConfig
from portal.services.storage import (
    CourseRecord,
    DepartmentRecord,
    ExerciseRecord,
    ExerciseType,
    SolutionSetRecord,
)


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",\n
            \"database_file\": \"storage/catalog.db\",\n
            \"images_root\": \"storage/images\",\n
            \"fetch_timeout_seconds\": 2.0\n
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/catalog.db",
            "images_root": "storage/images",
            "fetch_timeout_seconds": 2.0,
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


class FakeCatalogStore:
    """In-memory catalog whose answers can be held back or made to fail.

    Each query has a key such as ``"courses:10"``. Calling :meth:`hold` makes
    that query wait until :meth:`release` is called; :meth:`fail_next`
    makes its next call raise.
    """

    def __init__(self) -> None:
        self.departments: Dict[int, List[DepartmentRecord]] = {}
        self.courses: Dict[int, List[CourseRecord]] = {}
        self.years: Dict[Tuple[int, str], List[str]] = {}
        self.exercises: Dict[Tuple[int, str, str], List[ExerciseRecord]] = {}
        self.solution_sets: Dict[int, List[SolutionSetRecord]] = {}
        self.consultations: List[Tuple[int, str, datetime]] = []
        self.calls: List[str] = []
        self._held: Set[str] = set()
        self._gates: Dict[str, asyncio.Event] = {}
        self._failures: Dict[str, Exception] = {}

    def hold(self, key: str) -> None:
        self._held.add(key)

    def release(self, key: str) -> None:
        self._held.discard(key)
        gate = self._gates.pop(key, None)
        if gate is not None:
            gate.set()

    def fail_next(self, key: str, error: Exception) -> None:
        self._failures[key] = error

    async def _answer(self, key: str, value: Any) -> Any:
        self.calls.append(key)
        if key in self._held:
            gate = self._gates.setdefault(key, asyncio.Event())
            await gate.wait()
        failure = self._failures.pop(key, None)
        if failure is not None:
            raise failure
        return value

    async def list_departments(self, faculty_id: int) -> List[DepartmentRecord]:
        return await self._answer(f"departments:{faculty_id}", list(self.departments.get(faculty_id, [])))

    async def list_courses(self, department_id: int) -> List[CourseRecord]:
        return await self._answer(f"courses:{department_id}", list(self.courses.get(department_id, [])))

    async def list_distinct_years(self, course_id: int, exercise_type: ExerciseType) -> List[str]:
        kind = ExerciseType(exercise_type).value
        return await self._answer(
            f"years:{course_id}:{kind}", list(self.years.get((course_id, kind), []))
        )

    async def list_exercises(
        self, course_id: int, exercise_type: ExerciseType, year: str
    ) -> List[ExerciseRecord]:
        kind = ExerciseType(exercise_type).value
        return await self._answer(
            f"exercises:{course_id}:{kind}:{year}",
            list(self.exercises.get((course_id, kind, year), [])),
        )

    async def list_solution_sets(self, exercise_id: int) -> List[SolutionSetRecord]:
        return await self._answer(f"solutions:{exercise_id}", list(self.solution_sets.get(exercise_id, [])))

    async def append_consultation(self, solution_set_id: int, viewer_id: str, viewed_at: datetime) -> bool:
        await self._answer(f"consultation:{solution_set_id}", None)
        self.consultations.append((solution_set_id, viewer_id, viewed_at))
        return True


def department(record_id: int, name: str, faculty_id: int = 1) -> DepartmentRecord:
    return DepartmentRecord(
        id=record_id, faculty_id=faculty_id, name=name, description="", image_url=None, visible=True
    )


def course(record_id: int, name: str, department_id: int) -> CourseRecord:
    return CourseRecord(id=record_id, department_id=department_id, name=name, description="", visible=True)


def exercise(record_id: int, course_id: int, number: int, kind: str, year: str) -> ExerciseRecord:
    return ExerciseRecord(
        id=record_id,
        course_id=course_id,
        number=number,
        type=ExerciseType(kind),
        year=year,
        description="",
        visible=True,
    )


def solution_set(record_id: int, exercise_id: int, images: Sequence[str]) -> SolutionSetRecord:
    return SolutionSetRecord(
        id=record_id,
        exercise_id=exercise_id,
        images=tuple(images),
        visible=True,
        created_at=f"2024-01-0{record_id % 9 + 1}T00:00:00+00:00",
    )


@pytest.fixture()
def fake_store() -> FakeCatalogStore:
    """A small catalog: faculty 1 → Mathematics/Physics → Algebra/Analysis."""

    store = FakeCatalogStore()
    store.departments[1] = [department(10, "Mathematics"), department(20, "Physics")]
    store.courses[10] = [course(100, "Algebra", 10), course(101, "Analysis", 10)]
    store.courses[20] = [course(200, "Mechanics", 20)]
    store.years[(100, "TD")] = ["2023", "2022"]
    store.years[(100, "Examen")] = ["2023"]
    store.years[(101, "TD")] = ["2021"]
    store.exercises[(100, "TD", "2023")] = [
        exercise(1000, 100, 1, "TD", "2023"),
        exercise(1001, 100, 2, "TD", "2023"),
    ]
    store.exercises[(100, "TD", "2022")] = [exercise(1002, 100, 1, "TD", "2022")]
    store.solution_sets[1000] = [
        solution_set(1, 1000, ["a.png", "b.png"]),
        solution_set(2, 1000, ["c.png"]),
    ]
    return store
