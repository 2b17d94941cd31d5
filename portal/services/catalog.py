"""Asynchronous catalog access used by the navigation core.

The core talks to the record store through :class:`CatalogStore`, a protocol
of awaitable queries. :class:`AsyncCatalogStore` satisfies it on top of the
blocking :class:`~portal.services.storage.CatalogRepository` by pushing every
call onto an executor so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, TypeVar

from .storage import (
    CatalogRepository,
    CourseRecord,
    DepartmentRecord,
    ExerciseRecord,
    ExerciseType,
    SolutionSetRecord,
)

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class CatalogStore(Protocol):
    """Read/append operations the core consumes from the record store."""

    async def list_departments(self, faculty_id: int) -> List[DepartmentRecord]:
        ...

    async def list_courses(self, department_id: int) -> List[CourseRecord]:
        ...

    async def list_distinct_years(self, course_id: int, exercise_type: ExerciseType) -> List[str]:
        ...

    async def list_exercises(
        self, course_id: int, exercise_type: ExerciseType, year: str
    ) -> List[ExerciseRecord]:
        ...

    async def list_solution_sets(self, exercise_id: int) -> List[SolutionSetRecord]:
        ...

    async def append_consultation(
        self, solution_set_id: int, viewer_id: str, viewed_at: datetime
    ) -> bool:
        ...


class AsyncCatalogStore:
    """Run :class:`CatalogRepository` queries without blocking the event loop."""

    def __init__(
        self,
        repository: CatalogRepository,
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        self._repository = repository
        self._executor = executor

    @property
    def repository(self) -> CatalogRepository:
        return self._repository

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(operation, *args))

    async def list_departments(self, faculty_id: int) -> List[DepartmentRecord]:
        return await self._run(self._repository.list_departments, faculty_id)

    async def list_courses(self, department_id: int) -> List[CourseRecord]:
        return await self._run(self._repository.list_courses, department_id)

    async def list_distinct_years(self, course_id: int, exercise_type: ExerciseType) -> List[str]:
        return await self._run(self._repository.list_distinct_years, course_id, exercise_type)

    async def list_exercises(
        self, course_id: int, exercise_type: ExerciseType, year: str
    ) -> List[ExerciseRecord]:
        return await self._run(self._repository.list_exercises, course_id, exercise_type, year)

    async def list_solution_sets(self, exercise_id: int) -> List[SolutionSetRecord]:
        return await self._run(self._repository.list_solution_sets, exercise_id)

    async def append_consultation(
        self, solution_set_id: int, viewer_id: str, viewed_at: datetime
    ) -> bool:
        consultation_id = await self._run(
            self._repository.append_consultation, solution_set_id, viewer_id, viewed_at
        )
        LOGGER.debug(
            "Recorded consultation %s for solution_set_id=%s viewer=%s",
            consultation_id,
            solution_set_id,
            viewer_id,
        )
        return True


__all__ = ["AsyncCatalogStore", "CatalogStore"]
