"""Turn a selected exercise into the ordered list of solution pages."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple

from ..config import DEFAULT_FETCH_TIMEOUT_SECONDS
from ..services.catalog import CatalogStore
from ..services.events import emit_navigation_event
from ..services.storage import SolutionSetRecord
from .errors import CatalogFetchError
from .preload import ImagePreloadCache

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_TIMEOUT_SECONDS = 2.0


@dataclass(frozen=True)
class Resolution:
    """Outcome of opening an exercise: its pages and whether the view was logged."""

    exercise_id: int
    viewer_id: str
    images: Tuple[str, ...]
    solution_sets: Tuple[SolutionSetRecord, ...]
    consultation_logged: bool

    @property
    def empty(self) -> bool:
        return not self.solution_sets


def flatten_solution_sets(solution_sets: Iterable[SolutionSetRecord]) -> Tuple[str, ...]:
    """Concatenate page sequences, keeping set order and then page order."""

    return tuple(image for solution_set in solution_sets for image in solution_set.images)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SolutionResolver:
    """Fetch an exercise's solution sets, flatten them and log one consultation."""

    def __init__(
        self,
        store: CatalogStore,
        *,
        preloader: Optional[ImagePreloadCache] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        log_timeout: float = DEFAULT_LOG_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._preloader = preloader
        self._timeout = timeout
        # The consultation write never holds the pages back longer than the fetch itself.
        self._log_timeout = min(timeout, log_timeout)
        self._clock = clock

    async def resolve(self, exercise_id: int, viewer_id: str) -> Resolution:
        """Resolve ``exercise_id`` for ``viewer_id``.

        Raises :class:`CatalogFetchError` when the solution sets cannot be
        fetched. A failure to record the consultation is only logged; the
        returned resolution then has ``consultation_logged`` set to ``False``.
        """

        started = time.perf_counter()
        try:
            solution_sets = tuple(
                await asyncio.wait_for(
                    self._store.list_solution_sets(exercise_id), timeout=self._timeout
                )
            )
        except asyncio.TimeoutError as error:
            raise CatalogFetchError(
                f"No answer from the catalog after {self._timeout:g}s",
                level="solutions",
                timed_out=True,
            ) from error
        except Exception as error:  # noqa: BLE001 - the store is an opaque collaborator
            raise CatalogFetchError(
                f"{error.__class__.__name__}: {error}", level="solutions"
            ) from error

        images = flatten_solution_sets(solution_sets)
        if self._preloader is not None and images:
            self._preloader.preload(images)

        logged = False
        if solution_sets:
            logged = await self._log_consultation(solution_sets[0].id, viewer_id)

        emit_navigation_event(
            "Resolved exercise",
            payload={
                "exercise_id": exercise_id,
                "solution_sets": len(solution_sets),
                "pages": len(images),
                "consultation_logged": logged,
            },
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return Resolution(
            exercise_id=exercise_id,
            viewer_id=viewer_id,
            images=images,
            solution_sets=solution_sets,
            consultation_logged=logged,
        )

    async def _log_consultation(self, solution_set_id: int, viewer_id: str) -> bool:
        try:
            result = await asyncio.wait_for(
                self._store.append_consultation(solution_set_id, viewer_id, self._clock()),
                timeout=self._log_timeout,
            )
        except Exception as error:  # noqa: BLE001 - consultation logging is best effort
            LOGGER.warning(
                "Could not record consultation of solution set %s by %s: %s",
                solution_set_id,
                viewer_id,
                error,
            )
            return False
        return bool(result)


__all__ = ["DEFAULT_LOG_TIMEOUT_SECONDS", "Resolution", "SolutionResolver", "flatten_solution_sets"]
