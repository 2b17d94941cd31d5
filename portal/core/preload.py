"""Warm an in-memory image cache ahead of display."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

LOGGER = logging.getLogger(__name__)

ImageLoader = Callable[[str], Awaitable[bytes]]

DEFAULT_MAX_ENTRIES = 256


def resolve_image_path(images_root: Path, reference: str) -> Path:
    """Map an image reference onto ``images_root``, refusing paths that escape it."""

    root = images_root.resolve()
    candidate = (root / reference.lstrip("/")).resolve()
    try:
        candidate.relative_to(root)
    except ValueError as error:
        raise FileNotFoundError(f"Image reference outside of the image root: {reference}") from error
    return candidate


def storage_image_loader(images_root: Path) -> ImageLoader:
    """Return a loader reading image references as files below ``images_root``."""

    async def _load(reference: str) -> bytes:
        path = resolve_image_path(images_root, reference)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, path.read_bytes)

    return _load


class ImagePreloadCache:
    """Fetch-and-cache image bytes so the viewer can show pages immediately.

    :meth:`preload` only schedules work on the running loop and returns at
    once. A failed preload leaves no trace besides a debug line; the image is
    then loaded on demand by :meth:`fetch` when it is actually displayed.
    """

    def __init__(self, loader: ImageLoader, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._loader = loader
        self._max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._pending: Dict[str, "asyncio.Task[None]"] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    def __contains__(self, reference: object) -> bool:
        return reference in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get(self, reference: str) -> Optional[bytes]:
        data = self._entries.get(reference)
        if data is not None:
            self._entries.move_to_end(reference)
        return data

    def _store(self, reference: str, data: bytes) -> None:
        self._entries[reference] = data
        self._entries.move_to_end(reference)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            LOGGER.debug("Evicted %s from the image cache", evicted)

    def preload(self, images: Iterable[str]) -> None:
        """Schedule a background load for every reference not cached yet."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; skipping image preload")
            return

        scheduled = 0
        for reference in images:
            if reference in self._entries or reference in self._pending:
                continue
            task = loop.create_task(self._warm(reference))
            self._pending[reference] = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            scheduled += 1
        if scheduled:
            LOGGER.debug("Scheduled %s image preload(s)", scheduled)

    async def _warm(self, reference: str) -> None:
        try:
            data = await self._loader(reference)
        except Exception as error:  # noqa: BLE001 - preloading is best effort
            LOGGER.debug("Preloading %s failed: %s", reference, error)
        else:
            self._store(reference, data)
        finally:
            self._pending.pop(reference, None)

    async def fetch(self, reference: str) -> bytes:
        """Return cached bytes, joining a pending preload or loading lazily."""

        cached = self.get(reference)
        if cached is not None:
            return cached

        pending = self._pending.get(reference)
        if pending is not None:
            await asyncio.wait([pending])
            cached = self.get(reference)
            if cached is not None:
                return cached

        data = await self._loader(reference)
        self._store(reference, data)
        return data

    async def drain(self) -> None:
        """Wait for every scheduled preload to finish."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._entries.clear()
        self._pending.clear()


__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "ImageLoader",
    "ImagePreloadCache",
    "resolve_image_path",
    "storage_image_loader",
]
