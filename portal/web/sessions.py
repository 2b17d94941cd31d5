"""Per-visitor browsing state held by the web server."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..core.navigation import NavigationController
from ..core.resolver import Resolution
from ..core.viewer import GalleryViewer, KeyboardRouter, PageChrome

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 512


@dataclass
class BrowsingSession:
    """One visitor's navigation plus the viewers mounted for the open exercise."""

    id: str
    viewer_id: str
    navigation: NavigationController
    keyboard: KeyboardRouter = field(default_factory=KeyboardRouter)
    page: PageChrome = field(default_factory=PageChrome)
    resolution: Optional[Resolution] = None
    gallery: Optional[GalleryViewer] = None
    created_at: float = field(default_factory=time.time)
    resolve_token: int = 0

    def next_resolve_token(self) -> int:
        self.resolve_token += 1
        return self.resolve_token

    def mount(self, resolution: Resolution) -> GalleryViewer:
        """Replace the viewers with a gallery over ``resolution``'s pages."""

        if self.gallery is not None:
            self.gallery.unmount()
        self.resolution = resolution
        self.gallery = GalleryViewer(resolution.images, keyboard=self.keyboard, page=self.page)
        self.gallery.open()
        return self.gallery

    def unmount(self) -> None:
        if self.gallery is not None:
            self.gallery.unmount()
        self.gallery = None
        self.resolution = None

    def reset_viewer(self) -> None:
        """Drop the open exercise and invalidate any resolution still in flight."""

        self.next_resolve_token()
        self.unmount()


class SessionRegistry:
    """In-memory sessions keyed by random id, evicting the oldest beyond a cap."""

    def __init__(
        self,
        factory: Callable[[int], NavigationController],
        *,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ) -> None:
        self._factory = factory
        self._max_sessions = max(1, int(max_sessions))
        self._sessions: "OrderedDict[str, BrowsingSession]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, faculty_id: int, viewer_id: str) -> BrowsingSession:
        session = BrowsingSession(
            id=uuid.uuid4().hex,
            viewer_id=viewer_id,
            navigation=self._factory(faculty_id),
        )
        evicted: List[BrowsingSession] = []
        with self._lock:
            self._sessions[session.id] = session
            while len(self._sessions) > self._max_sessions:
                _, oldest = self._sessions.popitem(last=False)
                evicted.append(oldest)
        for stale in evicted:
            LOGGER.info("Evicting browsing session %s", stale.id)
            stale.reset_viewer()
        return session

    def get(self, session_id: str) -> Optional[BrowsingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.reset_viewer()
        return True

    def clear(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.reset_viewer()


__all__ = ["BrowsingSession", "DEFAULT_MAX_SESSIONS", "SessionRegistry"]
