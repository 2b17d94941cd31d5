"""Gallery grid and full-screen lightbox over one resolved image list.

Both viewers read the same immutable tuple of image references. Their open
states are independent: the lightbox opens on top of the gallery and closing
it leaves the gallery open underneath.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from ..services.events import emit_viewer_event

LOGGER = logging.getLogger(__name__)

KeyListener = Callable[[str], bool]


class Key(str, Enum):
    ESCAPE = "Escape"
    ARROW_LEFT = "ArrowLeft"
    ARROW_RIGHT = "ArrowRight"


class KeyboardRouter:
    """Page-wide key dispatch; listeners are tried newest first."""

    def __init__(self) -> None:
        self._listeners: List[KeyListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: KeyListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: KeyListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, key: str) -> bool:
        """Deliver ``key``; returns ``True`` when a listener consumed it."""

        for listener in reversed(list(self._listeners)):
            if listener(key):
                return True
        return False


class PageChrome:
    """The page hosting the viewers; tracks whether background scrolling is suspended."""

    def __init__(self) -> None:
        self.scroll_locked = False

    def lock_scroll(self) -> None:
        self.scroll_locked = True

    def unlock_scroll(self) -> None:
        self.scroll_locked = False


@dataclass(frozen=True)
class Thumbnail:
    index: int
    image: str
    active: bool


@dataclass(frozen=True)
class GalleryCell:
    index: int
    image: str


class LightboxViewer:
    """Full-screen pager with boundary clamping and a synchronised thumbnail strip.

    ``current_index`` always satisfies ``0 <= current_index < len(images)``
    for a non-empty list. Closing keeps the index, so a later :meth:`open`
    without an argument resumes on the same page.
    """

    def __init__(
        self,
        images: Sequence[str],
        *,
        keyboard: Optional[KeyboardRouter] = None,
        page: Optional[PageChrome] = None,
    ) -> None:
        self._images: Tuple[str, ...] = tuple(images)
        self._keyboard = keyboard or KeyboardRouter()
        self._page = page or PageChrome()
        self._index = 0
        self._open = False

    def __enter__(self) -> "LightboxViewer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unmount()

    @property
    def images(self) -> Tuple[str, ...]:
        return self._images

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def current_image(self) -> Optional[str]:
        if not self._images:
            return None
        return self._images[self._index]

    @property
    def has_previous(self) -> bool:
        return self._index > 0

    @property
    def has_next(self) -> bool:
        return self._index < len(self._images) - 1

    def _clamp(self, index: int) -> int:
        return max(0, min(int(index), len(self._images) - 1))

    def open(self, index: Optional[int] = None) -> bool:
        """Show the lightbox at ``index`` (or the last viewed page); no-op when empty."""

        if not self._images:
            LOGGER.debug("Ignoring lightbox open request on an empty image list")
            return False
        if index is not None:
            self._index = self._clamp(index)
        if not self._open:
            self._open = True
            self._keyboard.add_listener(self.handle_key)
            self._page.lock_scroll()
        emit_viewer_event("Lightbox opened", payload={"index": self._index, "count": len(self._images)})
        return True

    def close(self) -> None:
        if self._open:
            self._open = False
            emit_viewer_event("Lightbox closed", payload={"index": self._index})
        self._keyboard.remove_listener(self.handle_key)
        self._page.unlock_scroll()

    def unmount(self) -> None:
        """Tear down unconditionally: detach key handling and restore scrolling."""

        self._open = False
        self._keyboard.remove_listener(self.handle_key)
        self._page.unlock_scroll()

    def next(self) -> bool:
        if not self._open or not self.has_next:
            return False
        self._index += 1
        return True

    def previous(self) -> bool:
        if not self._open or not self.has_previous:
            return False
        self._index -= 1
        return True

    def jump_to(self, index: int) -> bool:
        if not self._images:
            return False
        target = self._clamp(index)
        moved = target != self._index
        self._index = target
        return moved

    click_thumbnail = jump_to

    def handle_key(self, key: str) -> bool:
        if not self._open:
            return False
        if key == Key.ESCAPE.value:
            self.close()
            return True
        if key == Key.ARROW_LEFT.value:
            self.previous()
            return True
        if key == Key.ARROW_RIGHT.value:
            self.next()
            return True
        return False

    def thumbnails(self) -> List[Thumbnail]:
        return [
            Thumbnail(index=index, image=image, active=index == self._index)
            for index, image in enumerate(self._images)
        ]

    @property
    def position_label(self) -> str:
        if not self._images:
            return "0 / 0"
        return f"{self._index + 1} / {len(self._images)}"


class GalleryViewer:
    """Clickable grid over the image list; a click opens the lightbox on that page."""

    def __init__(
        self,
        images: Sequence[str],
        *,
        keyboard: Optional[KeyboardRouter] = None,
        page: Optional[PageChrome] = None,
    ) -> None:
        self._images: Tuple[str, ...] = tuple(images)
        self._open = False
        self.lightbox = LightboxViewer(self._images, keyboard=keyboard, page=page)

    @property
    def images(self) -> Tuple[str, ...]:
        return self._images

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def empty(self) -> bool:
        return not self._images

    def open(self) -> None:
        self._open = True
        emit_viewer_event("Gallery opened", payload={"count": len(self._images)})

    def close(self) -> None:
        self._open = False
        emit_viewer_event("Gallery closed")

    def cells(self) -> List[GalleryCell]:
        return [GalleryCell(index=index, image=image) for index, image in enumerate(self._images)]

    def click(self, index: int) -> bool:
        """Open the lightbox at ``index`` while the grid stays mounted."""

        if not self._open:
            return False
        return self.lightbox.open(index)

    def unmount(self) -> None:
        self._open = False
        self.lightbox.unmount()


__all__ = [
    "GalleryCell",
    "GalleryViewer",
    "Key",
    "KeyboardRouter",
    "LightboxViewer",
    "PageChrome",
    "Thumbnail",
]
