"""Configuration loading utilities for the solution portal."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".solution_portal_write_check"

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the returned flag tells whether a
    fallback was used. When nothing can be prepared, ``preferred`` is returned
    unchanged so the bootstrapper can report the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid fetch timeout %r; using %.1fs", value, DEFAULT_FETCH_TIMEOUT_SECONDS)
        return DEFAULT_FETCH_TIMEOUT_SECONDS
    if timeout <= 0:
        LOGGER.warning("Non-positive fetch timeout %r; using %.1fs", value, DEFAULT_FETCH_TIMEOUT_SECONDS)
        return DEFAULT_FETCH_TIMEOUT_SECONDS
    return timeout


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and limits for the portal."""

    storage_root: Path
    database_file: Path
    images_root: Path
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".solution_portal" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        preferred_images = (base_path / mapping["images_root"]).resolve()
        images_root, _ = _select_writable_directory(
            preferred_images,
            label="images",
            fallbacks=(storage_root / "_images",),
        )

        timeout = _coerce_timeout(
            mapping.get("fetch_timeout_seconds", DEFAULT_FETCH_TIMEOUT_SECONDS)
        )

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            images_root=images_root,
            fetch_timeout_seconds=timeout,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the portal configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "DEFAULT_FETCH_TIMEOUT_SECONDS", "load_config"]
