"""Bootstrap logic that prepares runtime directories and the SQLite catalog."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


CATALOG_SCHEMA = """
PRAGMA foreign_keys = ON;
CREATE TABLE IF NOT EXISTS faculties (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT DEFAULT '',
    image_url TEXT,
    visible INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS departments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    faculty_id INTEGER,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    image_url TEXT,
    visible INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY(faculty_id) REFERENCES faculties(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    department_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    visible INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY(department_id) REFERENCES departments(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS exercises (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL,
    number INTEGER NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('TD', 'Examen')),
    year TEXT NOT NULL,
    description TEXT DEFAULT '',
    visible INTEGER NOT NULL DEFAULT 1,
    UNIQUE(course_id, type, year, number),
    FOREIGN KEY(course_id) REFERENCES courses(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS solution_sets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exercise_id INTEGER NOT NULL,
    visible INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS solution_images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_set_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    image_ref TEXT NOT NULL,
    UNIQUE(solution_set_id, position),
    FOREIGN KEY(solution_set_id) REFERENCES solution_sets(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS consultations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_set_id INTEGER,
    viewer_id TEXT NOT NULL,
    viewed_at TEXT NOT NULL,
    FOREIGN KEY(solution_set_id) REFERENCES solution_sets(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_departments_faculty ON departments(faculty_id);
CREATE INDEX IF NOT EXISTS idx_courses_department ON courses(department_id);
CREATE INDEX IF NOT EXISTS idx_exercises_lookup ON exercises(course_id, type, year);
CREATE INDEX IF NOT EXISTS idx_solution_sets_exercise ON solution_sets(exercise_id);
CREATE INDEX IF NOT EXISTS idx_consultations_viewer ON consultations(viewer_id, viewed_at);
"""


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_database()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        labelled = (
            ("storage", self._config.storage_root),
            ("images", self._config.images_root),
            ("database", self._config.database_file.parent),
        )
        for label, path in labelled:
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable")
            LOGGER.debug("Ensured directory exists: %s", path)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring catalog schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(f"Could not open catalog database: {error}") from error
        try:
            connection.executescript(CATALOG_SCHEMA)
            connection.commit()
        except sqlite3.Error as error:
            raise BootstrapError(f"Could not create catalog schema: {error}") from error
        finally:
            connection.close()


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "CATALOG_SCHEMA", "initialize_app"]
