import sqlite3
from pathlib import Path

import pytest

import portal.config as config_module
from portal.bootstrap import BootstrapError, Bootstrapper
from portal.config import AppConfig


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    storage_root = tmp_path / "storage"
    images_root = tmp_path / "images"
    database_file = storage_root / "catalog.db"

    config = AppConfig(
        storage_root=storage_root,
        database_file=database_file,
        images_root=images_root,
    )

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    bootstrapper = Bootstrapper(config)

    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_creates_catalog_schema(temp_config: AppConfig) -> None:
    assert temp_config.images_root.is_dir()

    connection = sqlite3.connect(temp_config.database_file)
    try:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    finally:
        connection.close()

    assert {
        "faculties",
        "departments",
        "courses",
        "exercises",
        "solution_sets",
        "solution_images",
        "consultations",
    } <= tables


def test_bootstrapper_is_idempotent(temp_config: AppConfig) -> None:
    Bootstrapper(temp_config).initialize()
    Bootstrapper(temp_config).initialize()
