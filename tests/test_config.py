import json
from pathlib import Path

import portal.config as config_module
from portal.config import DEFAULT_FETCH_TIMEOUT_SECONDS, AppConfig, load_config


def test_images_root_falls_back_when_preferred_is_unusable(tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    storage.mkdir()

    preferred_images = tmp_path / "images"
    preferred_images.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/catalog.db",
            "images_root": "images",
        },
        base_path=tmp_path,
    )

    expected_fallback = (storage / "_images").resolve()
    assert config.images_root == expected_fallback
    assert expected_fallback.is_dir()


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    preferred_images = tmp_path / "images"
    preferred_images.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/catalog.db",
            "images_root": "images",
        },
        base_path=tmp_path,
    )

    expected_storage = (home_dir / ".solution_portal" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == (expected_storage / "catalog.db").resolve()
    assert config.images_root == (expected_storage / "_images").resolve()
    assert expected_storage.exists()


def test_fetch_timeout_defaults_and_rejects_invalid_values(tmp_path: Path) -> None:
    base = {
        "storage_root": "storage",
        "database_file": "storage/catalog.db",
        "images_root": "storage/images",
    }

    assert AppConfig.from_mapping(base, base_path=tmp_path).fetch_timeout_seconds == DEFAULT_FETCH_TIMEOUT_SECONDS
    assert (
        AppConfig.from_mapping({**base, "fetch_timeout_seconds": "2.5"}, base_path=tmp_path).fetch_timeout_seconds
        == 2.5
    )
    assert (
        AppConfig.from_mapping({**base, "fetch_timeout_seconds": 0}, base_path=tmp_path).fetch_timeout_seconds
        == DEFAULT_FETCH_TIMEOUT_SECONDS
    )
    assert (
        AppConfig.from_mapping({**base, "fetch_timeout_seconds": "soon"}, base_path=tmp_path).fetch_timeout_seconds
        == DEFAULT_FETCH_TIMEOUT_SECONDS
    )


def test_load_config_reads_explicit_file(tmp_path: Path) -> None:
    config_file = tmp_path / "custom.json"
    config_file.write_text(
        json.dumps(
            {
                "storage_root": str(tmp_path / "data"),
                "database_file": str(tmp_path / "data" / "catalog.db"),
                "images_root": str(tmp_path / "data" / "images"),
                "fetch_timeout_seconds": 4,
            }
        ),
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.storage_root == (tmp_path / "data").resolve()
    assert config.images_root == (tmp_path / "data" / "images").resolve()
    assert config.fetch_timeout_seconds == 4.0
