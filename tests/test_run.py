"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from types import SimpleNamespace

from rich.console import Console
from typer.testing import CliRunner

import run
from portal.services.storage import CatalogRepository
from portal.ui.overview import CatalogOverviewUI, collect_overview


def _setup_serve(monkeypatch, tmp_path, root_path):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path),
    )
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "CatalogRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(repository, config, root_path):
        captured["create_root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run.webbrowser, "open", lambda *args, **kwargs: True)

    run.serve(host="0.0.0.0", port=9000, root_path=root_path)

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_runs_uvicorn_with_normalized_root_path(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, root_path="portal/")

    assert captured["create_root_path"] == "/portal"
    assert captured["config_kwargs"]["root_path"] == "/portal"
    assert captured["config_kwargs"]["host"] == "0.0.0.0"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["config_kwargs"]["log_config"] is None
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True
    assert captured["thread_daemon"] is True


def test_serve_without_root_path(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, root_path=None)

    assert captured["config_kwargs"]["root_path"] == ""


def test_normalize_root_path():
    assert run._normalize_root_path(None) == ""
    assert run._normalize_root_path("   ") == ""
    assert run._normalize_root_path("/") == ""
    assert run._normalize_root_path("solutions") == "/solutions"
    assert run._normalize_root_path("/solutions/") == "/solutions"


def _seed(repository: CatalogRepository) -> None:
    sciences = repository.add_faculty("Sciences")
    arts = repository.add_faculty("Arts")
    maths = repository.add_department(sciences, "Mathematics")
    repository.add_department(arts, "History")
    algebra = repository.add_course(maths, "Algebra")
    first = repository.add_exercise(algebra, 1, "TD", "2023")
    repository.add_exercise(algebra, 2, "TD", "2023")
    repository.add_exercise(algebra, 1, "Examen", "2022")
    repository.add_solution_set(first, ["a.png", "b.png"])


def test_collect_overview_counts_visible_catalog(temp_config):
    repository = CatalogRepository(temp_config)
    _seed(repository)

    snapshot = collect_overview(repository)

    assert [item.record.name for item in snapshot.faculties] == ["Arts", "Sciences"]
    assert snapshot.department_count == 2
    assert snapshot.course_count == 1
    assert snapshot.exercise_count == 3
    assert snapshot.page_count == 2
    sciences = snapshot.faculties[1]
    years = sciences.departments[0].courses[0].years
    assert [(item.exercise_type.value, item.year) for item in years] == [("TD", "2023"), ("Examen", "2022")]


def test_overview_renders_single_faculty(temp_config):
    repository = CatalogRepository(temp_config)
    _seed(repository)
    sciences_id = repository.list_faculties()[1].id
    console = Console(record=True, width=200)

    CatalogOverviewUI(repository, faculty_id=sciences_id, console=console).run()

    output = console.export_text()
    assert "Algebra" in output
    assert "Exercise 2" in output
    assert "No solutions yet" in output
    assert "History" not in output


def test_overview_command_reports_empty_catalog(monkeypatch, temp_config):
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)

    result = CliRunner().invoke(run.cli, ["overview"])

    assert result.exit_code == 0
    assert "no visible faculty" in result.output
