from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from portal.config import AppConfig
from portal.services.storage import DELETED_COURSE_LABEL, CatalogRepository, ExerciseType


def _seed_course(repository: CatalogRepository) -> int:
    faculty_id = repository.add_faculty("Sciences")
    department_id = repository.add_department(faculty_id, "Mathematics")
    return repository.add_course(department_id, "Algebra")


def test_repository_lists_visible_entries_in_name_order(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)

    sciences = repository.add_faculty("Sciences", "Exact sciences")
    repository.add_faculty("Hidden", visible=False)
    repository.add_faculty("Arts")

    physics = repository.add_department(sciences, "Physics")
    maths = repository.add_department(sciences, "Mathematics", image_url="img/maths.png")
    repository.add_department(sciences, "Archived", visible=False)
    repository.add_department(None, "Orphan")

    repository.add_course(maths, "Topology")
    algebra = repository.add_course(maths, "Algebra")
    repository.add_course(maths, "Retired", visible=False)

    assert [record.name for record in repository.list_faculties()] == ["Arts", "Sciences"]

    departments = repository.list_departments(sciences)
    assert [record.id for record in departments] == [maths, physics]
    assert departments[0].image_url == "img/maths.png"
    assert all(record.faculty_id == sciences for record in departments)

    courses = repository.list_courses(maths)
    assert [record.name for record in courses] == ["Algebra", "Topology"]
    assert courses[0].id == algebra
    assert repository.list_courses(physics) == []


def test_orphan_departments_are_never_listed(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)

    faculty_id = repository.add_faculty("Sciences")
    orphan_id = repository.add_department(None, "Orphan")
    repository.add_department(faculty_id, "Chemistry")

    listed = repository.list_departments(faculty_id)

    assert orphan_id not in {record.id for record in listed}
    assert [record.name for record in listed] == ["Chemistry"]


def test_distinct_years_are_sorted_descending_as_strings(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)

    repository.add_exercise(course_id, 1, ExerciseType.PRACTICE_SHEET, "2021")
    repository.add_exercise(course_id, 2, ExerciseType.PRACTICE_SHEET, "2021")
    repository.add_exercise(course_id, 1, "TD", "2023")
    repository.add_exercise(course_id, 1, "TD", "2022-2023")
    repository.add_exercise(course_id, 1, "TD", "2019", visible=False)
    repository.add_exercise(course_id, 1, ExerciseType.FINAL_EXAM, "2020")

    assert repository.list_distinct_years(course_id, ExerciseType.PRACTICE_SHEET) == [
        "2023",
        "2022-2023",
        "2021",
    ]
    assert repository.list_distinct_years(course_id, "Examen") == ["2020"]


def test_exercises_are_filtered_by_type_and_year_and_ordered_by_number(
    temp_config: AppConfig,
) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)

    third = repository.add_exercise(course_id, 3, "TD", "2023")
    first = repository.add_exercise(course_id, 1, "TD", "2023", "Vector spaces")
    repository.add_exercise(course_id, 2, "TD", "2023", visible=False)
    repository.add_exercise(course_id, 1, "TD", "2022")
    repository.add_exercise(course_id, 1, "Examen", "2023")

    exercises = repository.list_exercises(course_id, ExerciseType.PRACTICE_SHEET, "2023")

    assert [record.id for record in exercises] == [first, third]
    assert exercises[0].description == "Vector spaces"
    assert exercises[0].type is ExerciseType.PRACTICE_SHEET

    fetched = repository.get_exercise(third)
    assert fetched is not None and fetched.number == 3
    assert repository.get_exercise(9999) is None


def test_solution_sets_keep_creation_and_page_order(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 1, "TD", "2023")

    later = repository.add_solution_set(
        exercise_id, ["c.png"], created_at="2024-02-01T00:00:00+00:00"
    )
    earlier = repository.add_solution_set(
        exercise_id, ["a.png", "b.png"], created_at="2024-01-01T00:00:00+00:00"
    )
    repository.add_solution_set(
        exercise_id, ["hidden.png"], visible=False, created_at="2023-01-01T00:00:00+00:00"
    )

    solution_sets = repository.list_solution_sets(exercise_id)

    assert [record.id for record in solution_sets] == [earlier, later]
    assert solution_sets[0].images == ("a.png", "b.png")
    assert solution_sets[1].images == ("c.png",)
    assert repository.list_solution_sets(9999) == []


def test_solution_set_requires_images(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 1, "TD", "2023")

    with pytest.raises(ValueError):
        repository.add_solution_set(exercise_id, [])


def test_set_visibility_hides_entries(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 1, "TD", "2023")

    repository.set_visibility("exercise", exercise_id, False)
    assert repository.list_exercises(course_id, "TD", "2023") == []

    repository.set_visibility("exercise", exercise_id, True)
    assert [record.id for record in repository.list_exercises(course_id, "TD", "2023")] == [exercise_id]

    with pytest.raises(ValueError):
        repository.set_visibility("chapter", exercise_id, False)


def test_consultation_history_is_newest_first_and_limited(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 4, "Examen", "2022")
    solution_set_id = repository.add_solution_set(exercise_id, ["p1.png"])

    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    for offset in range(3):
        repository.append_consultation(solution_set_id, "alice", start + timedelta(hours=offset))
    repository.append_consultation(solution_set_id, "bob", start)

    history = repository.list_consultations("alice")

    assert len(history) == 3
    assert history[0].viewed_at == (start + timedelta(hours=2)).isoformat()
    assert history[0].course_name == "Algebra"
    assert history[0].exercise_type is ExerciseType.FINAL_EXAM
    assert history[0].exercise_year == "2022"
    assert history[0].exercise_number == 4
    assert len(repository.list_consultations("alice", limit=2)) == 2
    assert repository.list_consultations("carol") == []

    records = list(repository.iter_consultations())
    assert [record.viewer_id for record in records] == ["alice", "alice", "alice", "bob"]


def test_history_survives_catalog_deletion(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 2, "TD", "2023")
    solution_set_id = repository.add_solution_set(exercise_id, ["p1.png"])
    repository.append_consultation(solution_set_id, "alice")

    repository.remove_course(course_id)

    history = repository.list_consultations("alice")

    assert len(history) == 1
    assert history[0].solution_set_id is None
    assert history[0].course_name == DELETED_COURSE_LABEL
    assert history[0].exercise_type is None
    assert history[0].exercise_number is None
    assert repository.list_solution_sets(exercise_id) == []
    assert [record.solution_set_id for record in repository.iter_consultations()] == [None]
    assert repository.count_catalog() == {"courses": 0, "solution_sets": 0, "consultations": 1}


def test_count_catalog_reports_headline_totals(temp_config: AppConfig) -> None:
    repository = CatalogRepository(temp_config)
    course_id = _seed_course(repository)
    exercise_id = repository.add_exercise(course_id, 1, "TD", "2023")
    solution_set_id = repository.add_solution_set(exercise_id, ["p1.png", "p2.png"])
    repository.append_consultation(solution_set_id, "alice")

    assert repository.count_catalog() == {"courses": 1, "solution_sets": 1, "consultations": 1}


def test_repository_reports_timed_queries(temp_config: AppConfig) -> None:
    events = []

    def emitter(event_type, message, **kwargs):
        events.append((event_type, message, kwargs))

    repository = CatalogRepository(temp_config, event_emitter=emitter)
    repository.add_faculty("Sciences")
    repository.list_faculties()

    assert events
    assert all(event_type == "DB_QUERY" for event_type, _, _ in events)
    assert all("duration_ms" in kwargs for _, _, kwargs in events)
