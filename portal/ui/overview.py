"""A Rich-powered console overview of the visible catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.storage import (
    CatalogRepository,
    CourseRecord,
    DepartmentRecord,
    ExerciseRecord,
    ExerciseType,
    FacultyRecord,
)


TYPE_LABELS: Dict[ExerciseType, str] = {
    ExerciseType.PRACTICE_SHEET: "📝 TD",
    ExerciseType.FINAL_EXAM: "🎓 Examen",
}


@dataclass
class ExerciseOverview:
    record: ExerciseRecord
    page_count: int


@dataclass
class YearOverview:
    exercise_type: ExerciseType
    year: str
    exercises: List[ExerciseOverview]


@dataclass
class CourseOverview:
    record: CourseRecord
    years: List[YearOverview]


@dataclass
class DepartmentOverview:
    record: DepartmentRecord
    courses: List[CourseOverview]


@dataclass
class FacultyOverview:
    record: FacultyRecord
    departments: List[DepartmentOverview]


@dataclass
class OverviewSnapshot:
    faculties: List[FacultyOverview]
    department_count: int
    course_count: int
    exercise_count: int
    page_count: int
    totals: Dict[str, int]


def collect_overview(
    repository: CatalogRepository, *, faculty_id: Optional[int] = None
) -> OverviewSnapshot:
    """Walk the visible catalog, optionally restricted to one faculty."""

    faculties: List[FacultyOverview] = []
    department_count = 0
    course_count = 0
    exercise_count = 0
    page_count = 0

    for faculty_record in repository.list_faculties():
        if faculty_id is not None and faculty_record.id != faculty_id:
            continue
        departments: List[DepartmentOverview] = []
        for department_record in repository.list_departments(faculty_record.id):
            department_count += 1
            courses: List[CourseOverview] = []
            for course_record in repository.list_courses(department_record.id):
                course_count += 1
                years: List[YearOverview] = []
                for exercise_type in ExerciseType:
                    for year in repository.list_distinct_years(course_record.id, exercise_type):
                        exercises: List[ExerciseOverview] = []
                        for exercise_record in repository.list_exercises(
                            course_record.id, exercise_type, year
                        ):
                            pages = sum(
                                len(solution_set.images)
                                for solution_set in repository.list_solution_sets(exercise_record.id)
                            )
                            exercise_count += 1
                            page_count += pages
                            exercises.append(ExerciseOverview(record=exercise_record, page_count=pages))
                        years.append(
                            YearOverview(exercise_type=exercise_type, year=year, exercises=exercises)
                        )
                courses.append(CourseOverview(record=course_record, years=years))
            departments.append(DepartmentOverview(record=department_record, courses=courses))
        faculties.append(FacultyOverview(record=faculty_record, departments=departments))

    return OverviewSnapshot(
        faculties=faculties,
        department_count=department_count,
        course_count=course_count,
        exercise_count=exercise_count,
        page_count=page_count,
        totals=repository.count_catalog(),
    )


class CatalogOverviewUI:
    """Render the catalog tree next to headline statistics."""

    def __init__(
        self,
        repository: CatalogRepository,
        *,
        faculty_id: Optional[int] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._repository = repository
        self._faculty_id = faculty_id
        self._console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        snapshot = collect_overview(self._repository, faculty_id=self._faculty_id)
        console = self._console

        console.rule("[bold magenta]Solution Portal Overview")

        if not snapshot.faculties:
            message = (
                f"No visible faculty with id {self._faculty_id}."
                if self._faculty_id is not None
                else "The catalog has no visible faculty yet."
            )
            console.print(Panel(message, border_style="yellow", box=box.ROUNDED))
            return

        tree_panel = Panel(
            self._build_tree(snapshot.faculties),
            title="Catalog",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([tree_panel, self._build_stats_panel(snapshot)], expand=True))

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _build_tree(self, faculties: Iterable[FacultyOverview]) -> Tree:
        tree = Tree("[bold cyan]Faculties", guide_style="cyan")

        for faculty in faculties:
            faculty_node = tree.add(self._build_label(faculty.record.name, faculty.record.description, "bold"))
            if not faculty.departments:
                faculty_node.add("[dim]No departments yet")
                continue

            for department in faculty.departments:
                department_node = faculty_node.add(
                    self._build_label(department.record.name, department.record.description, "bright_cyan")
                )
                if not department.courses:
                    department_node.add("[dim]No courses yet")
                    continue

                for course in department.courses:
                    course_node = department_node.add(
                        self._build_label(course.record.name, course.record.description, "white")
                    )
                    if not course.years:
                        course_node.add("[dim]No exercises yet")
                        continue

                    for year in course.years:
                        year_node = course_node.add(
                            Text(f"{TYPE_LABELS[year.exercise_type]} · {year.year}", style="magenta")
                        )
                        for exercise in year.exercises:
                            year_node.add(self._build_exercise_label(exercise))

        return tree

    @staticmethod
    def _build_label(name: str, description: str, style: str) -> Text:
        label = Text(name, style=style)
        if description:
            label.append("\n")
            label.append(description, style="dim")
        return label

    @staticmethod
    def _build_exercise_label(overview: ExerciseOverview) -> Text:
        label = Text(f"Exercise {overview.record.number}", style="white")
        label.append("  ")
        if overview.page_count:
            label.append(f"{overview.page_count} page(s)", style="green")
        else:
            label.append("No solutions yet", style="dim")
        return label

    def _build_stats_panel(self, snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Faculties", str(len(snapshot.faculties)))
        metrics.add_row("Departments", str(snapshot.department_count))
        metrics.add_row("Courses", str(snapshot.course_count))
        metrics.add_row("Exercises", str(snapshot.exercise_count))
        metrics.add_row("Solution pages", str(snapshot.page_count))

        totals = Table.grid(expand=True, padding=(0, 1))
        totals.add_column(style="dim")
        totals.add_column(justify="right", style="bold")
        totals.add_row("Courses (all)", str(snapshot.totals.get("courses", 0)))
        totals.add_row("Solution sets (all)", str(snapshot.totals.get("solution_sets", 0)))
        totals.add_row("Consultations", str(snapshot.totals.get("consultations", 0)))

        body = Group(metrics, Rule(style="magenta"), totals)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = [
    "CatalogOverviewUI",
    "CourseOverview",
    "DepartmentOverview",
    "ExerciseOverview",
    "FacultyOverview",
    "OverviewSnapshot",
    "YearOverview",
    "collect_overview",
]
