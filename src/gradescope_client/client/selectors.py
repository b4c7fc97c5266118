"""
Selectors for picking a course or assignment by a user-supplied string.

A selector matches by id first, then by short name, then by name, so
``"1001"``, ``"EECS 203"`` and ``"Discrete Mathematics"`` can all name
the same course.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from gradescope_client.shared.schemas import Assignment, Course
from gradescope_client.shared.utils import clean_whitespace


def _same(a: str, b: str) -> bool:
    return clean_whitespace(a).casefold() == clean_whitespace(b).casefold()


@dataclass(frozen=True)
class CourseSelector:
    """Selects a course by id, short name or name."""

    value: str

    def select(self, courses: Iterable[Course]) -> Optional[Course]:
        courses = list(courses)
        for course in courses:
            if course.id == self.value.strip():
                return course
        for course in courses:
            if _same(course.short_name, self.value):
                return course
        for course in courses:
            if _same(course.name, self.value):
                return course
        return None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AssignmentSelector:
    """Selects an assignment by id or name."""

    value: str

    def select(self, assignments: Iterable[Assignment]) -> Optional[Assignment]:
        assignments = list(assignments)
        for assignment in assignments:
            if assignment.id == self.value.strip():
                return assignment
        for assignment in assignments:
            if _same(assignment.name, self.value):
                return assignment
        return None

    def __str__(self) -> str:
        return self.value
