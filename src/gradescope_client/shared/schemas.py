"""
Schemas Module - Pydantic data models for scraped entities.
===========================================================

Defines the data contracts handed to downstream consumers:
- Course, Assignment, RegradeRequest, Submission entities
- Assignment outline questions
- Listing results (entities plus per-item failures)
- Snapshot of a full scrape pass for the ingestion app

All entities are immutable. Identifiers are opaque strings assigned by the
source application; nothing here parses them for structure.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Iterator, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from gradescope_client.shared.errors import GradescopeError, MappingError, ParseError


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    """The logged-in user's role in a course."""

    INSTRUCTOR = "instructor"
    STUDENT = "student"


class EntityKind(str, Enum):
    """Entity kinds the mapper knows how to build."""

    COURSE = "course"
    ASSIGNMENT = "assignment"
    REGRADE_REQUEST = "regrade_request"
    SUBMISSION = "submission"
    QUESTION = "question"


# ─────────────────────────────────────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────────────────────────────────────


class Course(BaseModel):
    """
    A course visible from the account page.

    The ``id`` is the natural key and never changes once observed.
    """

    id: str = Field(..., min_length=1, description="Source-assigned course ID")
    short_name: str = Field(..., description="Short name (e.g., 'EECS 203')")
    name: str = Field(..., description="Display name")
    role: Role = Field(default=Role.INSTRUCTOR, description="User role in this course")

    model_config = {"frozen": True}


class Assignment(BaseModel):
    """An assignment belonging to exactly one course."""

    id: str = Field(..., min_length=1, description="Source-assigned assignment ID")
    course_id: str = Field(..., min_length=1, description="Owning course ID")
    name: str = Field(..., description="Display name")
    points: float = Field(..., description="Maximum points")

    model_config = {"frozen": True}

    @field_validator("points")
    @classmethod
    def validate_points(cls, v: float) -> float:
        """Points must be a finite, non-negative number."""
        if math.isnan(v) or math.isinf(v):
            raise ValueError(f"points must be finite, got {v}")
        if v < 0:
            raise ValueError(f"points must be non-negative, got {v}")
        return v


class RegradeRequest(BaseModel):
    """
    A regrade request on one question of one assignment.

    The source gives regrades no identifier of their own; the tuple
    (assignment_id, student_name, question_number) is unique.
    """

    assignment_id: str = Field(..., min_length=1, description="Assignment the regrade is for")
    student_name: str = Field(..., description="Requesting student's display name")
    question_number: str = Field(..., description="Question label, e.g. '2', '2.1', '2a'")
    question_title: str = Field(default="", description="Question title")
    grader_name: str = Field(default="", description="Assigned grader's display name")
    completed: bool = Field(default=False, description="Whether the regrade was resolved")
    url: Optional[str] = Field(default=None, description="Absolute URL of the regrade page")

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness tuple."""
        return (self.assignment_id, self.student_name, self.question_number)


class StudentSubmitter(BaseModel):
    """A student attached to a submission."""

    id: str = Field(..., description="Source-assigned student ID")
    name: str = Field(..., description="Student display name")
    email: str = Field(default="", description="Student email")

    model_config = {"frozen": True}


class Submission(BaseModel):
    """A submission and the students currently attached to it."""

    id: str = Field(..., min_length=1, description="Source-assigned submission ID")
    assignment_id: str = Field(..., min_length=1, description="Assignment submitted to")
    students: tuple[StudentSubmitter, ...] = Field(default=(), description="Active submitters")

    model_config = {"frozen": True}


class Question(BaseModel):
    """A leaf question from an assignment outline."""

    number: str = Field(..., description="Dotted number, e.g. '3.2' for part 2 of question 3")
    title: str = Field(default="", description="Question title")

    model_config = {"frozen": True}

    @property
    def is_first(self) -> bool:
        """Whether this is the first question at every level ('1', '1.1', ...)."""
        return all(part == "1" for part in self.number.split("."))

    def __str__(self) -> str:
        return f"{self.number}: {self.title}"


# ─────────────────────────────────────────────────────────────────────────────
# Listing Results
# ─────────────────────────────────────────────────────────────────────────────


T = TypeVar("T")


@dataclass
class ListingResult(Generic[T]):
    """
    Entities extracted from one listing plus the items that failed.

    A malformed row never aborts the listing; it lands in ``failures`` as a
    ``ParseError`` or ``MappingError`` and the caller decides what to do.
    """

    items: list[T] = field(default_factory=list)
    failures: list[GradescopeError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def raise_for_failures(self) -> None:
        """Raise the first collected failure, if any."""
        if self.failures:
            raise self.failures[0]


class FailureRecord(BaseModel):
    """Serializable form of a per-item failure."""

    kind: str = Field(..., description="Exception class name")
    message: str = Field(..., description="Human-readable message")
    context: Optional[str] = Field(default=None, description="Shape or entity kind")
    field: Optional[str] = Field(default=None, description="Field name, if field scoped")
    row: Optional[int] = Field(default=None, description="Row index, if row scoped")

    @classmethod
    def from_error(cls, error: GradescopeError) -> "FailureRecord":
        context = None
        field_name = None
        row = None
        if isinstance(error, ParseError):
            context, field_name, row = error.shape, error.field, error.row
        elif isinstance(error, MappingError):
            context, row = error.kind, error.row
        return cls(
            kind=type(error).__name__,
            message=str(error),
            context=context,
            field=field_name,
            row=row,
        )


class CourseSnapshot(BaseModel):
    """
    Everything one scrape pass produced, ready for the ingestion app.

    Mirrors the ingestion tables: course, assignment (by course_id) and
    regrade (by assignment_id).
    """

    courses: list[Course] = Field(default_factory=list)
    assignments: list[Assignment] = Field(default_factory=list)
    regrades: list[RegradeRequest] = Field(default_factory=list)
    failures: list[FailureRecord] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
