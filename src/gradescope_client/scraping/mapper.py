"""
Mapper Module - Build typed entities from extracted fields.
===========================================================

Validates extracted field values against entity invariants and checks
references against the entities already observed in this run:
- an assignment's course must have been listed
- a regrade's assignment must have been listed
- duplicate rows within one listing pass are dropped (first one wins)

Failures are raised as ``MappingError`` scoped to the row, so a listing
can record them and carry on with the remaining rows.
"""

import threading
from typing import Any, Callable, Hashable, Iterator, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from gradescope_client.shared.errors import MappingError
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.schemas import (
    Assignment,
    Course,
    EntityKind,
    ListingResult,
    Question,
    RegradeRequest,
    Role,
    StudentSubmitter,
    Submission,
)
from gradescope_client.shared.utils import absolute_url, clean_whitespace

logger = get_logger(__name__)

Entity = Union[Course, Assignment, RegradeRequest, Submission, Question]

# Account page headings and the role they imply
ROLE_HEADINGS: dict[str, Role] = {
    "instructor courses": Role.INSTRUCTOR,
    "student courses": Role.STUDENT,
    "your courses": Role.INSTRUCTOR,
}


# ─────────────────────────────────────────────────────────────────────────────
# Scrape Context
# ─────────────────────────────────────────────────────────────────────────────


class ScrapeContext:
    """
    Entities observed so far in this run.

    Shared by all workers, so every access takes the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._courses: dict[str, Course] = {}
        self._assignments: dict[str, Assignment] = {}

    def add_course(self, course: Course) -> None:
        with self._lock:
            self._courses[course.id] = course

    def add_assignment(self, assignment: Assignment) -> None:
        with self._lock:
            self._assignments[assignment.id] = assignment

    def course(self, course_id: str) -> Optional[Course]:
        with self._lock:
            return self._courses.get(course_id)

    def assignment(self, assignment_id: str) -> Optional[Assignment]:
        with self._lock:
            return self._assignments.get(assignment_id)

    @property
    def courses(self) -> list[Course]:
        with self._lock:
            return list(self._courses.values())

    @property
    def assignments(self) -> list[Assignment]:
        with self._lock:
            return list(self._assignments.values())

    def assignments_of(self, course_id: str) -> list[Assignment]:
        with self._lock:
            return [a for a in self._assignments.values() if a.course_id == course_id]

    def clear(self) -> None:
        with self._lock:
            self._courses.clear()
            self._assignments.clear()


# ─────────────────────────────────────────────────────────────────────────────
# Deduplication
# ─────────────────────────────────────────────────────────────────────────────


def entity_key(entity: Entity) -> Hashable:
    """Natural key of an entity."""
    if isinstance(entity, RegradeRequest):
        return entity.key
    if isinstance(entity, Question):
        return entity.number
    return entity.id


class Deduplicator:
    """Admits the first entity seen for each natural key in one pass."""

    def __init__(self, kind: EntityKind, key: Callable[[Entity], Hashable] = entity_key):
        self.kind = kind
        self._key = key
        self._seen: set[Hashable] = set()
        self.dropped = 0

    def admit(self, entity: Entity) -> bool:
        key = self._key(entity)
        if key in self._seen:
            self.dropped += 1
            logger.debug(f"Dropping duplicate {self.kind.value}: {key}")
            return False
        self._seen.add(key)
        return True


# ─────────────────────────────────────────────────────────────────────────────
# Entity Mapper
# ─────────────────────────────────────────────────────────────────────────────


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def _positive_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"outline index must be a positive integer, got {value!r}")
    return value


class EntityMapper:
    """
    Turns extracted field values into validated entities.

    Example:
        >>> mapper = EntityMapper(ScrapeContext(), "https://www.gradescope.com")
        >>> course = mapper.map({"id": "1001", "short_name": "EECS 203",
        ...                      "name": "Discrete Math", "group": "Your Courses"},
        ...                     EntityKind.COURSE)
    """

    def __init__(self, context: ScrapeContext, base_url: str):
        self.context = context
        self.base_url = base_url

    def map(
        self,
        fragment: Mapping[str, Any],
        kind: EntityKind,
        parent_id: Optional[str] = None,
        row: Optional[int] = None,
    ) -> Entity:
        """
        Map one extracted row to an entity of the given kind.

        Args:
            fragment: Field values of the row
            kind: Entity kind to build
            parent_id: Owning course (assignments) or assignment (regrades)
            row: Row index, for error messages

        Raises:
            MappingError: Invariant violated or parent unknown
        """
        if kind == EntityKind.COURSE:
            return self.map_course(fragment, row)
        if kind == EntityKind.ASSIGNMENT:
            return self.map_assignment(fragment, parent_id, row)
        if kind == EntityKind.REGRADE_REQUEST:
            return self.map_regrade(fragment, parent_id, row)
        raise MappingError(f"{kind.value} entities are not mapped row by row", kind=kind.value, row=row)

    def _build(self, model: type[BaseModel], kind: EntityKind, row: Optional[int], **values: Any) -> Any:
        try:
            return model(**values)
        except ValidationError as e:
            raise MappingError(_describe(e), kind=kind.value, row=row) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Row Entities
    # ─────────────────────────────────────────────────────────────────────────

    def map_course(self, fragment: Mapping[str, Any], row: Optional[int] = None) -> Course:
        group = clean_whitespace(fragment.get("group"))
        role = ROLE_HEADINGS.get(group.lower()) if group else Role.INSTRUCTOR
        if role is None:
            raise MappingError(f"unknown course list heading {group!r}", kind="course", row=row)

        short_name = fragment.get("short_name") or ""
        return self._build(
            Course,
            EntityKind.COURSE,
            row,
            id=fragment.get("id"),
            short_name=short_name,
            name=fragment.get("name") or short_name,
            role=role,
        )

    def map_assignment(
        self, fragment: Mapping[str, Any], course_id: Optional[str], row: Optional[int] = None
    ) -> Assignment:
        if not course_id or self.context.course(course_id) is None:
            raise MappingError(
                f"assignment refers to unknown course {course_id!r}",
                kind="assignment",
                row=row,
                referential=True,
            )
        return self._build(
            Assignment,
            EntityKind.ASSIGNMENT,
            row,
            id=fragment.get("id"),
            course_id=course_id,
            name=clean_whitespace(fragment.get("name")),
            points=fragment.get("points"),
        )

    def map_regrade(
        self, fragment: Mapping[str, Any], assignment_id: Optional[str], row: Optional[int] = None
    ) -> RegradeRequest:
        if not assignment_id or self.context.assignment(assignment_id) is None:
            raise MappingError(
                f"regrade refers to unknown assignment {assignment_id!r}",
                kind="regrade_request",
                row=row,
                referential=True,
            )

        number, title = fragment.get("question") or ("", "")
        link = fragment.get("link")
        return self._build(
            RegradeRequest,
            EntityKind.REGRADE_REQUEST,
            row,
            assignment_id=assignment_id,
            student_name=fragment.get("student"),
            question_number=number,
            question_title=title,
            grader_name=fragment.get("grader") or "",
            completed=bool(fragment.get("completed")),
            url=absolute_url(self.base_url, link) if link else None,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Embedded Data
    # ─────────────────────────────────────────────────────────────────────────

    def map_submissions(self, props: Mapping[str, Any], assignment_id: str) -> ListingResult[Submission]:
        """
        Map the submissions manager's data for one assignment.

        Students listed on a submission but absent from the roster are
        skipped with a warning. A submission whose own id disagrees with
        its key is recorded as a failure.

        Raises:
            MappingError: The data belongs to another assignment
        """
        if not isinstance(props, Mapping):
            raise MappingError("submissions data is not an object", kind="submission")

        page_assignment = props.get("assignmentId")
        if page_assignment is None or str(page_assignment) != assignment_id:
            raise MappingError(
                f"submissions page is for assignment {page_assignment!r}, expected {assignment_id!r}",
                kind="submission",
            )

        result: ListingResult[Submission] = ListingResult()

        roster: dict[str, StudentSubmitter] = {}
        for row, student in enumerate(props.get("students") or []):
            if not isinstance(student, Mapping):
                result.failures.append(MappingError("student entry is not an object", kind="student", row=row))
                continue
            submitter = self._build_or_record(
                result,
                StudentSubmitter,
                "student",
                row,
                id=str(student.get("id", "")),
                name=clean_whitespace(student.get("name")),
                email=student.get("email") or "",
            )
            if submitter is not None:
                roster[submitter.id] = submitter

        submissions = props.get("submissions") or {}
        if not isinstance(submissions, Mapping):
            raise MappingError("'submissions' is not an object", kind="submission")

        dedup = Deduplicator(EntityKind.SUBMISSION)
        for row, (key, entry) in enumerate(submissions.items()):
            if not isinstance(entry, Mapping):
                result.failures.append(MappingError("submission entry is not an object", kind="submission", row=row))
                continue

            submission_id = str(entry.get("id", ""))
            if submission_id != str(key):
                result.failures.append(
                    MappingError(
                        f"submission id {submission_id!r} does not match its key {key!r}",
                        kind="submission",
                        row=row,
                    )
                )
                continue

            students = []
            for user_id in entry.get("active_user_ids") or []:
                student = roster.get(str(user_id))
                if student is None:
                    logger.warning(f"Submission {submission_id}: student {user_id} not in roster, skipping")
                    continue
                students.append(student)

            submission = self._build_or_record(
                result,
                Submission,
                "submission",
                row,
                id=submission_id,
                assignment_id=assignment_id,
                students=tuple(students),
            )
            if submission is not None and dedup.admit(submission):
                result.items.append(submission)

        return result

    def _build_or_record(
        self, result: ListingResult, model: type[BaseModel], kind: str, row: int, **values: Any
    ) -> Optional[Any]:
        try:
            return model(**values)
        except ValidationError as e:
            result.failures.append(MappingError(_describe(e), kind=kind, row=row))
            return None

    def map_outline(self, outline: Any) -> list[Question]:
        """
        Flatten an assignment outline into leaf questions with dotted numbers.

        Groups contribute their index as a prefix: question 2 inside group 3
        becomes "3.2".

        Raises:
            MappingError: A node is malformed
        """
        if not isinstance(outline, list):
            raise MappingError("outline is not a list", kind="question")
        return list(self._walk_outline(outline, []))

    def _walk_outline(self, nodes: list[Any], prefix: list[str]) -> Iterator[Question]:
        for node in nodes:
            if not isinstance(node, Mapping):
                raise MappingError(f"outline node is not an object: {node!r}", kind="question")
            try:
                index = _positive_index(node.get("index"))
            except ValueError as e:
                raise MappingError(str(e), kind="question") from e

            number = prefix + [str(index)]
            if node.get("type") == "QuestionGroup":
                yield from self._walk_outline(node.get("children") or [], number)
            else:
                yield self._build(
                    Question,
                    EntityKind.QUESTION,
                    None,
                    number=".".join(number),
                    title=clean_whitespace(node.get("title")),
                )
