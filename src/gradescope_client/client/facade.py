"""
Client Module - High-level listing operations.
==============================================

``GradescopeClient`` composes the scraping layers for each listing:

    SessionManager -> Transport -> parser -> EntityMapper -> PaginationWalker

Every listing returns only once the whole collection is assembled, as a
``ListingResult`` holding the entities that mapped plus the rows that did
not. Independent listings (assignments of several courses, regrades of
several assignments) run on a bounded thread pool sharing one session.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from gradescope_client.shared.config import Settings, get_settings
from gradescope_client.shared.errors import (
    AuthError,
    GradescopeError,
    MappingError,
    ScrapeCancelled,
)
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.schemas import (
    Assignment,
    Course,
    CourseSnapshot,
    EntityKind,
    FailureRecord,
    ListingResult,
    Question,
    RegradeRequest,
    Role,
    Submission,
)
from gradescope_client.scraping.mapper import Deduplicator, EntityMapper, ScrapeContext
from gradescope_client.scraping.pagination import PaginationWalker, ResourceDescriptor
from gradescope_client.scraping.parser import extract_row
from gradescope_client.scraping.session import Credentials, SessionManager
from gradescope_client.scraping.shapes import (
    ASSIGNMENTS_PAGE,
    COURSES_PAGE,
    OUTLINE_PAGE,
    REGRADES_PAGE,
    SUBMISSIONS_PAGE,
)
from gradescope_client.scraping.transport import GsRequest, Transport
from gradescope_client.client.selectors import AssignmentSelector, CourseSelector

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

CourseRef = Union[Course, str]
AssignmentRef = Union[Assignment, str]


class GradescopeClient:
    """
    Read-only client for one Gradescope account.

    Example:
        >>> with GradescopeClient() as client:
        ...     courses = client.list_courses()
        ...     for course in courses:
        ...         print(course.short_name, len(client.list_assignments(course)))
    """

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Initialize the client.

        Args:
            credentials: Login credentials (defaults to GS_EMAIL/GS_PASSWORD)
            settings: Settings to use (defaults to the global settings)
            transport: Transport to use (tests inject one with a fake HTTP layer)
            cancel: Set to stop listings between page fetches
        """
        self.settings = settings or get_settings()
        self.credentials = credentials or Credentials.from_settings(self.settings)
        self.transport = transport or Transport(self.settings)
        self.sessions = SessionManager(self.credentials, self.transport, self.settings)
        self.context = ScrapeContext()
        self.mapper = EntityMapper(self.context, self.settings.source.base_url)
        self.cancel = cancel or threading.Event()
        # Abort event of the fan-out the current worker thread runs for
        self._fan_out_state = threading.local()
        self.max_workers = self.settings.concurrency.max_workers

        # Lazy listings triggered by reference checks run one at a time
        self._lazy_lock = threading.RLock()
        self._courses_listed = False
        self._assignments_listed: set[str] = set()

    def login(self) -> None:
        """Authenticate now instead of on the first request."""
        self.sessions.session()

    # ─────────────────────────────────────────────────────────────────────────
    # Listing Core
    # ─────────────────────────────────────────────────────────────────────────

    def _walker(self) -> PaginationWalker:
        abort = getattr(self._fan_out_state, "abort", None)
        return PaginationWalker(self.sessions.send, self.settings, self.cancel, abort=abort)

    def _collect(
        self,
        resource: ResourceDescriptor,
        kind: EntityKind,
        parent_id: Optional[str] = None,
    ) -> ListingResult[Any]:
        """Walk a listing and map every row, collecting per-row failures."""
        result: ListingResult[Any] = ListingResult()
        dedup = Deduplicator(kind)
        shape = resource.shape

        for row, node in enumerate(self._walker().walk(resource)):
            extraction = extract_row(node, shape.fields, shape.name, row)
            if not extraction.ok:
                for error in extraction.errors:
                    logger.warning(f"{resource.name}: {error}")
                result.failures.extend(extraction.errors)
                continue

            fragment = dict(extraction.values)
            if node.group is not None:
                fragment["group"] = node.group

            try:
                entity = self.mapper.map(fragment, kind, parent_id=parent_id, row=row)
            except MappingError as e:
                logger.warning(f"{resource.name}: {e}")
                result.failures.append(e)
                continue

            if dedup.admit(entity):
                result.items.append(entity)

        logger.info(
            f"{resource.name}: {len(result.items)} {kind.value} entities, "
            f"{len(result.failures)} failures, {dedup.dropped} duplicates dropped"
        )
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Reference Resolution
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_courses(self) -> None:
        with self._lazy_lock:
            if not self._courses_listed:
                self.list_courses()

    def _ensure_assignments(self, course: Course) -> None:
        with self._lazy_lock:
            if course.id not in self._assignments_listed:
                self.list_assignments(course)

    def _resolve_course(self, course: CourseRef) -> Course:
        course_id = course.id if isinstance(course, Course) else str(course)
        found = self.context.course(course_id)
        if found is None:
            self._ensure_courses()
            found = self.context.course(course_id)
        if found is None:
            raise MappingError(f"unknown course {course_id!r}", kind="course", referential=True)
        return found

    def _resolve_assignment(self, assignment: AssignmentRef) -> Assignment:
        if isinstance(assignment, Assignment):
            found = self.context.assignment(assignment.id)
            if found is None:
                self._ensure_assignments(self._resolve_course(assignment.course_id))
                found = self.context.assignment(assignment.id)
            assignment_id = assignment.id
        else:
            assignment_id = str(assignment)
            found = self.context.assignment(assignment_id)

        if found is None:
            raise MappingError(
                f"unknown assignment {assignment_id!r}", kind="assignment", referential=True
            )
        return found

    # ─────────────────────────────────────────────────────────────────────────
    # Listings
    # ─────────────────────────────────────────────────────────────────────────

    def list_courses(self) -> ListingResult[Course]:
        """
        List the courses on the account page.

        Returns:
            ListingResult of Course (role taken from the list heading)
        """
        resource = ResourceDescriptor(
            name="courses",
            request=GsRequest.html(self.settings.source.account_path),
            shape=COURSES_PAGE,
        )
        result = self._collect(resource, EntityKind.COURSE)
        for course in result:
            self.context.add_course(course)
        self._courses_listed = True
        return result

    def list_assignments(self, course: CourseRef) -> ListingResult[Assignment]:
        """
        List the assignments of a course.

        Args:
            course: Course entity or course id

        Raises:
            MappingError: The course is not among the listed courses
        """
        course = self._resolve_course(course)
        resource = ResourceDescriptor(
            name=f"assignments of {course.short_name or course.id}",
            request=GsRequest.html(f"/courses/{course.id}/assignments"),
            shape=ASSIGNMENTS_PAGE,
        )
        result = self._collect(resource, EntityKind.ASSIGNMENT, parent_id=course.id)
        for assignment in result:
            self.context.add_assignment(assignment)
        self._assignments_listed.add(course.id)
        return result

    def list_regrade_requests(self, assignment: AssignmentRef) -> ListingResult[RegradeRequest]:
        """
        List the regrade requests of an assignment.

        Args:
            assignment: Assignment entity or assignment id

        Raises:
            MappingError: The assignment is not among the listed assignments
        """
        assignment = self._resolve_assignment(assignment)
        resource = ResourceDescriptor(
            name=f"regrades of {assignment.name or assignment.id}",
            request=GsRequest.html(
                f"/courses/{assignment.course_id}/assignments/{assignment.id}/regrade_requests"
            ),
            shape=REGRADES_PAGE,
        )
        return self._collect(resource, EntityKind.REGRADE_REQUEST, parent_id=assignment.id)

    def list_submissions(self, assignment: AssignmentRef) -> ListingResult[Submission]:
        """List the submissions of an assignment with their active students."""
        assignment = self._resolve_assignment(assignment)
        resource = ResourceDescriptor(
            name=f"submissions of {assignment.name or assignment.id}",
            request=GsRequest.html(
                f"/courses/{assignment.course_id}/assignments/{assignment.id}/submissions"
            ),
            shape=SUBMISSIONS_PAGE,
        )

        result: ListingResult[Submission] = ListingResult()
        dedup = Deduplicator(EntityKind.SUBMISSION)
        for page in self._walker().pages(resource):
            mapped = self.mapper.map_submissions(page.data.data, assignment.id)
            result.failures.extend(mapped.failures)
            result.items.extend(s for s in mapped.items if dedup.admit(s))

        logger.info(f"{resource.name}: {len(result.items)} submissions, {len(result.failures)} failures")
        return result

    def get_outline(self, assignment: AssignmentRef) -> list[Question]:
        """
        Get the leaf questions of an assignment's outline.

        Raises:
            MappingError: The outline is malformed
        """
        assignment = self._resolve_assignment(assignment)
        resource = ResourceDescriptor(
            name=f"outline of {assignment.name or assignment.id}",
            request=GsRequest.html(
                f"/courses/{assignment.course_id}/assignments/{assignment.id}/outline/edit"
            ),
            shape=OUTLINE_PAGE,
        )

        questions: list[Question] = []
        for page in self._walker().pages(resource):
            questions.extend(self.mapper.map_outline([row.data for row in page.rows]))
        return questions

    # ─────────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────────

    def find_course(self, selector: str) -> Course:
        """
        Find a course by id, short name or name.

        Raises:
            MappingError: No course matches
        """
        self._ensure_courses()
        course = CourseSelector(selector).select(self.context.courses)
        if course is None:
            raise MappingError(f"no course matches {selector!r}", kind="course", referential=True)
        return course

    def find_assignment(self, course: CourseRef, selector: str) -> Assignment:
        """
        Find an assignment of a course by id or name.

        Raises:
            MappingError: No assignment matches
        """
        course = self._resolve_course(course)
        self._ensure_assignments(course)
        assignment = AssignmentSelector(selector).select(self.context.assignments_of(course.id))
        if assignment is None:
            raise MappingError(
                f"no assignment of {course.short_name} matches {selector!r}",
                kind="assignment",
                referential=True,
            )
        return assignment

    # ─────────────────────────────────────────────────────────────────────────
    # Fan-out
    # ─────────────────────────────────────────────────────────────────────────

    def _fan_out(
        self,
        items: Iterable[T],
        listing: Callable[[T], ListingResult[R]],
        key: Callable[[T], str],
    ) -> dict[str, ListingResult[R]]:
        """
        Run one listing per item on the worker pool, keyed in input order.

        A listing that fails outright is recorded as a result holding only
        that error. Authentication failure and cancellation stop the other
        listings of this fan-out; the client's own ``cancel`` event is left
        alone so later calls still run.
        """
        items = list(items)
        results: dict[str, ListingResult[R]] = {}
        abort = threading.Event()

        def run(item: T) -> ListingResult[R]:
            self._fan_out_state.abort = abort
            try:
                return listing(item)
            finally:
                self._fan_out_state.abort = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [(key(item), executor.submit(run, item)) for item in items]
            try:
                for item_key, future in futures:
                    try:
                        results[item_key] = future.result()
                    except (AuthError, ScrapeCancelled):
                        raise
                    except GradescopeError as e:
                        logger.error(f"Listing for {item_key} failed: {e}")
                        results[item_key] = ListingResult(failures=[e])
            except (AuthError, ScrapeCancelled):
                abort.set()
                for _, future in futures:
                    future.cancel()
                raise

        return results

    def list_assignments_for(self, courses: Iterable[CourseRef]) -> dict[str, ListingResult[Assignment]]:
        """List assignments of several courses concurrently, keyed by course id."""
        resolved = [self._resolve_course(course) for course in courses]
        return self._fan_out(resolved, self.list_assignments, key=lambda c: c.id)

    def list_regrades_for(
        self, assignments: Iterable[AssignmentRef]
    ) -> dict[str, ListingResult[RegradeRequest]]:
        """List regrades of several assignments concurrently, keyed by assignment id."""
        resolved = [self._resolve_assignment(assignment) for assignment in assignments]
        return self._fan_out(resolved, self.list_regrade_requests, key=lambda a: a.id)

    def snapshot(self, course_selectors: Optional[list[str]] = None) -> CourseSnapshot:
        """
        Scrape courses, their assignments and all regrades in one pass.

        Args:
            course_selectors: Courses to include (id, short name or name).
                Defaults to every course the user is an instructor of.

        Returns:
            CourseSnapshot with entities and every failure encountered
        """
        failures: list[GradescopeError] = []

        courses_result = self.list_courses()
        failures.extend(courses_result.failures)

        if course_selectors:
            courses = []
            for selector in course_selectors:
                try:
                    course = self.find_course(selector)
                except MappingError as e:
                    failures.append(e)
                    continue
                if course not in courses:
                    courses.append(course)
        else:
            courses = [c for c in courses_result if c.role == Role.INSTRUCTOR]

        assignments: list[Assignment] = []
        for listing in self.list_assignments_for(courses).values():
            assignments.extend(listing.items)
            failures.extend(listing.failures)

        regrades: list[RegradeRequest] = []
        for listing in self.list_regrades_for(assignments).values():
            regrades.extend(listing.items)
            failures.extend(listing.failures)

        logger.info(
            f"Snapshot: {len(courses)} courses, {len(assignments)} assignments, "
            f"{len(regrades)} regrades, {len(failures)} failures"
        )
        return CourseSnapshot(
            courses=courses,
            assignments=assignments,
            regrades=regrades,
            failures=[FailureRecord.from_error(e) for e in failures],
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def close(self) -> None:
        """Close the client's sessions."""
        self.sessions.close()

    def __enter__(self) -> "GradescopeClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Context manager exit."""
        self.close()


# ─────────────────────────────────────────────────────────────────────────────
# Convenience Functions
# ─────────────────────────────────────────────────────────────────────────────


def take_snapshot(course_selectors: Optional[list[str]] = None) -> CourseSnapshot:
    """
    Convenience function for a full scrape with configured credentials.

    Args:
        course_selectors: Courses to include (defaults to instructor courses)

    Returns:
        CourseSnapshot
    """
    with GradescopeClient() as client:
        return client.snapshot(course_selectors)
