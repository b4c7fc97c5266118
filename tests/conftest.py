"""
Pytest Configuration and Fixtures.
===================================

Shared fixtures for all test modules:
- HTML page builders for the source's pages
- A scripted fake Gradescope site behind a fake HTTP session
- Settings with zero waits
- Ready-made transport, session manager and client
"""

import html
import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator, Optional
from urllib.parse import urlparse

import pytest
import requests

BASE_URL = "https://www.gradescope.com"
EMAIL = "prof@example.edu"
PASSWORD = "hunter2"
TOKEN = "tok-123"


# ─────────────────────────────────────────────────────────────────────────────
# Page Builders
# ─────────────────────────────────────────────────────────────────────────────


LOGIN_HTML = f"""
<!DOCTYPE html>
<html>
<head><title>Log In | Gradescope</title></head>
<body>
  <form action="/login" method="post">
    <input type="hidden" name="authenticity_token" value="{TOKEN}">
    <input type="email" name="session[email]">
    <input type="password" name="session[password]">
    <input type="submit" name="commit" value="Log In">
  </form>
</body>
</html>
"""


def course_box(course_id: str, short_name: str, name: str) -> str:
    return f"""
      <a class="courseBox" href="/courses/{course_id}">
        <h3 class="courseBox--shortname">{short_name}</h3>
        <div class="courseBox--name">{name}</div>
        <div class="courseBox--assignments">3 assignments</div>
      </a>"""


def account_page(groups: dict[str, list[tuple[str, str, str]]]) -> str:
    """Account page with one heading and course list per group."""
    sections = []
    for heading, courses in groups.items():
        boxes = "".join(course_box(*course) for course in courses)
        sections.append(
            f"""
    <h1 class="pageHeading">{heading}</h1>
    <div class="courseList">
      <div class="courseList--term">Fall 2024</div>
      <div class="courseList--coursesForTerm">{boxes}
      </div>
    </div>"""
        )
    return f"""
<!DOCTYPE html>
<html>
<head><title>Your Courses | Gradescope</title></head>
<body>
  <div id="main-content">{''.join(sections)}
  </div>
  <a href="/logout">Log Out</a>
</body>
</html>
"""


def react_page(component: str, props: Any, extra: str = "") -> str:
    """Page with one React mount point carrying JSON props."""
    encoded = html.escape(json.dumps(props), quote=True)
    return f"""
<!DOCTYPE html>
<html>
<body>
  <div id="main-content">
    <div data-react-class="{component}" data-react-props="{encoded}"></div>
  </div>
  {extra}
</body>
</html>
"""


def assignments_page(rows: list[tuple[str, str, Any]]) -> str:
    """Assignments page from (id, title, total_points) rows."""
    table_data = [
        {"id": f"assignment_{assignment_id}", "title": title, "total_points": points}
        for assignment_id, title, points in rows
    ]
    return react_page("AssignmentsTable", {"table_data": table_data})


def regrade_row(
    student: str,
    question: str,
    grader: str = "",
    completed: bool = False,
    link: Optional[str] = "/courses/1001/questions/7/submissions/9/grade",
) -> str:
    check = '<i class="fa fa-check"></i>' if completed else ""
    anchor = f'<a href="{link}">Review</a>' if link else ""
    return (
        f"<tr><td>{student}</td><td>001</td><td>{question}</td>"
        f"<td>{grader}</td><td>{check}</td><td>{anchor}</td></tr>"
    )


def pagination(next_page: Optional[int], path: str = "") -> str:
    """will_paginate style control; None renders the disabled last-page marker."""
    if next_page is None:
        return '<div class="pagination"><span class="next_page disabled">Next →</span></div>'
    return (
        f'<div class="pagination"><a class="next_page" rel="next" '
        f'href="{path}?page={next_page}">Next →</a></div>'
    )


def regrades_page(rows: list[str], footer: str = "") -> str:
    """Regrade requests page from rendered rows."""
    return f"""
<!DOCTYPE html>
<html>
<body>
  <table class="js-regradeRequestsTable">
    <thead>
      <tr><th>Student</th><th>Sections</th><th>Question</th><th>Grader</th><th>Completed</th><th></th></tr>
    </thead>
    <tbody>
      {''.join(rows)}
    </tbody>
  </table>
  {footer}
</body>
</html>
"""


# ─────────────────────────────────────────────────────────────────────────────
# Fake Site
# ─────────────────────────────────────────────────────────────────────────────


def make_response(
    status: int = 200,
    body: str = "",
    url: str = BASE_URL,
    headers: Optional[dict[str, str]] = None,
    content_type: str = "text/html; charset=utf-8",
) -> requests.Response:
    """Build a real ``requests.Response`` without touching the network."""
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    response.encoding = "utf-8"
    response.url = url
    response.headers["Content-Type"] = content_type
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response


class FakeHttp:
    """Stands in for ``requests.Session``; every request goes to the fake site."""

    def __init__(self, site: "FakeGradescope"):
        self.site = site
        self.headers: dict[str, str] = {}
        self.closed = False
        site.opened.append(self)

    def request(self, method, url, params=None, data=None, headers=None, timeout=None, allow_redirects=True):
        return self.site.handle(self, method, url, params or {}, data or {})

    def close(self) -> None:
        self.closed = True


class FakeGradescope:
    """
    Scripted Gradescope: serves registered pages to logged-in sessions.

    Pages are keyed by (path, page number). Scripted failures are returned
    before the page, in order. ``expire_at`` logs every session out the
    first time that page is requested.
    """

    def __init__(self):
        self.pages: dict[tuple[str, int], str] = {}
        self.failures: dict[tuple[str, int], list[tuple[int, dict[str, str]]]] = {}
        self.expire_at: set[tuple[str, int]] = set()
        self.reject_logins = 0
        # Statuses returned to login POSTs before the credentials are checked
        self.login_post_failures: list[int] = []
        self.logins = 0
        self.requests: list[tuple[str, str, int]] = []
        self._valid: set[int] = set()
        self.opened: list[FakeHttp] = []

    def add_page(self, path: str, body: str, page: int = 1) -> None:
        self.pages[(path, page)] = body

    def fail(self, path: str, *statuses: int, page: int = 1, headers: Optional[dict[str, str]] = None) -> None:
        self.failures.setdefault((path, page), []).extend((s, headers or {}) for s in statuses)

    def content_requests(self, path: Optional[str] = None) -> list[tuple[str, str, int]]:
        """Requests other than the login flow."""
        return [r for r in self.requests if r[1] != "/login" and (path is None or r[1] == path)]

    def handle(self, http: FakeHttp, method: str, url: str, params: dict, data: dict) -> requests.Response:
        path = urlparse(url).path
        page = int(params.get("page", 1))
        self.requests.append((method, path, page))

        if path == "/login":
            return self._login(http, method, url, data)

        scripted = self.failures.get((path, page))
        if scripted:
            status, headers = scripted.pop(0)
            return make_response(status, "", url, headers)

        if (path, page) in self.expire_at:
            self.expire_at.discard((path, page))
            self._valid.clear()

        if id(http) not in self._valid:
            redirect = make_response(302, "", url, {"Location": "/login"})
            login = make_response(200, LOGIN_HTML, f"{BASE_URL}/login")
            login.history = [redirect]
            return login

        body = self.pages.get((path, page))
        if body is None:
            return make_response(404, "Not Found", url)
        return make_response(200, body, url)

    def _login(self, http: FakeHttp, method: str, url: str, data: dict) -> requests.Response:
        if method == "GET":
            return make_response(200, LOGIN_HTML, url)

        if self.login_post_failures:
            return make_response(self.login_post_failures.pop(0), "", url)

        accepted = (
            data.get("session[email]") == EMAIL
            and data.get("session[password]") == PASSWORD
            and data.get("authenticity_token") == TOKEN
        )
        if self.reject_logins > 0:
            self.reject_logins -= 1
            accepted = False

        if not accepted:
            # Gradescope re-renders the form on bad credentials
            return make_response(200, LOGIN_HTML, url)

        self.logins += 1
        self._valid.add(id(http))
        return make_response(302, "", url, {"Location": f"{BASE_URL}/account"})


# ─────────────────────────────────────────────────────────────────────────────
# Standard Scenario
# ─────────────────────────────────────────────────────────────────────────────

REGRADES_PATH = "/courses/1001/assignments/501/regrade_requests"


@pytest.fixture
def site() -> FakeGradescope:
    """
    Two instructor courses (EECS 203 with two assignments, EECS 280 with
    none), one student course, and three regrades on EECS 203 Homework 1.
    """
    site = FakeGradescope()
    site.add_page(
        "/account",
        account_page(
            {
                "Instructor Courses": [
                    ("1001", "EECS 203", "Discrete Mathematics"),
                    ("1002", "EECS 280", "Programming and Introductory Data Structures"),
                ],
                "Student Courses": [("2001", "MATH 215", "Calculus III")],
            }
        ),
    )
    site.add_page(
        "/courses/1001/assignments",
        assignments_page([("501", "Homework 1", "10.0"), ("502", "Exam 1", 1250)]),
    )
    site.add_page("/courses/1002/assignments", assignments_page([]))
    site.add_page(
        REGRADES_PATH,
        regrades_page(
            [
                regrade_row("Ada Lovelace", "1.2: Induction", "Grace Hopper", completed=True),
                regrade_row("Alan Turing", "2: Pigeonhole", ""),
                regrade_row("Ada Lovelace", "3a: Graphs", "Grace Hopper"),
            ]
        ),
    )
    site.add_page("/courses/1001/assignments/502/regrade_requests", regrades_page([]))
    return site


# ─────────────────────────────────────────────────────────────────────────────
# Component Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings():
    """Settings with credentials and no waiting."""
    from gradescope_client.shared.config import ConcurrencyConfig, Settings, TransportConfig

    return Settings(
        gs_email=EMAIL,
        gs_password=PASSWORD,
        transport=TransportConfig(
            max_retries=3,
            retry_min_wait=0.0,
            retry_max_wait=0.0,
            rate_limit=0.0,
            rate_limit_backoff=0.0,
        ),
        concurrency=ConcurrencyConfig(max_workers=2),
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Records every sleep the transport asks for."""
    return []


@pytest.fixture
def transport(settings, site: FakeGradescope, sleeps: list[float]):
    from gradescope_client.scraping.transport import Transport

    return Transport(settings, http_factory=lambda: FakeHttp(site), sleep=sleeps.append)


@pytest.fixture
def credentials():
    from gradescope_client.scraping.session import Credentials

    return Credentials(email=EMAIL, password=PASSWORD)


@pytest.fixture
def manager(credentials, transport, settings):
    from gradescope_client.scraping.session import SessionManager

    return SessionManager(credentials, transport, settings)


@pytest.fixture
def client(credentials, settings, transport):
    from gradescope_client.client.facade import GradescopeClient

    with GradescopeClient(credentials=credentials, settings=settings, transport=transport) as client:
        yield client


@pytest.fixture
def page_builders() -> dict[str, Callable[..., str]]:
    """Page builder functions, for tests that script their own site."""
    return {
        "account": account_page,
        "assignments": assignments_page,
        "regrades": regrades_page,
        "regrade_row": regrade_row,
        "pagination": pagination,
        "react": react_page,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture(autouse=True)
def reset_settings():
    """Clear the cached global settings between tests."""
    from gradescope_client.shared.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def response_factory() -> Callable[..., requests.Response]:
    """Builds offline ``requests.Response`` objects."""
    return make_response
