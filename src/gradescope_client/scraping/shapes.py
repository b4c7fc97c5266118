"""
Page shapes of the source application.

Each shape names the anchors a page must carry and where its rows and
fields live. Keeping them in one place means a markup change on the
source is a one-line edit here.
"""

from typing import Any

from gradescope_client.shared.utils import clean_whitespace, last_path_segment, parse_number
from gradescope_client.scraping.parser import FieldQuery, PageShape


def assignment_id(value: Any) -> str:
    """Assignment rows carry ids like "assignment_123"; the id is what follows."""
    text = str(value).strip()
    if text.startswith("assignment_"):
        text = text[len("assignment_"):]
    if not text:
        raise ValueError("empty assignment id")
    return text


def link_id(href: Any) -> str:
    """Id taken from the last path segment of a link."""
    segment = last_path_segment(str(href))
    if not segment:
        raise ValueError(f"no id in link {href!r}")
    return segment


def question_label(value: Any) -> tuple[str, str]:
    """Split "3.2: Title" into ("3.2", "Title")."""
    text = clean_whitespace(str(value))
    number, sep, title = text.partition(":")
    number = number.strip()
    if not sep or not number:
        raise ValueError(f"expected 'number: title', got {text!r}")
    return number, title.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Login
# ─────────────────────────────────────────────────────────────────────────────

LOGIN_FORM_TOKEN = "form[action='/login'] input[name=authenticity_token]"

LOGIN_TOKEN = FieldQuery(name="authenticity_token", css=LOGIN_FORM_TOKEN, attribute="value")

LOGIN_PAGE = PageShape(name="login", anchors=(LOGIN_FORM_TOKEN,))


# ─────────────────────────────────────────────────────────────────────────────
# Listings
# ─────────────────────────────────────────────────────────────────────────────

# Account page: a heading per role followed by a list of course boxes
COURSES_PAGE = PageShape(
    name="courses",
    anchors=(".pageHeading",),
    groups=".pageHeading",
    group_container=".courseList",
    rows=".courseBox",
    fields=(
        FieldQuery(name="id", css="&, a[href]", attribute="href", convert=link_id),
        FieldQuery(name="short_name", css=".courseBox--shortname"),
        FieldQuery(name="name", css=".courseBox--name", required=False),
    ),
)

ASSIGNMENTS_PAGE = PageShape(
    name="assignments",
    props="[data-react-class=AssignmentsTable]",
    props_rows="table_data",
    fields=(
        FieldQuery(name="id", key="id", convert=assignment_id),
        FieldQuery(name="name", key="title"),
        FieldQuery(name="points", key="total_points", convert=parse_number),
    ),
)

REGRADES_TABLE = "table.js-regradeRequestsTable"

REGRADES_PAGE = PageShape(
    name="regrades",
    anchors=(REGRADES_TABLE,),
    header=f"{REGRADES_TABLE} > thead th",
    rows=f"{REGRADES_TABLE} > tbody > tr",
    fields=(
        FieldQuery(name="student", column="student", position=0),
        FieldQuery(name="question", column="question", position=2, convert=question_label),
        FieldQuery(name="grader", column="grader", position=3, required=False),
        FieldQuery(name="completed", column="completed", position=4, presence=True),
        FieldQuery(name="link", position=-1, leaf="a", attribute="href", required=False),
    ),
)

SUBMISSIONS_PAGE = PageShape(
    name="submissions",
    props="[data-react-class=SubmissionsManager]",
)

OUTLINE_PAGE = PageShape(
    name="outline",
    props="[data-react-class=AssignmentOutline]",
    props_rows="outline",
)
