"""
CLI Main - Typer command-line interface.
========================================

Commands:
- courses: List courses on the account page
- assignments: List assignments of a course
- regrades: List regrade requests of an assignment
- submissions: List submissions of an assignment
- outline: List the questions of an assignment
- snapshot: Full pass for the ingestion job, written as JSON
- info: Show configuration
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gradescope_client.shared.errors import AuthError, GradescopeError
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.schemas import FailureRecord, ListingResult

logger = get_logger(__name__)

app = typer.Typer(
    name="gradescope",
    help="""📚 Gradescope Client - read courses, assignments and regrades

Logs in with GS_EMAIL / GS_PASSWORD (from the environment or a .env file)
and reads data from the Gradescope web pages. Nothing is ever written back.

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

COMMANDS OVERVIEW:

  courses                          List your courses
  assignments COURSE               List assignments of a course
  regrades COURSE ASSIGNMENT       List regrade requests
  submissions COURSE ASSIGNMENT    List submissions and their students
  outline COURSE ASSIGNMENT        List the questions of an assignment
  snapshot                         Courses, assignments and regrades as JSON
           -c, --course       Course to include (repeatable)
           -o, --output       Write JSON to a file instead of stdout
           --strict           Exit with code 1 if any row failed
  info                             Show configuration

COURSE can be an id, a short name ("EECS 203") or a full name.
ASSIGNMENT can be an id or a name.

Use 'gradescope <command> --help' for detailed command options.
""",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
# Errors and failed rows, kept off stdout so snapshot JSON can be piped
err_console = Console(stderr=True)

# Exit codes
EXIT_FAILURES = 1
EXIT_AUTH = 2


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """Gradescope Client."""
    from gradescope_client.shared.logging import setup_logging_from_settings

    setup_logging_from_settings(level="DEBUG" if verbose else None, force=True)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _open_client():
    """Create a client from the configured settings."""
    from gradescope_client.client.facade import GradescopeClient

    return GradescopeClient()


def _fail(error: GradescopeError) -> None:
    """Print an error and exit with the matching code."""
    if isinstance(error, AuthError):
        err_console.print(f"[red]Authentication failed:[/red] {escape(str(error))}")
        raise typer.Exit(EXIT_AUTH)
    err_console.print(f"[red]Error:[/red] {escape(str(error))}")
    raise typer.Exit(EXIT_FAILURES)


def _print_failures(failures: list[FailureRecord]) -> None:
    if not failures:
        return

    table = Table(title=f"⚠️ {len(failures)} failed rows", title_style="yellow")
    table.add_column("Type")
    table.add_column("Where")
    table.add_column("Row", justify="right")
    table.add_column("Field")
    table.add_column("Message")

    for failure in failures:
        table.add_row(
            failure.kind,
            failure.context or "",
            "" if failure.row is None else str(failure.row),
            failure.field or "",
            escape(failure.message),
        )
    err_console.print(table)


def _finish(result: ListingResult, strict: bool) -> None:
    failures = [FailureRecord.from_error(e) for e in result.failures]
    _print_failures(failures)
    if strict and failures:
        raise typer.Exit(EXIT_FAILURES)


StrictOption = typer.Option(False, "--strict", help="Exit with code 1 if any row failed.")


# ─────────────────────────────────────────────────────────────────────────────
# Listing Commands
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def courses(strict: bool = StrictOption):
    """
    📋 List courses on your account page.

    Shows each course's id, short name, name and your role in it.
    """
    try:
        with _open_client() as client:
            result = client.list_courses()
    except GradescopeError as e:
        _fail(e)

    table = Table(title="Courses")
    table.add_column("ID", style="cyan")
    table.add_column("Short Name")
    table.add_column("Name")
    table.add_column("Role")

    for course in result:
        table.add_row(course.id, course.short_name, course.name, course.role.value)

    console.print(table)
    _finish(result, strict)


@app.command()
def assignments(
    course: str = typer.Argument(..., help="Course id, short name or name."),
    strict: bool = StrictOption,
):
    """
    📝 List assignments of a course.

    Examples:
        gradescope assignments "EECS 203"
        gradescope assignments 1001
    """
    try:
        with _open_client() as client:
            selected = client.find_course(course)
            result = client.list_assignments(selected)
    except GradescopeError as e:
        _fail(e)

    table = Table(title=f"Assignments of {selected.short_name}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Points", justify="right")

    for assignment in result:
        table.add_row(assignment.id, assignment.name, f"{assignment.points:g}")

    console.print(table)
    _finish(result, strict)


@app.command()
def regrades(
    course: str = typer.Argument(..., help="Course id, short name or name."),
    assignment: str = typer.Argument(..., help="Assignment id or name."),
    strict: bool = StrictOption,
):
    """
    🔁 List regrade requests of an assignment.
    """
    try:
        with _open_client() as client:
            selected = client.find_assignment(client.find_course(course), assignment)
            result = client.list_regrade_requests(selected)
    except GradescopeError as e:
        _fail(e)

    table = Table(title=f"Regrade requests for {selected.name}")
    table.add_column("Student")
    table.add_column("Question", style="cyan")
    table.add_column("Title")
    table.add_column("Grader")
    table.add_column("Done", justify="center")

    for regrade in result:
        table.add_row(
            regrade.student_name,
            regrade.question_number,
            regrade.question_title,
            regrade.grader_name,
            "✓" if regrade.completed else "",
        )

    console.print(table)
    _finish(result, strict)


@app.command()
def submissions(
    course: str = typer.Argument(..., help="Course id, short name or name."),
    assignment: str = typer.Argument(..., help="Assignment id or name."),
    strict: bool = StrictOption,
):
    """
    📨 List submissions of an assignment and the students on each.
    """
    try:
        with _open_client() as client:
            selected = client.find_assignment(client.find_course(course), assignment)
            result = client.list_submissions(selected)
    except GradescopeError as e:
        _fail(e)

    table = Table(title=f"Submissions for {selected.name}")
    table.add_column("ID", style="cyan")
    table.add_column("Students")
    table.add_column("Emails")

    for submission in result:
        table.add_row(
            submission.id,
            ", ".join(s.name for s in submission.students),
            ", ".join(s.email for s in submission.students if s.email),
        )

    console.print(table)
    _finish(result, strict)


@app.command()
def outline(
    course: str = typer.Argument(..., help="Course id, short name or name."),
    assignment: str = typer.Argument(..., help="Assignment id or name."),
):
    """
    🧩 List the questions of an assignment's outline.
    """
    try:
        with _open_client() as client:
            selected = client.find_assignment(client.find_course(course), assignment)
            questions = client.get_outline(selected)
    except GradescopeError as e:
        _fail(e)

    table = Table(title=f"Outline of {selected.name}")
    table.add_column("Number", style="cyan")
    table.add_column("Title")

    for question in questions:
        table.add_row(question.number, question.title)

    console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def snapshot(
    course: Optional[list[str]] = typer.Option(
        None,
        "--course", "-c",
        help="Course to include (id, short name or name). Repeatable. Omit for all instructor courses.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the snapshot JSON to this file instead of stdout.",
    ),
    strict: bool = StrictOption,
):
    """
    📦 Scrape courses, assignments and regrades in one pass.

    The JSON has the keys courses, assignments, regrades and failures.

    Examples:
        gradescope snapshot -o snapshot.json
        gradescope snapshot -c "EECS 203" -c "EECS 280" --strict
    """
    from gradescope_client.shared.utils import save_model_to_json

    try:
        with _open_client() as client:
            result = client.snapshot(course or None)
            stats = client.transport.get_stats()
            logins = client.sessions.login_count
    except GradescopeError as e:
        _fail(e)

    if output:
        save_model_to_json(output, result)
        console.print(Panel(
            f"Courses: {len(result.courses)}\n"
            f"Assignments: {len(result.assignments)}\n"
            f"Regrades: {len(result.regrades)}\n"
            f"Failures: {len(result.failures)}\n"
            f"Requests: {stats.total_requests} ({stats.success_rate:.0%} ok, "
            f"{stats.retries} retries, {logins} logins)\n"
            f"Output: {output}",
            title="📦 Snapshot",
        ))
    else:
        typer.echo(result.model_dump_json(indent=2))

    _print_failures(result.failures)
    if strict and result.failures:
        raise typer.Exit(EXIT_FAILURES)


# ─────────────────────────────────────────────────────────────────────────────
# Info Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def info():
    """
    ℹ️ Show configuration.

    Displays:
      • Version information
      • Source URL and credentials (password hidden)
      • Transport, pagination and concurrency settings

    Useful for debugging and verifying setup.
    """
    from gradescope_client import __version__
    from gradescope_client.shared.config import DEFAULT_CONFIG_FILE, get_settings

    settings = get_settings()

    console.print(Panel(
        f"[bold]Gradescope Client[/bold]\n"
        f"Version: {__version__}\n"
        f"Config: {DEFAULT_CONFIG_FILE}",
        title="ℹ️ Info",
    ))

    table = Table(title="Settings")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Base URL", settings.source.base_url)
    table.add_row("Email", settings.gs_email or "[dim]not set[/dim]")
    table.add_row("Password", "********" if settings.gs_password.get_secret_value() else "[dim]not set[/dim]")
    table.add_row("Timeout", f"{settings.transport.timeout}s")
    table.add_row("Max retries", str(settings.transport.max_retries))
    table.add_row("Rate limit", f"{settings.transport.rate_limit}s between requests")
    table.add_row("Request budget", str(settings.transport.max_requests or "unlimited"))
    table.add_row("Max pages", str(settings.pagination.max_pages))
    table.add_row("Workers", str(settings.concurrency.max_workers))
    table.add_row("Log level", settings.get_effective_log_level())

    console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def cli():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    cli()
