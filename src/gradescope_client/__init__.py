"""
Gradescope Client - Read-only scraping client for Gradescope
============================================================

Logs in to Gradescope with an instructor account and reads structured
data out of its HTML pages:

- Courses on the account page (with the user's role in each)
- Assignments of a course, with maximum points
- Regrade requests of an assignment
- Submissions and their students, and assignment outlines

Results come back as immutable Pydantic entities together with any rows
that failed to parse or map, so a downstream ingestion job can decide
whether a partial listing is acceptable.
"""

__version__ = "0.1.0"
__author__ = "Gradescope Client Team"
__license__ = "MIT"

# Public API - lazy imports to avoid circular dependencies and speed up startup
__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Main modules (imported on demand)
    "shared",
    "scraping",
    "client",
    "cli",
]
