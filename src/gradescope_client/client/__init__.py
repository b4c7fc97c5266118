"""
Client Module - Public entry point for listing Gradescope data.
===============================================================

- facade: GradescopeClient with the listing, lookup and snapshot operations
- selectors: Picking a course or assignment by id or name
"""

from gradescope_client.client.facade import GradescopeClient, take_snapshot
from gradescope_client.client.selectors import AssignmentSelector, CourseSelector

__all__ = [
    "GradescopeClient",
    "take_snapshot",
    "CourseSelector",
    "AssignmentSelector",
]
