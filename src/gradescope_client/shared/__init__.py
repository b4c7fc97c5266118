"""
Shared Module - Configuration, logging, schemas, errors and utilities.
======================================================================

This module provides foundational components used across all other modules:

- config: Configuration loading and management
- logging: Structured logging setup
- errors: Exception taxonomy
- schemas: Pydantic entity models
- utils: Text, number and URL helpers
"""

from gradescope_client.shared.config import Settings, get_settings, reload_settings
from gradescope_client.shared.errors import (
    AuthError,
    AuthExpired,
    FatalHttpError,
    GradescopeError,
    MappingError,
    PaginationError,
    ParseError,
    RateLimited,
    ScrapeCancelled,
    TransientError,
    TransportError,
)
from gradescope_client.shared.logging import get_logger, setup_logging
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
    StudentSubmitter,
    Submission,
)
from gradescope_client.shared.utils import clean_whitespace, parse_number

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Logging
    "get_logger",
    "setup_logging",
    # Errors
    "GradescopeError",
    "AuthError",
    "TransportError",
    "TransientError",
    "RateLimited",
    "AuthExpired",
    "FatalHttpError",
    "PaginationError",
    "ParseError",
    "MappingError",
    "ScrapeCancelled",
    # Schemas
    "Role",
    "EntityKind",
    "Course",
    "Assignment",
    "RegradeRequest",
    "StudentSubmitter",
    "Submission",
    "Question",
    "ListingResult",
    "FailureRecord",
    "CourseSnapshot",
    # Utils
    "clean_whitespace",
    "parse_number",
]
