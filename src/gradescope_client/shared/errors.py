"""
Errors Module - Exception taxonomy for the scraping client.
===========================================================

The hierarchy lets the transport decide what to retry by type alone
(``tenacity`` retries on ``TransientError``) and lets listings collect
row-scoped failures (``ParseError``, ``MappingError``) next to the
entities that did map, instead of aborting the whole operation.

    GradescopeError
    ├── AuthError            fatal: bad credentials or login flow changed
    ├── TransportError
    │   ├── TransientError   retried with exponential backoff
    │   │   └── RateLimited  retried with a longer, hinted backoff
    │   ├── AuthExpired      surfaced so the session can be refreshed
    │   └── FatalHttpError   never retried
    ├── PaginationError      ambiguous continuation signal (fail closed)
    ├── ParseError           field/row scoped extraction failure
    ├── MappingError         row scoped invariant or reference failure
    └── ScrapeCancelled
"""

from typing import Optional


class GradescopeError(Exception):
    """Base exception for all client errors."""


class AuthError(GradescopeError):
    """Authentication failed and will not succeed on retry."""


# ─────────────────────────────────────────────────────────────────────────────
# Transport Errors
# ─────────────────────────────────────────────────────────────────────────────


class TransportError(GradescopeError):
    """Base class for errors raised while issuing a request."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TransientError(TransportError):
    """Temporary failure (network error, timeout, 5xx) that may succeed on retry."""


class RateLimited(TransientError):
    """
    The source explicitly throttled us (HTTP 429).

    Args:
        retry_after: Seconds the source asked us to wait, if it said so
    """

    def __init__(self, message: str, url: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, url)
        self.retry_after = retry_after


class AuthExpired(TransportError):
    """The held session is no longer accepted by the source."""


class FatalHttpError(TransportError):
    """Non-retryable HTTP failure (404, malformed request, exhausted budget)."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, url)
        self.status_code = status_code


# ─────────────────────────────────────────────────────────────────────────────
# Structural Errors
# ─────────────────────────────────────────────────────────────────────────────


class PaginationError(GradescopeError):
    """The next-page signal was missing, malformed or did not advance."""

    def __init__(self, message: str, resource: Optional[str] = None, page: Optional[int] = None):
        super().__init__(message)
        self.resource = resource
        self.page = page


class ParseError(GradescopeError):
    """
    A required anchor or field could not be extracted.

    ``field`` and ``row`` are set when the failure is scoped to one field of
    one record; both are None when a whole page failed its shape check.
    """

    def __init__(
        self,
        message: str,
        shape: Optional[str] = None,
        field: Optional[str] = None,
        row: Optional[int] = None,
    ):
        super().__init__(message)
        self.shape = shape
        self.field = field
        self.row = row

    def __str__(self) -> str:
        location = []
        if self.shape:
            location.append(self.shape)
        if self.row is not None:
            location.append(f"row {self.row}")
        if self.field:
            location.append(f"field '{self.field}'")
        prefix = f"[{', '.join(location)}] " if location else ""
        return f"{prefix}{self.args[0]}"


class MappingError(GradescopeError):
    """A parsed record violated an entity invariant or referenced an unknown entity."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        row: Optional[int] = None,
        referential: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.row = row
        self.referential = referential

    def __str__(self) -> str:
        location = []
        if self.kind:
            location.append(self.kind)
        if self.row is not None:
            location.append(f"row {self.row}")
        prefix = f"[{', '.join(location)}] " if location else ""
        return f"{prefix}{self.args[0]}"


class ScrapeCancelled(GradescopeError):
    """The caller cancelled the operation between page fetches."""
