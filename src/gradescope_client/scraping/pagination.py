"""
Pagination Module - Walk paginated listings to exhaustion.
==========================================================

The walker fetches page 1, yields its rows, then follows the "next page"
signal until the source says there is none. It fails closed: a
pagination control it cannot interpret raises ``PaginationError`` rather
than silently truncating the listing.

Termination rules (checked in this order):
1. No pagination control on the page: single page
2. Page has no rows: stop (logged as an anomaly past page 1)
3. Next marker is disabled and there is no next link: last page
4. A next link whose page parameter is greater than the current page: continue
5. Anything else: ``PaginationError``
"""

import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import requests

from gradescope_client.shared.config import Settings, get_settings
from gradescope_client.shared.errors import PaginationError, ScrapeCancelled
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.utils import query_param
from gradescope_client.scraping.parser import ElementNode, PageShape, ParsedNode, ParsedPage, parse
from gradescope_client.scraping.transport import GsRequest

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Data Classes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceDescriptor:
    """A listing: the request for its first page and the shape of its pages."""

    name: str
    request: GsRequest
    shape: PageShape


@dataclass(frozen=True)
class PageCursor:
    """Position within a listing. Page numbers start at 1."""

    resource: ResourceDescriptor
    page: int = 1

    def request(self, page_param: str) -> GsRequest:
        """Request for this page (page 1 is the bare listing URL)."""
        if self.page == 1:
            return self.resource.request
        return self.resource.request.with_params(**{page_param: self.page})


@dataclass(frozen=True)
class PageSignal:
    """What the pagination control of a page says about the next page."""

    has_next: bool
    next_page: Optional[int] = None
    reason: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Walker
# ─────────────────────────────────────────────────────────────────────────────


class PaginationWalker:
    """
    Lazily walks a paginated listing.

    ``cursor`` always holds the page being (or last) fetched, so a caller
    that caught an error can resume with ``walk(resource, start=walker.cursor)``.

    Example:
        >>> walker = PaginationWalker(manager.send)
        >>> for row in walker.walk(descriptor):
        ...     print(row)
    """

    def __init__(
        self,
        fetch: Callable[[GsRequest], requests.Response],
        settings: Optional[Settings] = None,
        cancel: Optional[threading.Event] = None,
        abort: Optional[threading.Event] = None,
    ):
        """
        Initialize the walker.

        Args:
            fetch: Sends one request and returns the response
            settings: Settings to use (defaults to the global settings)
            cancel: Set to stop the walk between page fetches
            abort: Like ``cancel``, owned by the fan-out running this walk
        """
        config = (settings or get_settings()).pagination

        self._fetch = fetch
        self.cancel = cancel
        self.abort = abort
        self.container_selectors = list(config.container_selectors)
        self.next_selectors = list(config.next_selectors)
        self.disabled_selectors = list(config.disabled_selectors)
        self.page_param = config.page_param
        self.max_pages = config.max_pages

        self.cursor: Optional[PageCursor] = None
        self.pages_fetched = 0

    def pages(self, resource: ResourceDescriptor, start: Optional[PageCursor] = None) -> Iterator[ParsedPage]:
        """
        Yield parsed pages of a listing, starting at ``start`` or page 1.

        Raises:
            ScrapeCancelled: The cancel or abort event was set between pages
            PaginationError: The next-page signal was not interpretable, or
                ``max_pages`` was exceeded
            ParseError: A page failed its shape check
        """
        cursor = start or PageCursor(resource)
        walked = 0

        while True:
            if any(event is not None and event.is_set() for event in (self.cancel, self.abort)):
                raise ScrapeCancelled(f"{resource.name}: cancelled before page {cursor.page}")
            if self.max_pages and walked >= self.max_pages:
                raise PaginationError(
                    f"more than {self.max_pages} pages", resource=resource.name, page=cursor.page
                )

            self.cursor = cursor
            response = self._fetch(cursor.request(self.page_param))
            page = parse(response.text, resource.shape)
            walked += 1
            self.pages_fetched += 1
            logger.debug(f"{resource.name}: page {cursor.page} has {page.row_count} rows")

            yield page

            if not page.rows:
                if cursor.page > 1:
                    logger.warning(f"{resource.name}: page {cursor.page} is empty, stopping")
                return

            signal = self.next_signal(page, cursor.page, resource.name)
            if not signal.has_next:
                logger.debug(f"{resource.name}: last page {cursor.page} ({signal.reason})")
                return

            cursor = PageCursor(resource, signal.next_page)

    def walk(self, resource: ResourceDescriptor, start: Optional[PageCursor] = None) -> Iterator[ParsedNode]:
        """Yield every row of every page, in order."""
        for page in self.pages(resource, start):
            yield from page.rows

    def next_signal(self, page: ParsedPage, current: int, resource: str = "") -> PageSignal:
        """
        Read the pagination control of a page.

        Raises:
            PaginationError: The control is present but ambiguous
        """
        root = page.root
        if not isinstance(root, ElementNode):
            return PageSignal(False, reason="not an HTML page")

        container = self._first(root, self.container_selectors)
        if container is None:
            return PageSignal(False, reason="no pagination control")

        next_link = self._first(container, self.next_selectors)
        disabled = self._first(container, self.disabled_selectors)

        if next_link is None:
            if disabled is not None:
                return PageSignal(False, reason="next marker disabled")
            raise PaginationError(
                "pagination control has neither a next link nor a disabled marker",
                resource=resource,
                page=current,
            )
        if disabled is not None:
            raise PaginationError(
                "pagination control has both a next link and a disabled marker",
                resource=resource,
                page=current,
            )

        href = next_link.attr("href")
        value = query_param(href, self.page_param) if href else None
        try:
            next_page = int(value) if value is not None else None
        except ValueError:
            next_page = None

        if next_page is None:
            raise PaginationError(
                f"next link {href!r} has no '{self.page_param}' number", resource=resource, page=current
            )
        if next_page <= current:
            raise PaginationError(
                f"next link points to page {next_page} from page {current}", resource=resource, page=current
            )
        return PageSignal(True, next_page, reason=f"next link to page {next_page}")

    @staticmethod
    def _first(node: ElementNode, selectors: list[str]) -> Optional[ElementNode]:
        for selector in selectors:
            match = node.first(selector)
            if match is not None:
                return match
        return None
