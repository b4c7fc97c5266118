"""
Scraping Module - Session, transport, parsing, mapping and pagination.
======================================================================

This module turns authenticated HTTP responses into typed entities:

- transport: Requests with rate limiting, retries and error classification
- session: Login flow and refresh on expiry
- parser: Typed node tree and declarative field queries
- shapes: Page shapes of the source application
- mapper: Entity construction and referential checks
- pagination: Walking listings to exhaustion

Pipeline flow:
    GsRequest → SessionManager → Transport → Response → parse → rows
              → extract_row → EntityMapper → entities
"""

from gradescope_client.scraping.transport import GsRequest, Transport, TransportStats
from gradescope_client.scraping.session import Credentials, Session, SessionManager
from gradescope_client.scraping.parser import (
    DataNode,
    ElementNode,
    FieldQuery,
    PageShape,
    ParsedNode,
    ParsedPage,
    extract_field,
    extract_row,
    parse,
)
from gradescope_client.scraping.mapper import Deduplicator, EntityMapper, ScrapeContext
from gradescope_client.scraping.pagination import (
    PageCursor,
    PaginationWalker,
    ResourceDescriptor,
)

__all__ = [
    # Transport
    "GsRequest",
    "Transport",
    "TransportStats",
    # Session
    "Credentials",
    "Session",
    "SessionManager",
    # Parser
    "ParsedNode",
    "ElementNode",
    "DataNode",
    "FieldQuery",
    "PageShape",
    "ParsedPage",
    "parse",
    "extract_field",
    "extract_row",
    # Mapper
    "ScrapeContext",
    "EntityMapper",
    "Deduplicator",
    # Pagination
    "ResourceDescriptor",
    "PageCursor",
    "PaginationWalker",
]
