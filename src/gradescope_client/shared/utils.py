"""
Utilities Module - Common helper functions.
===========================================

Provides utility functions for:
- Text normalization of scraped leaf text
- Tolerant numeric parsing (thousands separators, unit suffixes)
- URL and link helpers
- File I/O for JSON output
"""

import json
import re
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from pydantic import BaseModel

from gradescope_client.shared.logging import get_logger

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Text Utilities
# ─────────────────────────────────────────────────────────────────────────────


def clean_whitespace(text: Optional[str]) -> str:
    """
    Collapse all runs of whitespace into single spaces.

    Args:
        text: Text to clean (None is treated as empty)

    Returns:
        Text with normalized whitespace and no leading/trailing spaces

    Example:
        >>> clean_whitespace("  EECS\\n   203 ")
        'EECS 203'
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


# ─────────────────────────────────────────────────────────────────────────────
# Numeric Parsing
# ─────────────────────────────────────────────────────────────────────────────

_NUMBER_PATTERN = re.compile(
    r"""
    ^\s*
    (?P<number>
        [+-]?\d{1,3}(?:,\d{3})+(?:\.\d+)?   # 1,250 or 1,250.5
      | [+-]?\d+(?:\.\d+)?                  # 1250 or 1250.5
      | [+-]?\.\d+                          # .5
    )
    (?P<rest>.*)$
    """,
    re.VERBOSE | re.DOTALL,
)


def parse_number(text: Any) -> float:
    """
    Parse a number that may carry thousands separators and trailing unit text.

    Args:
        text: Raw value (string, int or float)

    Returns:
        Parsed float

    Raises:
        ValueError: If no leading number is found, or the trailing text
            contains further digits (e.g. "10 / 20"), which is ambiguous

    Example:
        >>> parse_number("1,250.5 pts")
        1250.5
        >>> parse_number("10.0")
        10.0
    """
    if isinstance(text, bool):
        raise ValueError(f"not a number: {text!r}")
    if isinstance(text, (int, float)):
        return float(text)
    if text is None:
        raise ValueError("no value")

    match = _NUMBER_PATTERN.match(str(text))
    if not match:
        raise ValueError(f"no number in {text!r}")

    rest = match.group("rest")
    if re.search(r"\d", rest):
        raise ValueError(f"ambiguous number in {text!r}")

    return float(match.group("number").replace(",", ""))


# ─────────────────────────────────────────────────────────────────────────────
# URL Helpers
# ─────────────────────────────────────────────────────────────────────────────


def last_path_segment(href: Optional[str]) -> Optional[str]:
    """
    Return the last non-empty path segment of a link.

    Used to read an opaque ID out of links like ``/courses/1001``; the
    segment is returned as-is and never interpreted.

    Example:
        >>> last_path_segment("/courses/1001/")
        '1001'
    """
    if not href:
        return None
    path = urlparse(href).path
    segments = [segment for segment in path.split("/") if segment]
    return segments[-1] if segments else None


def absolute_url(base_url: str, href: str) -> str:
    """Resolve ``href`` against the source's base URL."""
    return urljoin(base_url + "/", href)


def query_param(href: str, name: str) -> Optional[str]:
    """Return the first value of a query parameter in ``href``."""
    values = parse_qs(urlparse(href).query).get(name)
    return values[0] if values else None


def path_matches(url: str, paths: list[str]) -> bool:
    """Whether the path of ``url`` equals or starts with one of ``paths``."""
    path = urlparse(url).path.rstrip("/") or "/"
    for candidate in paths:
        candidate = candidate.rstrip("/") or "/"
        if path == candidate or path.startswith(candidate + "/"):
            return True
    return False


# ─────────────────────────────────────────────────────────────────────────────
# JSON File I/O
# ─────────────────────────────────────────────────────────────────────────────


def ensure_parent_directory(file_path: Path) -> Path:
    """
    Ensure the parent directory of a file exists.

    Args:
        file_path: File path

    Returns:
        The file path (for chaining)
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    return file_path


def save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    Save data to a JSON file.

    Args:
        file_path: Path to JSON file
        data: Data to save (must be JSON serializable)
        indent: Indentation level (default: 2)
    """
    file_path = Path(file_path)
    ensure_parent_directory(file_path)

    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=str)

    logger.debug(f"Saved JSON to {file_path}")


def save_model_to_json(file_path: Path, model: BaseModel, indent: int = 2) -> None:
    """
    Save a Pydantic model to a JSON file.

    Args:
        file_path: Path to JSON file
        model: Pydantic model instance
        indent: Indentation level
    """
    save_json(file_path, model.model_dump(mode="json"), indent=indent)
