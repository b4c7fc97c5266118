"""
Parser Module - Turn raw payloads into typed nodes and extract fields.
======================================================================

Parses HTML (and the JSON the source embeds in ``data-react-props``
attributes) into a small tree of typed nodes:

- ElementNode: an HTML element, optionally knowing its table column labels
- TextNode / AttributeNode: leaves of an element
- DataNode: an embedded or returned JSON value

Field extraction is declarative. A ``PageShape`` lists the anchors a page
must have and where its rows live; each ``FieldQuery`` first finds a stable
anchor (CSS container, labeled table column or JSON key) and only then reads
leaf text or an attribute. A missing anchor on the page is a ``ParseError``
for the page; a missing or unconvertible field is a ``ParseError`` for that
field of that row only.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from bs4 import BeautifulSoup, Tag

from gradescope_client.shared.errors import ParseError
from gradescope_client.shared.logging import get_logger
from gradescope_client.shared.utils import clean_whitespace

logger = get_logger(__name__)

# Refers to the row node itself inside a comma-separated selector list
SELF = "&"


# ─────────────────────────────────────────────────────────────────────────────
# Typed Nodes
# ─────────────────────────────────────────────────────────────────────────────


class ParsedNode:
    """Base class for nodes produced by the parser."""

    kind: str = "node"
    group: Optional[str] = None


@dataclass(frozen=True)
class TextNode(ParsedNode):
    """A run of text inside an element."""

    value: str
    kind: str = "text"


@dataclass(frozen=True)
class AttributeNode(ParsedNode):
    """An attribute of an element."""

    name: str
    value: str
    kind: str = "attribute"


@dataclass(frozen=True, eq=False)
class ElementNode(ParsedNode):
    """
    An HTML element.

    ``columns`` holds the normalized header labels of the table a row belongs
    to, so cells can be addressed by label instead of position. ``group`` is
    the heading a grouped row was listed under.
    """

    element: Tag
    columns: tuple[str, ...] = ()
    group: Optional[str] = None
    kind: str = "element"

    @property
    def tag(self) -> str:
        return self.element.name

    @property
    def text(self) -> str:
        """Whitespace-normalized text content."""
        return clean_whitespace(self.element.get_text(" "))

    def leaf(self, attribute: Optional[str] = None) -> Optional[Union[TextNode, AttributeNode]]:
        """This element's text, or one of its attributes, as a leaf node."""
        if attribute is None:
            return TextNode(self.text)
        value = self.attr(attribute)
        if value is None:
            return None
        return AttributeNode(attribute, value)

    def attr(self, name: str) -> Optional[str]:
        """Attribute value; multi-valued attributes (class) are space-joined."""
        value = self.element.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def has_content(self) -> bool:
        """Whether the element has any child element or non-blank text."""
        return any(True for _ in self.element.find_all(True)) or bool(self.text)

    def select(self, selector: str) -> list["ElementNode"]:
        """All descendants matching a CSS selector."""
        return [ElementNode(el, group=self.group) for el in self.element.select(selector)]

    def first(self, selector: str, having: Optional[str] = None) -> Optional["ElementNode"]:
        """
        First match for a comma-separated list of alternative selectors.

        Alternatives are tried in order, so earlier ones take precedence
        regardless of document order. ``&`` stands for this node itself.
        With ``having``, only elements carrying that attribute count.
        """
        for sel in selector.split(","):
            sel = sel.strip()
            if not sel:
                continue
            if sel == SELF:
                node = self
            else:
                element = self.element.select_one(sel)
                node = ElementNode(element, group=self.group) if element is not None else None
            if node is not None and (having is None or node.attr(having) is not None):
                return node
        return None

    def cells(self) -> list["ElementNode"]:
        """Direct td/th children of a table row."""
        return [ElementNode(cell) for cell in self.element.find_all(["td", "th"], recursive=False)]

    def cell(self, label: Optional[str], position: Optional[int] = None) -> Optional["ElementNode"]:
        """
        Cell of this row under the column labeled ``label``.

        Labels match case-insensitively, exactly or as a prefix of the
        header text ("student" matches "Student Name"). When the table has
        no header, or no label is given, ``position`` is used instead
        (negative positions count from the end).
        """
        cells = self.cells()
        index = column_index(self.columns, label) if label else None
        if index is None:
            if (label and self.columns) or position is None:
                return None
            index = position
        if -len(cells) <= index < len(cells):
            return cells[index]
        return None


@dataclass(frozen=True, eq=False)
class DataNode(ParsedNode):
    """A JSON value, usually taken from a ``data-react-props`` attribute."""

    data: Any
    group: Optional[str] = None
    kind: str = "data"

    def get(self, path: str, default: Any = None) -> Any:
        """
        Look up a dotted key path ("outline.0.title").

        Integer segments index into lists; any miss returns ``default``.
        """
        current = self.data
        for segment in path.split("."):
            if isinstance(current, dict):
                if segment not in current:
                    return default
                current = current[segment]
            elif isinstance(current, list):
                try:
                    current = current[int(segment)]
                except (ValueError, IndexError):
                    return default
            else:
                return default
        return current


def column_index(columns: tuple[str, ...], label: str) -> Optional[int]:
    """Index of the first column whose label equals or starts with ``label``."""
    wanted = clean_whitespace(label).lower()
    for index, column in enumerate(columns):
        if column == wanted:
            return index
    for index, column in enumerate(columns):
        if column.startswith(wanted):
            return index
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Declarative Queries
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldQuery:
    """
    Where one field of a row lives.

    Exactly one anchor kind is normally set:
        css: comma-separated alternative selectors relative to the row
        column: header label of a table column (``position`` is the fallback
            when the table has no header)
        key: dotted key path in a DataNode row
    With no anchor the row node itself is the anchor.

    Then, optionally:
        leaf: selector inside the anchor element
        attribute: read this attribute instead of text
        presence: the value is whether the anchor has any content
        convert: callable applied to the raw value (ValueError/TypeError
            become a field-scoped ParseError)
    """

    name: str
    css: Optional[str] = None
    column: Optional[str] = None
    position: Optional[int] = None
    key: Optional[str] = None
    leaf: Optional[str] = None
    attribute: Optional[str] = None
    presence: bool = False
    required: bool = True
    convert: Optional[Callable[[Any], Any]] = None


@dataclass(frozen=True)
class PageShape:
    """
    The structural contract of one kind of page.

    Attributes:
        name: Shape name used in error messages
        anchors: Selectors that must each match somewhere on the page
        rows: Selector for row elements
        header: Selector for header cells giving column labels
        groups: Selector for group headings; rows are read from the first
            following sibling matching ``group_container``
        group_container: Selector the grouped container must match
        props: Selector of the single element carrying embedded JSON
        props_attribute: Attribute holding the JSON
        props_rows: Key path of the row list inside the JSON
        fields: Field queries applied to each row
    """

    name: str
    anchors: tuple[str, ...] = ()
    rows: Optional[str] = None
    header: Optional[str] = None
    groups: Optional[str] = None
    group_container: Optional[str] = None
    props: Optional[str] = None
    props_attribute: str = "data-react-props"
    props_rows: Optional[str] = None
    fields: tuple[FieldQuery, ...] = ()


@dataclass
class ParsedPage:
    """A parsed page: its root, its rows and any embedded data."""

    shape: PageShape
    root: ParsedNode
    rows: list[ParsedNode] = field(default_factory=list)
    data: Optional[DataNode] = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class RowExtraction:
    """Field values of one row plus the fields that failed."""

    row: int
    values: dict[str, Any] = field(default_factory=dict)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────


def _create_soup(html: str) -> BeautifulSoup:
    """Create BeautifulSoup object from HTML."""
    return BeautifulSoup(html, "lxml")


def _decode(raw: Union[str, bytes]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def parse(raw_payload: Union[str, bytes], shape: PageShape) -> ParsedPage:
    """
    Parse a payload against the shape it is expected to have.

    Args:
        raw_payload: HTML document
        shape: Expected page shape

    Returns:
        ParsedPage with root, rows and embedded data

    Raises:
        ParseError: A required anchor is absent, the embedded data is
            missing, ambiguous or malformed
    """
    text = _decode(raw_payload)

    if not text.strip():
        raise ParseError("empty document", shape=shape.name)

    root = ElementNode(_create_soup(text))

    for anchor in shape.anchors:
        if root.first(anchor) is None:
            raise ParseError(f"required anchor '{anchor}' not found", shape=shape.name)

    page = ParsedPage(shape=shape, root=root)

    if shape.props:
        page.data = _embedded_data(root, shape)
        if shape.props_rows:
            page.rows = _data_rows(page.data, shape)
    elif shape.groups:
        page.rows = _grouped_rows(root, shape)
    elif shape.rows:
        page.rows = _table_rows(root, shape)

    logger.debug(f"Parsed {shape.name}: {page.row_count} rows")
    return page


def _embedded_data(root: ElementNode, shape: PageShape) -> DataNode:
    holders = root.select(shape.props)
    if len(holders) != 1:
        raise ParseError(
            f"expected exactly one '{shape.props}', found {len(holders)}", shape=shape.name
        )

    raw = holders[0].attr(shape.props_attribute)
    if raw is None:
        raise ParseError(f"'{shape.props}' has no {shape.props_attribute}", shape=shape.name)

    try:
        return DataNode(json.loads(raw))
    except json.JSONDecodeError as e:
        raise ParseError(f"malformed {shape.props_attribute}: {e}", shape=shape.name) from e


def _data_rows(data: DataNode, shape: PageShape) -> list[ParsedNode]:
    rows = data.get(shape.props_rows)
    if rows is None:
        raise ParseError(f"embedded data has no '{shape.props_rows}'", shape=shape.name)
    if not isinstance(rows, list):
        raise ParseError(f"'{shape.props_rows}' is not a list", shape=shape.name)
    return [DataNode(row) for row in rows]


def _table_rows(root: ElementNode, shape: PageShape) -> list[ParsedNode]:
    columns: tuple[str, ...] = ()
    if shape.header:
        columns = tuple(cell.text.lower() for cell in root.select(shape.header))
    return [ElementNode(row.element, columns=columns) for row in root.select(shape.rows)]


def _grouped_rows(root: ElementNode, shape: PageShape) -> list[ParsedNode]:
    rows: list[ParsedNode] = []
    for heading in root.select(shape.groups):
        container = _following_container(heading.element, shape.group_container)
        if container is None:
            logger.debug(f"{shape.name}: heading '{heading.text}' has no list")
            continue
        for row in container.select(shape.rows or "*"):
            rows.append(ElementNode(row, group=heading.text))
    return rows


def _following_container(heading: Tag, selector: Optional[str]) -> Optional[Tag]:
    for sibling in heading.find_next_siblings():
        if selector is None or sibling.css.match(selector):
            return sibling
        if sibling.name == heading.name:
            # Reached the next heading without finding a list
            return None
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Field Extraction
# ─────────────────────────────────────────────────────────────────────────────


def _locate(node: ParsedNode, query: FieldQuery) -> Any:
    """Find the anchor for a query; None when absent."""
    if query.key is not None:
        if not isinstance(node, DataNode):
            return None
        return node.get(query.key)

    if not isinstance(node, ElementNode):
        return None

    # Attribute reads skip alternatives that lack the attribute
    having = query.attribute if query.leaf is None else None

    if query.column is not None or query.position is not None:
        anchor = node.cell(query.column, query.position)
    elif query.css is not None:
        anchor = node.first(query.css, having=having)
    else:
        anchor = node

    if anchor is not None and query.leaf is not None:
        anchor = anchor.first(query.leaf, having=query.attribute)
    return anchor


def extract_field(
    node: ParsedNode,
    query: FieldQuery,
    shape: Optional[str] = None,
    row: Optional[int] = None,
) -> Any:
    """
    Extract one field from a row node.

    Returns:
        The (converted) value, or None for an absent optional field

    Raises:
        ParseError: Scoped to this field and row
    """
    anchor = _locate(node, query)

    if query.presence:
        if isinstance(anchor, ElementNode):
            return anchor.has_content()
        return bool(anchor)

    if isinstance(anchor, ElementNode):
        leaf = anchor.leaf(query.attribute)
        value: Any = leaf.value if leaf is not None else None
    else:
        value = anchor

    if value is None or (isinstance(value, str) and not value.strip()):
        if query.required:
            raise ParseError("missing value", shape=shape, field=query.name, row=row)
        return None

    if query.convert is not None:
        try:
            value = query.convert(value)
        except (ValueError, TypeError) as e:
            raise ParseError(
                f"could not read {value!r}: {e}", shape=shape, field=query.name, row=row
            ) from e

    return value


def extract_row(
    node: ParsedNode,
    fields: tuple[FieldQuery, ...],
    shape: Optional[str] = None,
    row: int = 0,
) -> RowExtraction:
    """
    Extract every field of one row, collecting failures per field.

    Example:
        >>> page = parse(html, REGRADES_PAGE)
        >>> extraction = extract_row(page.rows[0], REGRADES_PAGE.fields, "regrades", 0)
        >>> extraction.values["student"]
        'Ada Lovelace'
    """
    extraction = RowExtraction(row=row)
    for query in fields:
        try:
            extraction.values[query.name] = extract_field(node, query, shape, row)
        except ParseError as e:
            extraction.errors.append(e)
    return extraction
