"""
Parse module for the Standings Watcher.

This module turns the raw standings page into a Snapshot:
- locate the standings table among all tables on the page
- map its header cells to canonical fields
- parse each data row into a Record, skipping metadata and malformed rows
"""

import re
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from standings_watcher.models import DEFAULT_SOURCE_NAME, Record, Snapshot
from standings_watcher.utils import get_logger, sanitize_text


# Module logger
logger = get_logger("parse")


# Header plausibility for the standings table
MIN_HEADER_COUNT = 5
MAX_HEADER_COUNT = 15
MAX_HEADER_LENGTH = 50

# Data rows outside these bounds are tournament metadata, not players
DEFAULT_MIN_ROW_CELLS = 8
DEFAULT_MAX_ROW_CELLS = 15

# Token groups the standings header must cover. Each entry is
# (prefixes, substrings), matched against the lower-cased header text.
REQUIRED_HEADER_TOKENS = {
    "round": (("rd",), ("round",)),
    "board": (("bo",), ("board",)),
    "name": ((), ("name", "player")),
    "points": (("pts",), ("points", "score")),
}

# Header text -> canonical field, evaluated top to bottom, first match wins
COLUMN_RULES: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"^rd\.?$|round"), "round"),
    (re.compile(r"^bo\.?$|board"), "board"),
    (re.compile(r"^sno|starting\s*number|no\.?$"), "starting_number"),
    (re.compile(r"^name$|player"), "name"),
    (re.compile(r"^rtg|rating"), "rating"),
    (re.compile(r"^fed|federation|country"), "federation"),
    (re.compile(r"^club|city"), "club_city"),
    (re.compile(r"^pts\.?$|points|score"), "points"),
    (re.compile(r"^res\.?$|result"), "result"),
]

# Selectors tried in order when the page title gives no usable name
SOURCE_NAME_SELECTORS = [
    ".tournament-name",
    "h1",
    "h2",
]

_RESULT_MARKER = re.compile(r"^-\s*")
_NON_NEGATIVE_INT = re.compile(r"^\d+$")
_POINTS_VALUE = re.compile(r"^\d+(?:\.\d+)?$")


class MissingTableError(Exception):
    """Raised when no table on the page looks like the standings table."""


class RowParseError(Exception):
    """Raised when a single data row cannot be turned into a Record."""

    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.row_number = row_number


# =============================================================================
# Table location
# =============================================================================


def get_cell_texts(row: Tag, include_headers: bool = True) -> List[str]:
    """
    Return the sanitized text of each cell in a table row.

    Args:
        row: <tr> element.
        include_headers: Also collect <th> cells (needed for header rows).

    Returns:
        List of cell texts in column order.
    """
    names = ["th", "td"] if include_headers else ["td"]
    return [sanitize_text(cell.get_text()) for cell in row.find_all(names)]


def get_header_texts(table: Tag) -> List[str]:
    """Cell texts of the table's first row, or an empty list."""
    first_row = table.find("tr")
    if first_row is None:
        return []
    return get_cell_texts(first_row)


def is_plausible_header(headers: Sequence[str]) -> bool:
    """
    Check that a header row looks like column titles.

    Empty rows, rows with too few or too many cells, and rows with very
    long cells (page metadata) are rejected.
    """
    if not headers or all(not h for h in headers):
        return False

    if len(headers) < MIN_HEADER_COUNT or len(headers) > MAX_HEADER_COUNT:
        return False

    return all(len(h) <= MAX_HEADER_LENGTH for h in headers)


def header_matches_token(header: str, prefixes: Sequence[str], substrings: Sequence[str]) -> bool:
    """Case-insensitive prefix/substring match of one header cell."""
    text = header.lower().strip()
    if any(text.startswith(prefix) for prefix in prefixes):
        return True
    return any(token in text for token in substrings)


def has_required_headers(headers: Sequence[str]) -> bool:
    """True if every required token group is matched by some header."""
    for prefixes, substrings in REQUIRED_HEADER_TOKENS.values():
        if not any(header_matches_token(h, prefixes, substrings) for h in headers):
            return False
    return True


def find_standings_table(soup: BeautifulSoup) -> Tag:
    """
    Select the standings table from a parsed document.

    Returns the first table, in document order, whose header row is
    plausible and contains round, board, name and points columns.

    Args:
        soup: Parsed document.

    Returns:
        The standings <table> element.

    Raises:
        MissingTableError: If no table qualifies.
    """
    tables = soup.find_all("table")
    logger.debug(f"Found {len(tables)} tables in the document")

    for index, table in enumerate(tables, 1):
        headers = get_header_texts(table)
        logger.debug(f"Table {index} headers: {', '.join(headers[:10])}")

        if not is_plausible_header(headers):
            continue

        if has_required_headers(headers):
            logger.debug(f"Found standings table at index {index}")
            return table

    logger.warning("No standings table found with expected headers")
    raise MissingTableError(f"No standings table among {len(tables)} table(s)")


# =============================================================================
# Column mapping
# =============================================================================


def map_header(header: str) -> Optional[str]:
    """Canonical field for a single header text, or None if unrecognised."""
    text = header.lower().strip()
    if not text:
        return None

    for pattern, field_name in COLUMN_RULES:
        if pattern.search(text):
            return field_name
    return None


def map_columns(headers: Sequence[str]) -> Dict[str, int]:
    """
    Map header cell texts to canonical field -> column index.

    Fields missing from the header row are simply absent from the result.
    If two headers resolve to the same field, the first keeps the column.

    Args:
        headers: Header cell texts in column order.

    Returns:
        Dictionary of canonical field name to column index.
    """
    mapping: Dict[str, int] = {}

    for index, header in enumerate(headers):
        field_name = map_header(header)
        if field_name is not None and field_name not in mapping:
            mapping[field_name] = index

    logger.debug(f"Column mapping created: {mapping}")
    return mapping


# =============================================================================
# Row parsing
# =============================================================================


def plausible_cell_bounds(header_count: int) -> Tuple[int, int]:
    """
    Cell-count bounds for player rows, derived from the header row.

    The defaults fit the chess-results layout and are widened so that a
    row with as many cells as the header always passes.
    """
    if header_count <= 0:
        return DEFAULT_MIN_ROW_CELLS, DEFAULT_MAX_ROW_CELLS
    return min(DEFAULT_MIN_ROW_CELLS, header_count), max(DEFAULT_MAX_ROW_CELLS, header_count)


def parse_points(text: Optional[str]) -> Optional[float]:
    """
    Parse a points cell, accepting comma or dot decimals.

    "3,5" and "3.5" both give 3.5. Blank text, and anything that is not a
    plain decimal ("nan", "inf", "1e3", "-1"), gives None.
    """
    if text is None:
        return None

    cleaned = text.strip().replace(",", ".")
    if not _POINTS_VALUE.match(cleaned):
        return None

    return float(cleaned)


def parse_int(text: Optional[str]) -> Optional[int]:
    """Parse a non-negative integer cell, or None."""
    if text is None:
        return None
    cleaned = text.strip()
    if not _NON_NEGATIVE_INT.match(cleaned):
        return None
    return int(cleaned)


def normalize_result(text: Optional[str]) -> Optional[str]:
    """Strip the leading "- " marker: "- 0" -> "0", "1-0" stays "1-0"."""
    if text is None:
        return None
    return _RESULT_MARKER.sub("", text.strip())


def extract_cell_value(cells: Sequence[str], column_index: Optional[int]) -> Optional[str]:
    """
    Cell text at column_index, or None when unmapped or out of range.

    Raises:
        RowParseError: If the cell holds something other than text.
    """
    if column_index is None or column_index < 0 or column_index >= len(cells):
        return None

    value = cells[column_index]
    if not isinstance(value, str):
        raise RowParseError(f"Cell {column_index} is not text: {value!r}")
    return value.strip()


def _optional(value: Optional[str]) -> Optional[str]:
    return value if value else None


def parse_player_row(
    cells: Sequence[str],
    mapping: Dict[str, int],
    row_number: Optional[int] = None
) -> Optional[Record]:
    """
    Build a Record from one data row.

    Returns None when the row has no player name.

    Raises:
        RowParseError: If a cell is not text or the Record cannot be built.
    """
    try:
        name = extract_cell_value(cells, mapping.get("name"))
        if not name:
            return None
        return _build_record(name, cells, mapping)
    except RowParseError as e:
        e.row_number = row_number
        raise
    except (TypeError, ValueError) as e:
        raise RowParseError(f"Invalid player row: {e}", row_number=row_number) from e


def _build_record(name: str, cells: Sequence[str], mapping: Dict[str, int]) -> Record:
    return Record(
        name=name,
        board=_optional(extract_cell_value(cells, mapping.get("board"))),
        affiliation=_optional(extract_cell_value(cells, mapping.get("club_city"))),
        score=parse_points(extract_cell_value(cells, mapping.get("points"))),
        outcome=_optional(normalize_result(extract_cell_value(cells, mapping.get("result")))),
        round_index=parse_int(extract_cell_value(cells, mapping.get("round"))),
        starting_number=_optional(extract_cell_value(cells, mapping.get("starting_number"))),
        rating=parse_int(extract_cell_value(cells, mapping.get("rating"))),
        federation=_optional(extract_cell_value(cells, mapping.get("federation"))),
    )


def parse_rows(
    rows: Sequence[Sequence[str]],
    mapping: Dict[str, int],
    min_cells: int = DEFAULT_MIN_ROW_CELLS,
    max_cells: int = DEFAULT_MAX_ROW_CELLS,
    validate_round: bool = True
) -> List[Record]:
    """
    Convert data rows into Records, in source order.

    Rows are skipped when empty, when their cell count falls outside
    [min_cells, max_cells], when round validation is on and the round cell
    is not a non-negative integer, or when they have no name. A row that
    fails to parse is logged and skipped; it never aborts the batch.

    Args:
        rows: Cell texts of each data row (header row excluded).
        mapping: Canonical field -> column index.
        min_cells: Minimum cell count of a player row.
        max_cells: Maximum cell count of a player row.
        validate_round: Require a numeric round cell.

    Returns:
        List of Records.
    """
    records: List[Record] = []
    round_index = mapping.get("round", 0)

    for row_number, cells in enumerate(rows, 1):
        if not cells:
            continue

        if len(cells) < min_cells or len(cells) > max_cells:
            logger.debug(f"Skipped row {row_number} - wrong number of cells ({len(cells)})")
            continue

        try:
            if validate_round and parse_int(extract_cell_value(cells, round_index)) is None:
                logger.debug(f"Skipped row {row_number} - doesn't start with round number")
                continue

            record = parse_player_row(cells, mapping, row_number)
        except RowParseError as e:
            logger.warning(f"Error parsing row {row_number}: {e}")
            logger.debug(f"Row content: {' | '.join(str(c) for c in cells)}")
            continue

        if record is None:
            logger.debug(f"Skipped row {row_number} - no valid player data")
            continue

        records.append(record)

    logger.debug(f"Total players parsed: {len(records)}")
    return records


def extract_table_rows(table: Tag) -> List[List[str]]:
    """Data-cell texts of every row after the header row."""
    rows = table.find_all("tr")[1:]
    return [get_cell_texts(row, include_headers=False) for row in rows]


# =============================================================================
# Page -> Snapshot
# =============================================================================


def extract_source_name(soup: BeautifulSoup) -> str:
    """
    Extract the tournament name from the page title or first heading.

    Falls back to a generic name if neither is present.
    """
    title = soup.find("title")
    if title:
        text = sanitize_text(title.get_text())
        if text:
            return text

    for selector in SOURCE_NAME_SELECTORS:
        heading = soup.select_one(selector)
        if heading:
            text = sanitize_text(heading.get_text())
            if text:
                return text

    return DEFAULT_SOURCE_NAME


def parse_standings_page(html: str, source_url: str = "") -> Snapshot:
    """
    Parse the standings page into a Snapshot.

    A page without a recognisable standings table yields an empty Snapshot
    that still carries the tournament name.

    Args:
        html: Raw HTML content.
        source_url: URL the page came from (for logging).

    Returns:
        Snapshot of the standings.
    """
    if not html:
        logger.warning(f"Empty HTML content for {source_url}")
        return Snapshot.empty()

    logger.debug(f"Parsing HTML from {source_url} ({len(html)} bytes)")

    soup = BeautifulSoup(html, "html.parser")
    source_name = extract_source_name(soup)

    try:
        table = find_standings_table(soup)
    except MissingTableError as e:
        logger.warning(f"{e}; returning empty snapshot for '{source_name}'")
        return Snapshot.empty(source_name)

    headers = get_header_texts(table)
    mapping = map_columns(headers)
    min_cells, max_cells = plausible_cell_bounds(len(headers))

    records = parse_rows(
        extract_table_rows(table),
        mapping,
        min_cells=min_cells,
        max_cells=max_cells,
        validate_round="round" in mapping
    )

    logger.info(f"Successfully parsed {len(records)} players from '{source_name}'")

    return Snapshot.build(source_name, records)
