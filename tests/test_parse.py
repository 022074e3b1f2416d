"""
Tests for the parse module.

Tests cover:
- Standings table location among several tables
- Header to canonical field mapping
- Row parsing with metadata and malformed rows
- Points and result normalization
- Page to Snapshot conversion
"""

import itertools

import pytest
from bs4 import BeautifulSoup

from standings_watcher.parse import (
    MissingTableError,
    RowParseError,
    extract_source_name,
    extract_table_rows,
    find_standings_table,
    get_header_texts,
    has_required_headers,
    is_plausible_header,
    map_columns,
    normalize_result,
    parse_int,
    parse_player_row,
    parse_points,
    parse_rows,
    parse_standings_page,
    plausible_cell_bounds,
)


STANDARD_HEADERS = ["Rd.", "Bo.", "SNo", "Name", "Rtg", "FED", "Club/City", "Pts.", "Res."]

PLAYER_ROWS = [
    ["1", "6", "6", "Bodaks, Leonards", "1496", "LAT", "Rīgas Šaha skola/ D.Matisone", "6", "- 0"],
    ["2", "6", "11", "Malcevs, Timofejs", "0", "LAT", "Mifan Chess/ A.Jazdanovs", "5", "- 0"],
    ["3", "5", "3", "Ozols, Janis", "1620", "LAT", "Riga", "4,5", "1"],
    ["4", "4", "9", "Berzina, Anna", "1502", "LAT", "Jelgava", "4", "½"],
    ["5", "3", "2", "Kalnins, Peteris", "1711", "LAT", "Liepaja", "3.5", "0"],
    ["6", "2", "14", "Liepa, Marta", "0", "LAT", "Ventspils", "3", "1-0"],
    ["7", "1", "1", "Sprogis, Karlis", "1801", "LAT", "Riga", "2,5", ""],
    ["8", "1", "8", "Abele, Ilze", "1455", "EST", "Tartu", "2", "- 1"],
]


def build_table(headers, rows, use_th=True):
    """Build a <table> snippet from header and row cell texts."""
    cell = "th" if use_th else "td"
    header_html = "".join(f"<{cell}>{h}</{cell}>" for h in headers)
    rows_html = "".join(
        "<tr>" + "".join(f"<td>{c}</td>" for c in row) + "</tr>"
        for row in rows
    )
    return f"<table><tr>{header_html}</tr>{rows_html}</table>"


def build_page(*tables, title="ChessMania Tournament"):
    title_html = f"<head><title>{title}</title></head>" if title else ""
    return f"<html>{title_html}<body>{''.join(tables)}</body></html>"


METADATA_TABLE = build_table(["Tournament", "ChessMania Open 2024"], [["Organizer", "LSF"]])
DECOY_TABLE = build_table(
    ["No.", "Name", "Rtg", "FED", "Club", "Pts."],
    [["1", "Someone", "1500", "LAT", "Riga", "3"]]
)


class TestFindStandingsTable:
    """Tests for standings table location."""

    def test_selects_only_qualifying_table(self):
        """Test that the table with round/board/name/points headers is chosen."""
        html = build_page(METADATA_TABLE, build_table(STANDARD_HEADERS, PLAYER_ROWS), DECOY_TABLE)
        soup = BeautifulSoup(html, "html.parser")

        table = find_standings_table(soup)

        assert get_header_texts(table) == STANDARD_HEADERS

    @pytest.mark.parametrize("position", [0, 1, 2])
    def test_selection_independent_of_position(self, position):
        """Test that the standings table is found wherever it sits."""
        tables = [METADATA_TABLE, DECOY_TABLE]
        tables.insert(position, build_table(STANDARD_HEADERS, PLAYER_ROWS[:1]))
        soup = BeautifulSoup(build_page(*tables), "html.parser")

        table = find_standings_table(soup)

        assert "Bodaks, Leonards" in table.get_text()

    def test_first_qualifying_table_wins(self):
        """Test that document order decides between two qualifying tables."""
        first = build_table(STANDARD_HEADERS, [PLAYER_ROWS[0]])
        second = build_table(STANDARD_HEADERS, [PLAYER_ROWS[1]])
        soup = BeautifulSoup(build_page(first, second), "html.parser")

        table = find_standings_table(soup)

        assert "Bodaks" in table.get_text()
        assert "Malcevs" not in table.get_text()

    def test_headers_in_td_cells(self):
        """Test that header rows made of <td> cells are recognised."""
        soup = BeautifulSoup(
            build_page(build_table(STANDARD_HEADERS, PLAYER_ROWS, use_th=False)),
            "html.parser"
        )

        assert find_standings_table(soup) is not None

    def test_no_tables_raises(self):
        """Test that a page without tables raises MissingTableError."""
        soup = BeautifulSoup(build_page(), "html.parser")

        with pytest.raises(MissingTableError):
            find_standings_table(soup)

    def test_no_qualifying_table_raises(self):
        """Test that only decoy tables raise MissingTableError."""
        soup = BeautifulSoup(build_page(METADATA_TABLE, DECOY_TABLE), "html.parser")

        with pytest.raises(MissingTableError):
            find_standings_table(soup)

    def test_long_header_cells_rejected(self):
        """Test that tables whose header cells look like metadata are skipped."""
        headers = list(STANDARD_HEADERS)
        headers[6] = "Club/City " + "x" * 60
        soup = BeautifulSoup(build_page(build_table(headers, PLAYER_ROWS)), "html.parser")

        with pytest.raises(MissingTableError):
            find_standings_table(soup)


class TestHeaderChecks:
    """Tests for header plausibility and token checks."""

    def test_plausible_header(self):
        """Test plausible header row."""
        assert is_plausible_header(STANDARD_HEADERS) is True

    def test_too_few_headers(self):
        """Test that short header rows are rejected."""
        assert is_plausible_header(["Rd.", "Bo.", "Name", "Pts."]) is False

    def test_too_many_headers(self):
        """Test that very wide header rows are rejected."""
        assert is_plausible_header(["Rd."] * 16) is False

    def test_blank_headers(self):
        """Test that empty or blank header rows are rejected."""
        assert is_plausible_header([]) is False
        assert is_plausible_header(["", "", "", "", ""]) is False

    def test_required_tokens_case_insensitive(self):
        """Test that token matching ignores case and phrasing."""
        assert has_required_headers(["ROUND", "board no", "Player", "Score", "x"]) is True

    def test_missing_round_token(self):
        """Test that a header row without a round column does not qualify."""
        assert has_required_headers(["Bo.", "SNo", "Name", "Rtg", "Pts."]) is False

    def test_board_does_not_count_as_round(self):
        """Test that 'rd' inside 'Board' does not satisfy the round token."""
        assert has_required_headers(["Board", "Name", "Points", "Club", "Rtg"]) is False


class TestMapColumns:
    """Tests for header to canonical field mapping."""

    def test_standard_headers(self):
        """Test mapping of the abbreviated chess-results headers."""
        mapping = map_columns(STANDARD_HEADERS)

        assert mapping == {
            "round": 0,
            "board": 1,
            "starting_number": 2,
            "name": 3,
            "rating": 4,
            "federation": 5,
            "club_city": 6,
            "points": 7,
            "result": 8,
        }

    def test_long_form_headers(self):
        """Test mapping of spelled-out headers."""
        headers = [
            "Round", "Board", "Starting Number", "Player", "Rating",
            "Federation", "Club", "Points", "Result",
        ]

        mapping = map_columns(headers)

        assert mapping["round"] == 0
        assert mapping["board"] == 1
        assert mapping["starting_number"] == 2
        assert mapping["name"] == 3
        assert mapping["rating"] == 4
        assert mapping["federation"] == 5
        assert mapping["club_city"] == 6
        assert mapping["points"] == 7
        assert mapping["result"] == 8

    def test_permutations_resolve_to_correct_index(self):
        """Test every ordering of the four required headers."""
        fields = {"Rd.": "round", "Bo.": "board", "Name": "name", "Pts.": "points"}

        for order in itertools.permutations(fields):
            mapping = map_columns(list(order))
            for index, header in enumerate(order):
                assert mapping[fields[header]] == index

    def test_unknown_headers_ignored(self):
        """Test that unrecognised headers produce no entries."""
        mapping = map_columns(["Rd.", "Tiebreak 1", "", "Name"])

        assert mapping == {"round": 0, "name": 3}

    def test_absent_fields_do_not_raise(self):
        """Test that optional fields are simply missing."""
        mapping = map_columns(["Rd.", "Bo.", "Name", "Pts."])

        assert "result" not in mapping
        assert "club_city" not in mapping

    def test_country_maps_to_federation(self):
        """Test the country alias."""
        assert map_columns(["Country"]) == {"federation": 0}

    def test_first_header_keeps_duplicate_field(self):
        """Test that the first of two headers for one field keeps the column."""
        mapping = map_columns(["Name", "Player"])

        assert mapping == {"name": 0}


class TestNormalization:
    """Tests for points, result and integer normalization."""

    def test_points_comma_and_dot(self):
        """Test that comma and dot decimals give the same value."""
        assert parse_points("3,5") == 3.5
        assert parse_points("3.5") == 3.5

    def test_points_whole_number(self):
        """Test whole points."""
        assert parse_points("6") == 6.0

    def test_points_blank_and_invalid(self):
        """Test that blank or garbage points give None without raising."""
        assert parse_points("") is None
        assert parse_points("   ") is None
        assert parse_points("abc") is None
        assert parse_points(None) is None

    @pytest.mark.parametrize("text", ["nan", "inf", "-inf", "1e3", "-1", "3.", ".5", "3,5,0"])
    def test_points_reject_non_decimal(self, text):
        """Test that float spellings other than a plain decimal give None."""
        assert parse_points(text) is None

    def test_result_marker_stripped(self):
        """Test that the leading '- ' marker is removed."""
        assert normalize_result("- 0") == "0"
        assert normalize_result("- 1") == "1"

    def test_result_unchanged(self):
        """Test that ordinary results are kept."""
        assert normalize_result("1-0") == "1-0"
        assert normalize_result("½") == "½"
        assert normalize_result(None) is None

    def test_parse_int(self):
        """Test non-negative integer parsing."""
        assert parse_int("12") == 12
        assert parse_int(" 3 ") == 3
        assert parse_int("-1") is None
        assert parse_int("1a") is None
        assert parse_int("") is None


class TestParseRows:
    """Tests for data row parsing."""

    def test_parses_all_player_rows(self):
        """Test that every valid row becomes a Record in source order."""
        records = parse_rows(PLAYER_ROWS, map_columns(STANDARD_HEADERS))

        assert len(records) == len(PLAYER_ROWS)
        assert [r.name for r in records] == [row[3] for row in PLAYER_ROWS]

    def test_first_record_fields(self):
        """Test field extraction of a full row."""
        records = parse_rows(PLAYER_ROWS, map_columns(STANDARD_HEADERS))
        first = records[0]

        assert first.name == "Bodaks, Leonards"
        assert first.board == "6"
        assert first.affiliation == "Rīgas Šaha skola/ D.Matisone"
        assert first.score == 6.0
        assert first.outcome == "0"
        assert first.round_index == 1
        assert first.starting_number == "6"
        assert first.rating == 1496
        assert first.federation == "LAT"

    def test_locale_points_and_blank_result(self):
        """Test comma points and an empty result cell."""
        records = parse_rows(PLAYER_ROWS, map_columns(STANDARD_HEADERS))
        by_name = {r.name: r for r in records}

        assert by_name["Ozols, Janis"].score == 4.5
        assert by_name["Sprogis, Karlis"].score == 2.5
        assert by_name["Sprogis, Karlis"].outcome is None

    def test_metadata_row_skipped(self):
        """Test that a 9-row table with a 2-cell row yields 8 records."""
        rows = list(PLAYER_ROWS)
        rows.insert(2, ["Tournament director", "J. Berzins"])
        assert len(rows) == 9

        records = parse_rows(rows, map_columns(STANDARD_HEADERS))

        assert len(records) == 8
        assert "Tournament director" not in [r.name for r in records]

    def test_empty_rows_skipped(self):
        """Test that rows without cells are skipped."""
        records = parse_rows([[], PLAYER_ROWS[0], []], map_columns(STANDARD_HEADERS))

        assert len(records) == 1

    def test_non_numeric_round_skipped(self):
        """Test that rows without a round number are skipped."""
        row = ["Total", "6", "6", "Somebody", "1496", "LAT", "Riga", "6", "1"]

        records = parse_rows([row, PLAYER_ROWS[0]], map_columns(STANDARD_HEADERS))

        assert [r.name for r in records] == ["Bodaks, Leonards"]

    def test_round_validation_disabled(self):
        """Test that non-numeric round cells pass when validation is off."""
        row = ["-", "6", "6", "Somebody", "1496", "LAT", "Riga", "6", "1"]

        records = parse_rows([row], map_columns(STANDARD_HEADERS), validate_round=False)

        assert len(records) == 1
        assert records[0].round_index is None

    def test_missing_name_discarded(self):
        """Test that rows with an empty name are dropped."""
        row = ["1", "6", "6", "", "1496", "LAT", "Riga", "6", "1"]

        records = parse_rows([row], map_columns(STANDARD_HEADERS))

        assert records == []

    def test_unmapped_fields_are_none(self):
        """Test that fields without a column come back as None."""
        headers = ["Rd.", "Bo.", "Name", "Pts.", "Note", "Note", "Note", "Note"]
        row = ["1", "3", "Player, One", "2", "a", "b", "c", "d"]

        records = parse_rows([row], map_columns(headers))

        assert records[0].affiliation is None
        assert records[0].outcome is None
        assert records[0].rating is None

    def test_malformed_row_does_not_abort_batch(self):
        """Test that a row with a non-text cell only skips that row."""
        bad = list(PLAYER_ROWS[1])
        bad[6] = 42

        records = parse_rows(
            [PLAYER_ROWS[0], bad, PLAYER_ROWS[2]],
            map_columns(STANDARD_HEADERS)
        )

        assert [r.name for r in records] == ["Bodaks, Leonards", "Ozols, Janis"]

    def test_non_text_round_cell_skipped(self):
        """Test that a non-text round cell is treated as a bad row."""
        bad = list(PLAYER_ROWS[0])
        bad[0] = None

        records = parse_rows([bad, PLAYER_ROWS[1]], map_columns(STANDARD_HEADERS))

        assert [r.name for r in records] == ["Malcevs, Timofejs"]

    def test_row_parse_error_carries_row_number(self):
        """Test that parse_player_row reports the failing row."""
        bad = list(PLAYER_ROWS[0])
        bad[3] = ["Bodaks"]

        with pytest.raises(RowParseError) as exc_info:
            parse_player_row(bad, map_columns(STANDARD_HEADERS), row_number=4)

        assert exc_info.value.row_number == 4

    def test_idempotent(self):
        """Test that parsing the same input twice gives identical records."""
        mapping = map_columns(STANDARD_HEADERS)

        assert parse_rows(PLAYER_ROWS, mapping) == parse_rows(PLAYER_ROWS, mapping)

    def test_plausible_cell_bounds(self):
        """Test cell bounds derived from the header count."""
        assert plausible_cell_bounds(9) == (8, 15)
        assert plausible_cell_bounds(5) == (5, 15)
        assert plausible_cell_bounds(18) == (8, 18)
        assert plausible_cell_bounds(0) == (8, 15)


class TestExtractSourceName:
    """Tests for tournament name extraction."""

    def test_name_from_title(self):
        """Test that the page title is used."""
        soup = BeautifulSoup(build_page(title="Latvijas Jaunatnes Cempionats"), "html.parser")

        assert extract_source_name(soup) == "Latvijas Jaunatnes Cempionats"

    def test_name_from_heading(self):
        """Test fallback to the first heading."""
        soup = BeautifulSoup(
            "<html><body><h2>Riga Rapid Open</h2></body></html>", "html.parser"
        )

        assert extract_source_name(soup) == "Riga Rapid Open"

    def test_default_name(self):
        """Test the generic fallback."""
        soup = BeautifulSoup("<html><body></body></html>", "html.parser")

        assert extract_source_name(soup) == "Chess Tournament"


class TestParseStandingsPage:
    """Tests for page to Snapshot conversion."""

    def test_full_page(self):
        """Test parsing a realistic page into a Snapshot."""
        html = build_page(METADATA_TABLE, build_table(STANDARD_HEADERS, PLAYER_ROWS))

        snapshot = parse_standings_page(html, "https://example.com/tnr1.aspx")

        assert snapshot.source_name == "ChessMania Tournament"
        assert snapshot.player_count == len(PLAYER_ROWS)
        assert snapshot.records[0].name == "Bodaks, Leonards"
        assert snapshot.fingerprint

    def test_extract_table_rows_skips_header(self):
        """Test that the header row is not returned as data."""
        soup = BeautifulSoup(build_page(build_table(STANDARD_HEADERS, PLAYER_ROWS)), "html.parser")

        rows = extract_table_rows(find_standings_table(soup))

        assert rows == PLAYER_ROWS

    def test_missing_table_gives_empty_snapshot(self):
        """Test that a page without standings yields an empty named Snapshot."""
        html = build_page(METADATA_TABLE, title="Riga Open 2024")

        snapshot = parse_standings_page(html)

        assert snapshot.is_empty
        assert snapshot.source_name == "Riga Open 2024"

    def test_empty_html(self):
        """Test that empty content yields an empty Snapshot."""
        assert parse_standings_page("").is_empty

    def test_same_page_same_fingerprint(self):
        """Test that parsing the same page twice gives equal fingerprints."""
        html = build_page(build_table(STANDARD_HEADERS, PLAYER_ROWS))

        assert parse_standings_page(html).fingerprint == parse_standings_page(html).fingerprint
