"""
Tests for header conventions and destination setup.
"""

from formdesk.store.headers import (
    ensure_destination,
    find_header,
    format_header,
    parse_header,
    resolve_columns,
    sanitize_header,
)
from formdesk.table import InMemoryTable


class TestHeaderFormatting:
    """`Label [ID]` parsing and formatting."""

    def test_parse_bracket_key(self):
        parsed = parse_header("Customer Name [NAME]")
        assert parsed.label == "Customer Name"
        assert parsed.key == "NAME"

    def test_parse_plain_label(self):
        parsed = parse_header("Status")
        assert parsed.label == "Status"
        assert parsed.key is None

    def test_format_header(self):
        assert format_header("Customer Name", "NAME") == "Customer Name [NAME]"

    def test_format_never_double_wraps(self):
        assert format_header("Customer Name [NAME]", "NAME") == "Customer Name [NAME]"
        assert format_header("Customer Name", "[NAME]") == "Customer Name [NAME]"

    def test_label_equal_to_id_keeps_bracket(self):
        assert sanitize_header("Email [EMAIL]") == "Email [EMAIL]"

    def test_nested_header_repaired(self):
        assert sanitize_header("Meal ID [MP_ID] [Meal ID [MP_ID]]") == "Meal ID [MP_ID]"


class TestFindHeader:
    """Meta column matching."""

    def test_case_insensitive_exact(self):
        assert find_header(["Name", "RECORD ID"], ["record id"]) == 2

    def test_exact_beats_prefix(self):
        headers = ["Status note [NOTE]", "Status"]
        assert find_header(headers, ["status"]) == 2

    def test_prefix_tolerated(self):
        assert find_header(["PDF Link (generated)"], ["pdf url", "pdf link"]) == 1

    def test_missing(self):
        assert find_header(["Name"], ["status"]) is None


class TestEnsureDestination:
    """Missing headers are appended, existing columns never move."""

    def test_empty_table_gets_all_headers(self, schema):
        table = InMemoryTable()
        headers, columns = ensure_destination(table, schema)

        assert headers[0] == "Language"
        assert "Customer Name [NAME]" in headers
        assert "Items [ITEMS]" in headers
        assert not any("SUBMIT" in h for h in headers)
        assert headers[-5:] == ["Record ID", "Created At", "Updated At", "Status", "PDF URL"]
        assert columns.record_id == headers.index("Record ID") + 1
        assert columns.fields["NAME"] == headers.index("Customer Name [NAME]") + 1
        assert table.rows()[0] == headers

    def test_existing_columns_kept_in_place(self, schema):
        table = InMemoryTable(rows=[["Timestamp", "Email [EMAIL]", "Notes"]])
        headers, columns = ensure_destination(table, schema)

        assert headers[:3] == ["Timestamp", "Email [EMAIL]", "Notes"]
        assert columns.timestamp == 1
        assert columns.fields["EMAIL"] == 2
        assert headers.count("Email [EMAIL]") == 1

    def test_second_call_writes_nothing(self, schema):
        table = InMemoryTable()
        ensure_destination(table, schema)
        writes = table.writes
        ensure_destination(table, schema)
        assert table.writes == writes

    def test_label_fallback_only_when_unique(self, schema):
        columns = resolve_columns(["Meal", "Email", "Email"], schema)
        assert columns.fields["MEAL"] == 1
        assert "EMAIL" not in columns.fields

    def test_bare_id_header(self, schema):
        columns = resolve_columns(["ORDER_NO"], schema)
        assert columns.fields["ORDER_NO"] == 1
