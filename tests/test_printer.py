import io
import json
from datetime import datetime, timezone

from azdo.helpers.iostreams import ColorScheme
from azdo.helpers.printer import JSONPrinter, ListPrinter, TablePrinter, field_text


class TestFieldText:
    def test_values(self):
        assert field_text(None) == ""
        assert field_text(True) == "true"
        assert field_text(False) == "false"
        assert field_text(42) == "42"
        assert field_text(datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)) == "2024-05-01T12:30:00Z"


class TestTablePrinter:
    def test_non_tty_is_tab_separated_without_header(self):
        out = io.StringIO()
        printer = TablePrinter(out, is_tty=False)
        printer.add_columns("ID", "Name")
        printer.add_field(1)
        printer.add_field("first")
        printer.end_row()
        printer.add_field(2)
        printer.add_field(None)
        printer.end_row()
        printer.render()
        assert out.getvalue() == "1\tfirst\n2\t\n"

    def test_tty_aligns_columns_with_header(self):
        out = io.StringIO()
        printer = TablePrinter(out, is_tty=True, max_width=80, color_scheme=ColorScheme(False))
        printer.add_columns("ID", "Name")
        printer.add_field(1)
        printer.add_field("first")
        printer.end_row()
        printer.add_field(22)
        printer.add_field("second")
        printer.end_row()
        printer.render()
        assert out.getvalue().splitlines() == [
            "ID  NAME",
            "1   first",
            "22  second",
        ]

    def test_tty_truncates_wide_columns(self):
        out = io.StringIO()
        printer = TablePrinter(out, is_tty=True, max_width=20, color_scheme=ColorScheme(False))
        printer.add_field("id")
        printer.add_field("x" * 40)
        printer.end_row()
        printer.render()
        line = out.getvalue().rstrip("\n")
        assert len(line) <= 20
        assert line.endswith("...")

    def test_untruncated_fields_keep_their_width(self):
        out = io.StringIO()
        printer = TablePrinter(out, is_tty=True, max_width=20, color_scheme=ColorScheme(False))
        printer.add_field("a" * 30, truncate=None)
        printer.end_row()
        printer.render()
        assert out.getvalue() == "a" * 30 + "\n"

    def test_empty_renders_nothing(self):
        out = io.StringIO()
        printer = TablePrinter(out, is_tty=False)
        printer.add_columns("ID")
        printer.render()
        assert out.getvalue() == ""


class TestListPrinter:
    def test_rows_separated_by_blank_line(self):
        out = io.StringIO()
        printer = ListPrinter(out)
        printer.add_columns("ID", "Ready")
        printer.add_field("a")
        printer.add_field(True)
        printer.end_row()
        printer.add_field("b")
        printer.add_field(False)
        printer.end_row()
        printer.render()
        assert out.getvalue() == "ID: a\nReady: true\n\nID: b\nReady: false\n"


class TestJSONPrinter:
    def test_rows_become_objects(self):
        out = io.StringIO()
        printer = JSONPrinter(out)
        printer.add_columns("ID", "Name")
        printer.add_field(7)
        printer.add_field("seven")
        printer.end_row()
        printer.render()
        assert json.loads(out.getvalue()) == [{"ID": "7", "Name": "seven"}]
