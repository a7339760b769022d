"""
Table, list and JSON printers sharing one row-oriented contract:

    add_columns(*names); add_field(value, ...); end_row(); render()
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from rich.console import Console
from rich.json import JSON

from .text import as_utc, fuzzy_ago, truncate as truncate_text

logger = logging.getLogger(__name__)

DEFAULT_TRUNCATE = object()
COLUMN_SEPARATOR = "  "
MIN_COLUMN_WIDTH = 5


def field_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_rfc3339(value)
    return str(value)


def format_rfc3339(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def write_json(out, data: Any, color: bool = False):
    """Pretty print data as JSON; colourised when writing to a terminal."""
    text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if color:
        console = Console(file=out, force_terminal=True, color_system="standard")
        console.print(JSON(text, indent=2), soft_wrap=True)
        return
    out.write(text + "\n")


class _Field:
    def __init__(self, text: str, truncate, color: Optional[Callable[[str], str]]):
        self.text = text
        self.truncate = truncate
        self.color = color


class Printer:
    """Row collecting base class."""

    def __init__(self, out):
        self.out = out
        self.header: List[str] = []
        self.rows: List[List[_Field]] = []
        self._current: List[_Field] = []

    def add_columns(self, *names: str):
        self.header = list(names)

    def add_field(self, value: Any, truncate=DEFAULT_TRUNCATE, color: Optional[Callable[[str], str]] = None):
        """
        Append a cell to the current row.

        Args:
            value: Cell value, rendered with str()
            truncate: None disables truncation; a callable (width, text) -> text
                replaces the default ellipsis truncation
            color: Function applied to the rendered text on a terminal
        """
        self._current.append(_Field(field_text(value), truncate, color))

    def add_time_field(self, now: datetime, t: Optional[datetime], colorizer: Optional[Callable[[str], str]] = None):
        if t is None:
            self.add_field("", color=colorizer)
            return
        self.add_field(format_rfc3339(t), color=colorizer)

    def end_row(self):
        if self._current:
            self.rows.append(self._current)
        self._current = []

    def _take_rows(self) -> List[List[_Field]]:
        self.end_row()
        rows = self.rows
        self.rows = []
        return rows

    def render(self):
        raise NotImplementedError


class TablePrinter(Printer):
    """Column aligned output on a terminal, tab separated otherwise."""

    def __init__(self, out, is_tty: bool, max_width: int = 80, color_scheme=None):
        super().__init__(out)
        self.is_tty = is_tty
        self.max_width = max_width
        self.color_scheme = color_scheme

    def add_time_field(self, now: datetime, t: Optional[datetime], colorizer: Optional[Callable[[str], str]] = None):
        if t is None or not self.is_tty:
            super().add_time_field(now, t, colorizer)
            return
        self.add_field(fuzzy_ago(now, t), color=colorizer)

    def render(self):
        rows = self._take_rows()
        if not rows:
            return
        if not self.is_tty:
            for row in rows:
                self.out.write("\t".join(field.text for field in row) + "\n")
            return
        if self.header:
            bold = self.color_scheme.bold if self.color_scheme else None
            rows.insert(0, [_Field(name.upper(), DEFAULT_TRUNCATE, bold) for name in self.header])
        widths = self._column_widths(rows)
        for row in rows:
            cells = []
            for index, field in enumerate(row):
                width = widths[index]
                text = field.text
                if len(text) > width and field.truncate is not None:
                    if callable(field.truncate):
                        text = field.truncate(width, text)
                    else:
                        text = truncate_text(width, text)
                padding = " " * max(0, width - len(text))
                if field.color and self.color_scheme is not None and self.color_scheme.enabled:
                    text = field.color(text)
                if index == len(row) - 1:
                    padding = ""
                cells.append(text + padding)
            self.out.write(COLUMN_SEPARATOR.join(cells).rstrip() + "\n")

    def _column_widths(self, rows: List[List[_Field]]) -> List[int]:
        columns = max(len(row) for row in rows)
        natural = [0] * columns
        fixed = set()
        for row in rows:
            for index, field in enumerate(row):
                natural[index] = max(natural[index], len(field.text))
                if field.truncate is None:
                    fixed.add(index)

        available = self.max_width - len(COLUMN_SEPARATOR) * (columns - 1)
        if sum(natural) <= available:
            return natural

        widths = list(natural)
        remaining = available - sum(natural[i] for i in fixed)
        pending = sorted((i for i in range(columns) if i not in fixed), key=lambda i: natural[i])
        while pending:
            share = remaining // len(pending)
            first = pending[0]
            if natural[first] <= share:
                widths[first] = natural[first]
                remaining -= natural[first]
                pending.pop(0)
                continue
            for index in pending:
                widths[index] = max(share, MIN_COLUMN_WIDTH)
            break
        return widths


class ListPrinter(Printer):
    """One "Key: Value" line per column, rows separated by a blank line."""

    def render(self):
        rows = self._take_rows()
        for row_index, row in enumerate(rows):
            if row_index > 0:
                self.out.write("\n")
            for index, field in enumerate(row):
                key = self.header[index] if index < len(self.header) else f"col{index}"
                self.out.write(f"{key}: {field.text}\n")


class JSONPrinter(Printer):
    """Rows become objects keyed by column name, emitted as one JSON array."""

    def __init__(self, out, color: bool = False):
        super().__init__(out)
        self.color = color

    def render(self):
        rows = self._take_rows()
        data = []
        for row in rows:
            item = {}
            for index, field in enumerate(row):
                key = self.header[index] if index < len(self.header) else f"col{index}"
                item[key] = field.text
            data.append(item)
        write_json(self.out, data, self.color)
