"""
JSON projection pipeline behind --json, --jq and --template.

Order of processing: model -> plain JSON -> field projection -> jq -> template.
"""

import io
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List

import jinja2
import jq
from msrest.serialization import Model, last_restapi_key_transformer

from ..cli.errors import AzdoError
from .iostreams import ColorScheme
from .printer import TablePrinter, write_json
from .text import fuzzy_ago, parse_time, truncate, utc_now

logger = logging.getLogger(__name__)


def to_plain(value: Any) -> Any:
    """Convert SDK models, datetimes and containers into JSON compatible values."""
    if isinstance(value, Model):
        return to_plain(value.as_dict(keep_readonly=True, key_transformer=last_restapi_key_transformer))
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (list, dict)) and len(value) == 0)


def filter_fields(data: Any, fields: List[str]) -> Any:
    """
    Keep only the requested top-level keys, matched case-insensitively.
    Unset values are omitted.
    """
    if isinstance(data, list):
        return [filter_fields(item, fields) for item in data]
    if not isinstance(data, dict):
        return data
    lowered = {key.lower(): key for key in data}
    result = {}
    for field in fields:
        key = lowered.get(field.lower())
        if key is None or _is_empty(data[key]):
            continue
        result[field] = data[key]
    return result


class TemplateFunctions:
    """Functions available inside --template."""

    def __init__(self, ios):
        self.ios = ios
        self.color_scheme = ios.color_scheme()
        self._buffer = io.StringIO()
        self._table = TablePrinter(
            self._buffer, ios.is_stdout_tty(), ios.terminal_width(), self.color_scheme)
        self._pending_rows = False

    def autocolor(self, style: str, text) -> str:
        if not self.ios.color_enabled():
            return str(text)
        return self.color(style, text)

    def color(self, style: str, text) -> str:
        return ColorScheme(True).color_from_string(style)(text)

    def join(self, separator: str, items) -> str:
        return separator.join(str(item) for item in items or [])

    def pluck(self, field: str, items) -> List[Any]:
        return [item.get(field) for item in items or [] if isinstance(item, dict)]

    def tablerow(self, *fields) -> str:
        for value in fields:
            self._table.add_field(value)
        self._table.end_row()
        self._pending_rows = True
        return ""

    def tablerender(self) -> str:
        self._table.render()
        self._pending_rows = False
        text = self._buffer.getvalue()
        self._buffer.seek(0)
        self._buffer.truncate()
        return text

    def timeago(self, value) -> str:
        then = parse_time(value)
        if then is None:
            return ""
        return fuzzy_ago(utc_now(), then)

    def timefmt(self, fmt: str, value) -> str:
        then = parse_time(value)
        if then is None:
            return ""
        return then.strftime(fmt)

    def truncate(self, length: int, text) -> str:
        return truncate(int(length), str(text or ""))

    def hyperlink(self, link: str, text: str = "") -> str:
        text = text or link
        if not self.ios.is_stdout_tty():
            return text
        return f"\x1b]8;;{link}\x1b\\{text}\x1b]8;;\x1b\\"

    def as_globals(self) -> Dict[str, Any]:
        return {
            "autocolor": self.autocolor,
            "color": self.color,
            "join": self.join,
            "pluck": self.pluck,
            "tablerow": self.tablerow,
            "tablerender": self.tablerender,
            "timeago": self.timeago,
            "timefmt": self.timefmt,
            "truncate": self.truncate,
            "hyperlink": self.hyperlink,
        }


def render_template(ios, template: str, data: Any) -> str:
    functions = TemplateFunctions(ios)
    environment = jinja2.Environment(keep_trailing_newline=True, autoescape=False)
    environment.globals.update(functions.as_globals())
    try:
        compiled = environment.from_string(template)
        context = dict(data) if isinstance(data, dict) else {}
        context["data"] = data
        output = compiled.render(**context)
    except jinja2.TemplateError as e:
        raise AzdoError(f"template error: {e}") from e
    if functions._pending_rows:
        output += functions.tablerender()
    return output


def run_jq(expression: str, data: Any) -> List[Any]:
    try:
        program = jq.compile(expression)
    except ValueError as e:
        raise AzdoError(f"invalid jq expression: {e}") from e
    try:
        return program.input_value(data).all()
    except ValueError as e:
        raise AzdoError(f"jq error: {e}") from e


class Exporter:
    """Writes command data as filtered JSON."""

    def __init__(self, fields: List[str], jq_expression: str = "", template: str = ""):
        self._fields = list(fields)
        self.jq_expression = jq_expression or ""
        self.template = template or ""

    def fields(self) -> List[str]:
        return list(self._fields)

    def write(self, ios, data: Any):
        projected = filter_fields(to_plain(data), self._fields)
        out = ios.out

        if self.jq_expression:
            results = run_jq(self.jq_expression, projected)
            if not self.template:
                for result in results:
                    if isinstance(result, str):
                        out.write(result + "\n")
                    else:
                        out.write(json.dumps(result, ensure_ascii=False) + "\n")
                return
            projected = results[0] if len(results) == 1 else results

        if self.template:
            out.write(render_template(ios, self.template, projected))
            return

        write_json(out, projected, color=ios.color_enabled())

