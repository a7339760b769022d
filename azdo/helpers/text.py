"""
Text helpers for rendering durations, relative times and truncated cells.
"""

import re
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import pytz

ELLIPSIS = "..."

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def pluralize(count: int, thing: str) -> str:
    if count == 1:
        return f"{count} {thing}"
    return f"{count} {thing}s"


def _ago(amount: int, unit: str) -> str:
    return f"about {pluralize(amount, unit)} ago"


def fuzzy_ago(now: datetime, then: datetime) -> str:
    """Human readable distance between two instants, rounded down to one unit."""
    now = as_utc(now)
    then = as_utc(then)
    ago = now - then
    if ago < timedelta(minutes=1):
        return "less than a minute ago"
    if ago < timedelta(hours=1):
        return _ago(int(ago.total_seconds() // 60), "minute")
    if ago < timedelta(days=1):
        return _ago(int(ago.total_seconds() // 3600), "hour")
    if ago < timedelta(days=30):
        return _ago(ago.days, "day")
    if ago < timedelta(days=365):
        return _ago(ago.days // 30, "month")
    return _ago(ago.days // 365, "year")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def parse_time(value) -> Optional[datetime]:
    """Parse an ISO 8601 / RFC 3339 timestamp; datetimes pass through."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Azure DevOps emits up to seven fractional digits
    match = re.match(r"^(.*\.\d{6})\d*(.*)$", text)
    if match:
        text = match.group(1) + match.group(2)
    return as_utc(datetime.fromisoformat(text))


def parse_duration(value: str) -> float:
    """
    Parse a duration such as "90s", "5m", "1h30m" into seconds.
    A bare number is read as seconds.
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return float(text)
    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly: 1h2m3s, 1.5s, 250ms."""
    if seconds <= 0:
        return "0s"
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    secs_text = f"{secs:.3f}".rstrip("0").rstrip(".")
    out = ""
    if hours:
        out += f"{int(hours)}h"
    if hours or minutes:
        out += f"{int(minutes)}m"
    return out + f"{secs_text}s"


def truncate(max_width: int, text: str) -> str:
    if len(text) <= max_width:
        return text
    if max_width <= len(ELLIPSIS):
        return text[:max_width]
    return text[: max_width - len(ELLIPSIS)] + ELLIPSIS


def strip_ref(ref_name: Optional[str]) -> str:
    """refs/heads/main -> main"""
    if not ref_name:
        return ""
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref_name.startswith(prefix):
            return ref_name[len(prefix):]
    return ref_name


def branch_ref(branch: str) -> str:
    """main -> refs/heads/main"""
    branch = branch.strip()
    if not branch or branch.startswith("refs/"):
        return branch
    return f"refs/heads/{branch}"


def split_comma_values(values: Optional[Iterable[str]]) -> List[str]:
    """Flatten repeated and comma separated flag values, dropping blanks."""
    result = []
    for value in values or []:
        for part in str(value).split(","):
            part = part.strip()
            if part:
                result.append(part)
    return result


def format_slice(items: Iterable[str], line_length: int = 80, indent: int = 0, sort: bool = False) -> str:
    """Join items with ", " wrapping at line_length."""
    items = list(items)
    if sort:
        items = sorted(items, key=str.lower)
    lines = []
    current = " " * indent
    for index, item in enumerate(items):
        piece = item + ("," if index < len(items) - 1 else "")
        if current.strip() and len(current) + 1 + len(piece) > line_length:
            lines.append(current.rstrip())
            current = " " * indent
        current += (" " if current.strip() else "") + piece
    if current.strip():
        lines.append(current.rstrip())
    return "\n".join(lines)
