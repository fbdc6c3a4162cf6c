"""Tolerant parsers for the value encodings found in the legacy tables.

None of the functions here raise on bad input: unparseable values come back
as `None` (or an empty string for time fragments) and the caller applies its
default.
"""
from __future__ import annotations

import json
import re
import unicodedata
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


_PHP_STRING_RE = re.compile(r's:\d+:"([^"]+)"')
_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_AMPM_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.IGNORECASE)
_HOUR_RE = re.compile(r"^(\d{1,2})$")
_RANGE_RE = re.compile(r"^(.+?)\s*[-–]\s*(.+)$")

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y%m%d",
    "%m/%d/%Y",
)
_ZERO_DATES = {"", "0000-00-00", "0000-00-00 00:00:00"}


# --- serialized values ----------------------------------------------------------


def _php_array_values(raw: str) -> list[Any] | None:
    """Decode a flat PHP `serialize()` array into its values (keys dropped)."""
    open_at = raw.find("{")
    close_at = raw.rfind("}")
    if open_at < 0 or close_at < open_at:
        return None
    data = raw[open_at + 1 : close_at].encode("utf-8")
    tokens: list[Any] = []
    pos = 0
    while pos < len(data):
        kind = data[pos : pos + 1]
        if kind == b"s":
            colon = data.index(b":", pos + 2)
            length = int(data[pos + 2 : colon])
            start = colon + 2
            tokens.append(data[start : start + length].decode("utf-8", "replace"))
            pos = start + length + 2
        elif kind in (b"i", b"d", b"b"):
            end = data.index(b";", pos)
            literal = data[pos + 2 : end].decode("ascii")
            if kind == b"i":
                tokens.append(int(literal))
            elif kind == b"d":
                tokens.append(float(literal))
            else:
                tokens.append(literal == "1")
            pos = end + 1
        elif kind == b"N":
            tokens.append(None)
            pos += 2
        else:
            # nested arrays/objects are not used by the plugin meta we read
            return None
    return tokens[1::2]


def parse_serialized(value: Any) -> Any:
    """Decode a meta value stored as JSON or as a PHP serialized array.

    JSON wins; PHP arrays (`a:N:{...}`) yield the list of their values; strings
    that are neither come back as `None`, meaning "field absent".
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    if text.startswith("a:"):
        try:
            values = _php_array_values(text)
        except (ValueError, IndexError):
            values = None
        if values is None:
            values = _PHP_STRING_RE.findall(text)
        return values
    return None


def as_id_list(value: Any) -> list[int]:
    """Coerce a serialized id collection into a list of positive integers."""
    decoded = parse_serialized(value)
    if decoded is None:
        return []
    if isinstance(decoded, dict):
        decoded = list(decoded.values())
    if not isinstance(decoded, list):
        decoded = [decoded]
    ids: list[int] = []
    for item in decoded:
        parsed = to_int(item)
        if parsed is not None and parsed > 0:
            ids.append(parsed)
    return ids


# --- scalars ----------------------------------------------------------------------


def to_int(value: Any, default: int | None = None) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return default


def to_float(value: Any, default: float | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def to_flag(value: Any) -> bool:
    """Interpret tinyint/string flags (`1`, `"1"`) as booleans."""
    return to_int(value) == 1


def blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def split_lines(value: Any) -> list[str]:
    if not value:
        return []
    return [line.strip() for line in str(value).splitlines() if line.strip()]


def slugify(text: str) -> str:
    """URL slug: lowercase ASCII, diacritics stripped, non-alphanumerics collapsed to '-'."""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "-", stripped).strip("-")


# --- dates & times ------------------------------------------------------------------


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if value is None:
        return None
    text = str(value).strip()
    if text in _ZERO_DATES:
        return None
    if text.isdigit() and len(text) >= 9:
        # WooCommerce stores some dates (e.g. _date_completed) as unix timestamps
        try:
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_wp_date(value: Any) -> str | None:
    """Return an ISO-8601 timestamp (naive values are taken as UTC) or `None`."""
    parsed = _coerce_datetime(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def format_day(value: Any) -> str | None:
    """Return `YYYY-MM-DD` for any accepted date encoding, else `None`."""
    parsed = _coerce_datetime(value)
    return parsed.date().isoformat() if parsed else None


def format_time(value: Any) -> str | None:
    """Normalize `H:MM`, `HH:MM:SS` or a MySQL TIME (timedelta) to `HH:MM:00`."""
    if value is None:
        return None
    if isinstance(value, timedelta):
        minutes = int(value.total_seconds()) // 60
        return f"{(minutes // 60) % 24:02d}:{minutes % 60:02d}:00"
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}:00"
    match = _CLOCK_RE.match(str(value).strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}:00"


def parse_time_to_hhmm(value: Any) -> str:
    """Extract a 24h `HH:MM` start time from free-form schedule text.

    `"9:00 AM - 10:30 AM"` → `"09:00"`, `"14:30"` → `"14:30"`, `"2"` → `"02:00"`.
    Anything unrecognized yields `""`.
    """
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    match = _HHMM_RE.match(text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"
    match = _AMPM_RE.search(text)
    if match:
        hours = int(match.group(1))
        minutes = match.group(2) or "00"
        meridiem = match.group(3).lower()
        if meridiem == "pm" and hours < 12:
            hours += 12
        if meridiem == "am" and hours == 12:
            hours = 0
        return f"{hours:02d}:{minutes}"
    match = _HOUR_RE.match(text)
    if match:
        return f"{int(match.group(1)):02d}:00"
    match = _RANGE_RE.match(text)
    if match:
        return parse_time_to_hhmm(match.group(1))
    return ""


def parse_end_time(value: Any) -> str:
    """Return the `HH:MM` end of a time range such as `"9:00 AM – 10:30 AM"`."""
    if value is None:
        return ""
    match = _RANGE_RE.match(str(value).strip())
    if not match:
        return ""
    return parse_time_to_hhmm(match.group(2))


__all__ = [
    "as_id_list",
    "blank_to_none",
    "format_day",
    "format_time",
    "format_wp_date",
    "parse_end_time",
    "parse_serialized",
    "parse_time_to_hhmm",
    "slugify",
    "split_lines",
    "to_float",
    "to_flag",
    "to_int",
]
