"""Shared utility functions used across PitchDesk modules."""
from __future__ import annotations

import json
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def to_text(value: object) -> str:
    """Coerce a cell or form value to a stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def to_year(value: object) -> int | None:
    """Coerce a cell value to a year, None if missing or unparseable."""
    text = to_text(value)
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None
