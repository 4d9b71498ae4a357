"""Small parsing helpers shared by the API, MCP server and importer."""
from __future__ import annotations

import json
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Parse a stored JSON column, returning *default* (``{}`` if omitted) on failure."""
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def split_csv(value: str | None) -> set[str]:
    """``"a, B,,c"`` -> ``{"a", "b", "c"}`` for comma-separated query filters."""
    if not value:
        return set()
    return {part.strip().casefold() for part in value.split(",") if part.strip()}
