"""Normalization functions for Airtable export ingestion.

Airtable exports carry loosely typed field values: numbers arrive as
strings or numbers, link and lookup fields arrive as lists. All functions
accept ``Any`` (or ``str | None``) and return the appropriate type or None.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: Any) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None.

    Non-string scalars are stringified first so numeric fields can be trimmed
    the same way as text fields.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: Any) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: slugify
# ---------------------------------------------------------------------------

def slugify(value: Any) -> str | None:
    """Lowercase; every run of characters outside [a-z0-9] becomes one '-'.

    Leading/trailing hyphens are stripped. Accented letters are not folded:
    'Carménère' becomes 'carm-n-re'.
    """
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"[^a-z0-9]+", "-", v.lower())
    v = v.strip("-")
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 4: first_value  (lookup fields arrive as lists)
# ---------------------------------------------------------------------------

def first_value(value: Any) -> Any:
    """Return the first non-blank element of a list field, or the value itself."""
    if isinstance(value, (list, tuple)):
        for item in value:
            if trim(item) is not None:
                return item
        return None
    return value


# ---------------------------------------------------------------------------
# Rule 5: parse_decimal / parse_int
# ---------------------------------------------------------------------------

def parse_decimal(value: Any, default: Decimal | None = None) -> Decimal | None:
    """Parse a decimal amount, returning ``default`` on blank or bad input.

    Booleans are rejected; Airtable checkbox fields are not amounts.
    """
    if isinstance(value, bool):
        return default
    v = trim(first_value(value))
    if v is None:
        return default
    try:
        d = Decimal(v)
    except InvalidOperation:
        return default
    return d if d.is_finite() else default


def parse_int(value: Any, default: int | None = None) -> int | None:
    """Parse a whole number; '90.0' → 90, 'abc' → default."""
    d = parse_decimal(value)
    if d is None:
        return default
    return int(d)


# ---------------------------------------------------------------------------
# Rule 6: parse_ts
# ---------------------------------------------------------------------------

def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp or date as exported by Airtable.

    '2024-03-01T15:00:00.000Z' → aware UTC datetime.  Naive values are
    assumed to be UTC.  Returns None on blank or unparseable input.
    """
    v = trim(first_value(value))
    if v is None:
        return None
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(v)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Helper: join_name
# ---------------------------------------------------------------------------

def join_name(first: Any, last: Any) -> str | None:
    """Join first and last name parts, skipping blanks."""
    parts = [p for p in (normalize_space(first), normalize_space(last)) if p]
    return " ".join(parts) if parts else None
