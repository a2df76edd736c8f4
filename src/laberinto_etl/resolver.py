"""laberinto_etl.resolver

Cross-reference resolution: turns Airtable record ids carried in link
fields into destination row ids written earlier in the same run.

A miss returns None.  Callers decide whether that skips the dependent
record; nothing here retries or defers.
"""

from __future__ import annotations

from typing import Any

import psycopg
from psycopg import sql

# Tables that carry a source_id back-reference and may be link targets
RESOLVABLE_TABLES = frozenset({"customer", "wine", "location", "experience", "event"})

DEFAULT_LOCATION: dict[str, Any] = {
    "name": "Laberinto Vineyard",
    "type": "VINEYARD",
    "address": "Valle de Uco, Mendoza",
    "city": "Tunuyán",
    "country": "Argentina",
}


def resolve_source_id(
    conn: psycopg.Connection,
    table: str,
    source_id: str | None,
) -> str | None:
    """Return the id of the row in ``table`` imported from ``source_id``."""
    if table not in RESOLVABLE_TABLES:
        raise ValueError(f"table {table!r} has no source_id back-reference")
    if not source_id:
        return None
    row = conn.execute(
        sql.SQL(
            "SELECT id FROM {} WHERE source_id = %s ORDER BY created_at DESC LIMIT 1"
        ).format(sql.Identifier(table)),
        (source_id,),
    ).fetchone()
    return str(row[0]) if row else None


def resolve_customer_by_email(
    conn: psycopg.Connection,
    email: str | None,
) -> str | None:
    if not email:
        return None
    row = conn.execute(
        "SELECT id FROM customer WHERE lower(email) = lower(%s) LIMIT 1",
        (email,),
    ).fetchone()
    return str(row[0]) if row else None


def first_location(conn: psycopg.Connection) -> str | None:
    row = conn.execute(
        "SELECT id FROM location ORDER BY created_at ASC, id ASC LIMIT 1"
    ).fetchone()
    return str(row[0]) if row else None


def default_location(conn: psycopg.Connection) -> str:
    """First location by creation order, creating the vineyard if none exist."""
    location_id = first_location(conn)
    if location_id is not None:
        return location_id
    row = conn.execute(
        """
        INSERT INTO location (name, type, address, city, country)
        VALUES (%(name)s, %(type)s, %(address)s, %(city)s, %(country)s)
        ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id
        """,
        DEFAULT_LOCATION,
    ).fetchone()
    return str(row[0])


def first_experience(conn: psycopg.Connection) -> str | None:
    row = conn.execute(
        "SELECT id FROM experience ORDER BY created_at ASC, id ASC LIMIT 1"
    ).fetchone()
    return str(row[0]) if row else None
