"""laberinto_etl.store

Destination writes.  Entities with a natural key (customer email, wine
code, location name, experience slug) are upserted and overwrite their
mutable columns on conflict; events, products, sales and bookings are
inserted unconditionally.  Callers own the transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

DEFAULT_REGION = {"name": "Chile - General", "country": "Chile"}
DEFAULT_CATEGORY = {"name": "Vino Tinto", "slug": "vino-tinto"}

# Reverse dependency order: children before the rows they reference
CLEAR_ORDER = [
    "wine_sale_item",
    "wine_sale",
    "booking",
    "event",
    "experience",
    "product",
    "location",
    "wine",
    "customer",
]


def _columns(data: dict[str, Any], keys: list[str]) -> dict[str, Any]:
    out = {k: data.get(k) for k in keys}
    if "metadata" in out and out["metadata"] is not None:
        out["metadata"] = Jsonb(out["metadata"])
    return out


# ---------------------------------------------------------------------------
# Clear step
# ---------------------------------------------------------------------------

def clear_destination(conn: psycopg.Connection) -> dict[str, int]:
    """Delete every imported row; returns deleted row counts per table."""
    deleted: dict[str, int] = {}
    for table in CLEAR_ORDER:
        cur = conn.execute(f"DELETE FROM {table}")
        deleted[table] = cur.rowcount
    return deleted


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def ensure_default_region(conn: psycopg.Connection) -> str:
    row = conn.execute(
        """
        INSERT INTO wine_region (name, country)
        VALUES (%(name)s, %(country)s)
        ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id
        """,
        DEFAULT_REGION,
    ).fetchone()
    return str(row[0])


def ensure_default_category(conn: psycopg.Connection) -> str:
    row = conn.execute(
        """
        INSERT INTO wine_category (name, slug)
        VALUES (%(name)s, %(slug)s)
        ON CONFLICT (slug) DO UPDATE SET slug = EXCLUDED.slug
        RETURNING id
        """,
        DEFAULT_CATEGORY,
    ).fetchone()
    return str(row[0])


# ---------------------------------------------------------------------------
# Natural-key upserts
# ---------------------------------------------------------------------------

def upsert_customer(conn: psycopg.Connection, data: dict[str, Any]) -> str:
    row = conn.execute(
        """
        INSERT INTO customer
          (source_id, email, name, first_name, last_name, phone, rut)
        VALUES (%(source_id)s, %(email)s, %(name)s, %(first_name)s,
                %(last_name)s, %(phone)s, %(rut)s)
        ON CONFLICT (email) DO UPDATE SET
          source_id  = EXCLUDED.source_id,
          name       = EXCLUDED.name,
          first_name = EXCLUDED.first_name,
          last_name  = EXCLUDED.last_name,
          phone      = EXCLUDED.phone,
          rut        = EXCLUDED.rut,
          updated_at = now()
        RETURNING id
        """,
        _columns(data, [
            "source_id", "email", "name", "first_name", "last_name", "phone", "rut",
        ]),
    ).fetchone()
    return str(row[0])


_WINE_COLUMNS = [
    "source_id", "code", "slug", "name", "producer", "base_price",
    "description", "tasting_notes", "pairing_notes", "barcode",
    "category_id", "region_id",
]


def upsert_wine(
    conn: psycopg.Connection,
    data: dict[str, Any],
    category_id: str,
    region_id: str,
) -> str:
    """Upsert by code; a row with the same slug is overwritten otherwise.

    Two source wines whose names slugify identically end up as one row
    holding whichever was written last.  When the code matches one row and
    the slug another, the slug holder is dropped so the update can take
    its slug.
    """
    params = _columns({**data, "category_id": category_id, "region_id": region_id},
                      _WINE_COLUMNS)
    by_code = conn.execute(
        "SELECT id FROM wine WHERE code = %(code)s", params
    ).fetchone()
    by_slug = conn.execute(
        "SELECT id FROM wine WHERE slug = %(slug)s", params
    ).fetchone()

    if by_code and by_slug and by_code[0] != by_slug[0]:
        conn.execute("DELETE FROM wine WHERE id = %s", (by_slug[0],))
    existing = by_code or by_slug

    if existing:
        conn.execute(
            """
            UPDATE wine SET
              source_id = %(source_id)s, code = %(code)s, slug = %(slug)s,
              name = %(name)s, producer = %(producer)s,
              base_price = %(base_price)s, description = %(description)s,
              tasting_notes = %(tasting_notes)s,
              pairing_notes = %(pairing_notes)s, barcode = %(barcode)s,
              category_id = %(category_id)s, region_id = %(region_id)s,
              is_active = true, updated_at = now()
            WHERE id = %(id)s
            """,
            {**params, "id": existing[0]},
        )
        return str(existing[0])

    row = conn.execute(
        """
        INSERT INTO wine
          (source_id, code, slug, name, producer, base_price, description,
           tasting_notes, pairing_notes, barcode, category_id, region_id)
        VALUES (%(source_id)s, %(code)s, %(slug)s, %(name)s, %(producer)s,
                %(base_price)s, %(description)s, %(tasting_notes)s,
                %(pairing_notes)s, %(barcode)s, %(category_id)s, %(region_id)s)
        RETURNING id
        """,
        params,
    ).fetchone()
    return str(row[0])


def upsert_location(conn: psycopg.Connection, data: dict[str, Any]) -> str:
    row = conn.execute(
        """
        INSERT INTO location (source_id, name, type, address, city, country)
        VALUES (%(source_id)s, %(name)s, %(type)s, %(address)s,
                %(city)s, %(country)s)
        ON CONFLICT (name) DO UPDATE SET
          source_id = EXCLUDED.source_id,
          type      = EXCLUDED.type,
          address   = EXCLUDED.address,
          city      = EXCLUDED.city,
          country   = EXCLUDED.country
        RETURNING id
        """,
        _columns(data, ["source_id", "name", "type", "address", "city", "country"]),
    ).fetchone()
    return str(row[0])


def upsert_experience(
    conn: psycopg.Connection,
    data: dict[str, Any],
    location_id: str,
) -> str:
    row = conn.execute(
        """
        INSERT INTO experience
          (source_id, slug, name, type, description, duration_minutes,
           max_participants, base_price, location_id, metadata)
        VALUES (%(source_id)s, %(slug)s, %(name)s, %(type)s, %(description)s,
                %(duration_minutes)s, %(max_participants)s, %(base_price)s,
                %(location_id)s, %(metadata)s)
        ON CONFLICT (slug) DO UPDATE SET
          source_id        = EXCLUDED.source_id,
          name             = EXCLUDED.name,
          type             = EXCLUDED.type,
          description      = EXCLUDED.description,
          duration_minutes = EXCLUDED.duration_minutes,
          max_participants = EXCLUDED.max_participants,
          base_price       = EXCLUDED.base_price,
          location_id      = EXCLUDED.location_id,
          metadata         = EXCLUDED.metadata,
          updated_at       = now()
        RETURNING id
        """,
        _columns({**data, "location_id": location_id}, [
            "source_id", "slug", "name", "type", "description",
            "duration_minutes", "max_participants", "base_price",
            "location_id", "metadata",
        ]),
    ).fetchone()
    return str(row[0])


# ---------------------------------------------------------------------------
# Lookups used while building dependent rows
# ---------------------------------------------------------------------------

def get_experience_defaults(
    conn: psycopg.Connection,
    experience_id: str,
) -> tuple[str, int, int]:
    """Return (location_id, duration_minutes, max_participants)."""
    row = conn.execute(
        "SELECT location_id, duration_minutes, max_participants FROM experience WHERE id = %s",
        (experience_id,),
    ).fetchone()
    return str(row[0]), row[1], row[2]


def get_wine_price(conn: psycopg.Connection, wine_id: str) -> Decimal:
    row = conn.execute("SELECT base_price FROM wine WHERE id = %s", (wine_id,)).fetchone()
    return row[0]


# ---------------------------------------------------------------------------
# Unconditional inserts
# ---------------------------------------------------------------------------

def insert_event(conn: psycopg.Connection, data: dict[str, Any]) -> str:
    row = conn.execute(
        """
        INSERT INTO event
          (source_id, title, experience_id, location_id, start_time, end_time,
           max_capacity, status, price_override, metadata)
        VALUES (%(source_id)s, %(title)s, %(experience_id)s, %(location_id)s,
                %(start_time)s, %(end_time)s, %(max_capacity)s, %(status)s,
                %(price_override)s, %(metadata)s)
        RETURNING id
        """,
        _columns(data, [
            "source_id", "title", "experience_id", "location_id", "start_time",
            "end_time", "max_capacity", "status", "price_override", "metadata",
        ]),
    ).fetchone()
    return str(row[0])


def insert_product(
    conn: psycopg.Connection,
    data: dict[str, Any],
    wine_id: str | None = None,
) -> str:
    row = conn.execute(
        """
        INSERT INTO product (source_id, name, description, price, category, wine_id)
        VALUES (%(source_id)s, %(name)s, %(description)s, %(price)s,
                %(category)s, %(wine_id)s)
        RETURNING id
        """,
        _columns({**data, "wine_id": wine_id}, [
            "source_id", "name", "description", "price", "category", "wine_id",
        ]),
    ).fetchone()
    return str(row[0])


def insert_sale(
    conn: psycopg.Connection,
    data: dict[str, Any],
    customer_id: str,
) -> str:
    row = conn.execute(
        """
        INSERT INTO wine_sale
          (source_id, customer_id, total_amount, sale_date, status, notes)
        VALUES (%(source_id)s, %(customer_id)s, %(total_amount)s,
                %(sale_date)s, %(status)s, %(notes)s)
        RETURNING id
        """,
        _columns({**data, "customer_id": customer_id}, [
            "source_id", "customer_id", "total_amount", "sale_date", "status", "notes",
        ]),
    ).fetchone()
    return str(row[0])


def insert_sale_item(
    conn: psycopg.Connection,
    sale_id: str,
    wine_id: str,
    source_id: str,
    unit_price: Decimal,
    quantity: int = 1,
) -> str:
    row = conn.execute(
        """
        INSERT INTO wine_sale_item
          (source_id, sale_id, wine_id, quantity, unit_price, total_price)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (source_id, sale_id, wine_id, quantity, unit_price, unit_price * quantity),
    ).fetchone()
    return str(row[0])


def insert_booking(
    conn: psycopg.Connection,
    data: dict[str, Any],
    organizer_id: str,
    event_id: str,
) -> str:
    row = conn.execute(
        """
        INSERT INTO booking
          (source_id, organizer_id, event_id, total_participants, adults_count,
           children_count, non_drinkers_count, subtotal, total_amount, status,
           special_requests, notes, metadata)
        VALUES (%(source_id)s, %(organizer_id)s, %(event_id)s,
                %(total_participants)s, %(adults_count)s, %(children_count)s,
                %(non_drinkers_count)s, %(subtotal)s, %(total_amount)s,
                %(status)s, %(special_requests)s, %(notes)s, %(metadata)s)
        RETURNING id
        """,
        _columns({**data, "organizer_id": organizer_id, "event_id": event_id}, [
            "source_id", "organizer_id", "event_id", "total_participants",
            "adults_count", "children_count", "non_drinkers_count", "subtotal",
            "total_amount", "status", "special_requests", "notes", "metadata",
        ]),
    ).fetchone()
    return str(row[0])
