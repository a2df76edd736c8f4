"""laberinto_etl.mappers

Per-entity field mapping from Airtable source records to destination
column values.

Each ``map_*`` function is pure: it takes one SourceRecord and returns a
dict keyed by destination column, raising SkipRecord when a field needed
for the row's key is missing.  Cross-references are returned as raw
Airtable record ids (``*_link`` keys); resolving them is the importer's job.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from laberinto_etl.export_reader import SourceRecord
from laberinto_etl.normalize import (
    first_value,
    join_name,
    normalize_space,
    parse_decimal,
    parse_int,
    parse_ts,
    slugify,
    trim,
)
from laberinto_etl.shared import SkipRecord


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PLACEHOLDER_EMAIL_DOMAIN = "laberinto-temp.com"

DEFAULT_PRODUCER = "Laberinto"
DEFAULT_LOCATION_TYPE = "Unknown"
DEFAULT_COUNTRY = "Chile"
DEFAULT_EXPERIENCE_DURATION = 120
DEFAULT_EXPERIENCE_CAPACITY = 15
DEFAULT_GROUP_SIZE = 2
ZERO = Decimal("0")

# Source vocabulary → destination enum.  Keys are casefolded.
EXPERIENCE_TYPES: dict[str, str] = {
    "privada":    "PRIVATE_TASTING",
    "grupal":     "GROUP_TASTING",
    "compartida": "GROUP_TASTING",
    "tour":       "WINE_TOUR",
}
DEFAULT_EXPERIENCE_TYPE = "WINE_TASTING"

EVENT_STATUSES: dict[str, str] = {
    "pasado":     "COMPLETED",
    "completado": "COMPLETED",
    "cancelado":  "CANCELLED",
    "confirmado": "CONFIRMED",
}
DEFAULT_EVENT_STATUS = "SCHEDULED"

# Standard extras offered with every booking; not part of the Airtable base
STANDARD_EXTRAS: list[dict[str, Any]] = [
    {
        "name": "Almuerzo Premium",
        "description": "Almuerzo de 3 tiempos maridado con nuestros vinos",
        "price": Decimal("35000"),
        "category": "food",
    },
    {
        "name": "Tabla de Quesos",
        "description": "Selección de quesos artesanales chilenos",
        "price": Decimal("15000"),
        "category": "food",
    },
    {
        "name": "Transporte desde Santiago",
        "description": "Transporte ida y vuelta desde Santiago",
        "price": Decimal("25000"),
        "category": "transport",
    },
    {
        "name": "Humitas y Empanaditas",
        "description": "Comida local tradicional chilena",
        "price": Decimal("12000"),
        "category": "food",
    },
]


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def lookup_enum(value: Any, table: dict[str, str], default: str) -> str:
    """Map a source vocabulary value through ``table``; unmapped → default."""
    v = trim(first_value(value))
    if v is None:
        return default
    return table.get(v.casefold(), default)


def placeholder_email(source_id: str) -> str:
    return f"{source_id}@{PLACEHOLDER_EMAIL_DOMAIN}"


def _text(record: SourceRecord, *names: str) -> str | None:
    """First non-blank value among ``names``."""
    for name in names:
        v = trim(first_value(record.get(name)))
        if v is not None:
            return v
    return None


def _amount(record: SourceRecord, *names: str) -> Decimal:
    """First parseable amount among ``names``; 0 when none parses."""
    for name in names:
        d = parse_decimal(record.get(name))
        if d is not None:
            return d
    return ZERO


def _positive_int(value: Any, default: int) -> int:
    """Parsed whole number, or ``default`` when missing, zero or negative."""
    n = parse_int(value)
    return n if n is not None and n > 0 else default


def _links(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [v for v in (trim(item) for item in value) if v]


# ---------------------------------------------------------------------------
# Customers (Contactos)
# ---------------------------------------------------------------------------

def map_customer(record: SourceRecord) -> dict[str, Any]:
    email = _text(record, "Correo Electrónico")
    first_name = normalize_space(record.get("Nombre"))
    last_name = normalize_space(record.get("Apellido"))
    name = normalize_space(record.get("Nombre Completo")) or join_name(first_name, last_name)

    if email is None and name is None:
        raise SkipRecord(f"customer {record.source_id}: no email and no name")

    if email is None:
        email = placeholder_email(record.source_id)

    return {
        "source_id": record.source_id,
        "email": email,
        "name": name or email,
        "first_name": first_name,
        "last_name": last_name,
        "phone": _text(record, "Número de Teléfono"),
        "rut": _text(record, "RUT"),
    }


# ---------------------------------------------------------------------------
# Wines (Vinos)
# ---------------------------------------------------------------------------

def map_wine(record: SourceRecord) -> dict[str, Any]:
    name = normalize_space(record.get("Vinos"))
    if name is None:
        raise SkipRecord(f"wine {record.source_id}: missing name")
    slug = slugify(name)
    if slug is None:
        raise SkipRecord(f"wine {record.source_id}: name {name!r} yields an empty slug")

    return {
        "source_id": record.source_id,
        "name": name,
        "code": _text(record, "Código") or record.source_id,
        "slug": slug,
        "producer": _text(record, "Productor") or DEFAULT_PRODUCER,
        "base_price": parse_decimal(record.get("Precio"), ZERO),
        "description": _text(
            record, "Notas de Cata", "Descripción", "Características Generales"
        ),
        "tasting_notes": _text(record, "Resumen de Características"),
        "pairing_notes": _text(record, "Recomendación de Maridaje"),
        "barcode": _text(record, "Barcode"),
    }


# ---------------------------------------------------------------------------
# Locations (Locaciones)
# ---------------------------------------------------------------------------

def map_location(record: SourceRecord) -> dict[str, Any]:
    name = normalize_space(record.get("Location Name"))
    if name is None:
        raise SkipRecord(f"location {record.source_id}: missing name")
    return {
        "source_id": record.source_id,
        "name": name,
        "type": _text(record, "Type") or DEFAULT_LOCATION_TYPE,
        "address": _text(record, "Address"),
        "city": _text(record, "City"),
        "country": _text(record, "Country") or DEFAULT_COUNTRY,
    }


# ---------------------------------------------------------------------------
# Experiences (Experiencias)
# ---------------------------------------------------------------------------

def map_experience(record: SourceRecord) -> dict[str, Any]:
    name = normalize_space(record.get("Experiencia"))
    if name is None:
        raise SkipRecord(f"experience {record.source_id}: missing name")
    slug = slugify(name)
    if slug is None:
        raise SkipRecord(f"experience {record.source_id}: name {name!r} yields an empty slug")

    modalidad = record.get("Modalidad")
    return {
        "source_id": record.source_id,
        "name": name,
        "slug": slug,
        "type": lookup_enum(modalidad, EXPERIENCE_TYPES, DEFAULT_EXPERIENCE_TYPE),
        "description": _text(record, "Descripción", "Descripción larga"),
        "duration_minutes": _positive_int(
            record.get("Duración en minutos"), DEFAULT_EXPERIENCE_DURATION
        ),
        "max_participants": parse_int(
            record.get("Máximo de participantes"), DEFAULT_EXPERIENCE_CAPACITY
        ),
        "base_price": _amount(record, "Precio", "Precio base"),
        "location_link": first_value(_links(record.get("Locación"))),
        "metadata": {
            "airtableId": record.source_id,
            "modalidad": modalidad,
            "includes": record.get("Incluye"),
            "restrictions": record.get("Restricciones"),
        },
    }


# ---------------------------------------------------------------------------
# Events (Eventos)
# ---------------------------------------------------------------------------

def map_event(record: SourceRecord) -> dict[str, Any]:
    """Map an event; ``end_time`` and ``max_capacity`` may be None.

    Both fall back to the linked experience, which only the importer knows.
    """
    title = normalize_space(record.get("Evento"))
    if title is None:
        raise SkipRecord(f"event {record.source_id}: missing title")
    start_time = parse_ts(record.get("Fecha y hora de inicio"))
    if start_time is None:
        raise SkipRecord(f"event {record.source_id}: missing or invalid start time")

    status_raw = record.get("Estado Evento") or record.get("Estado")
    return {
        "source_id": record.source_id,
        "title": title,
        "start_time": start_time,
        "end_time": parse_ts(
            record.get("Fecha y Hora término") or record.get("Fecha Hora término")
        ),
        "max_capacity": parse_int(record.get("Asistentes")) or None,
        "status": lookup_enum(status_raw, EVENT_STATUSES, DEFAULT_EVENT_STATUS),
        "price_override": parse_decimal(record.get("Precio")),
        "experience_link": first_value(_links(record.get("Experiencia"))),
        "metadata": {
            "airtableId": record.source_id,
            "activities": record.get("Actividades Seleccionadas"),
            "badge": record.get("Badge"),
            "notes": record.get("Notas Internas"),
        },
    }


# ---------------------------------------------------------------------------
# Products (Productos)
# ---------------------------------------------------------------------------

def map_product(record: SourceRecord) -> dict[str, Any]:
    name = normalize_space(record.get("Name"))
    if name is None:
        raise SkipRecord(f"product {record.source_id}: missing name")
    price = parse_decimal(record.get("Precio (from Vino)"))
    if price is None:
        raise SkipRecord(f"product {record.source_id}: no wine price reference")
    return {
        "source_id": record.source_id,
        "name": normalize_space(record.get("Nombre Vino")) or name,
        "description": f"Wine product: {name}",
        "price": price,
        "category": "wine",
        "wine_link": first_value(_links(record.get("Vino"))),
    }


def standard_extra_rows() -> list[dict[str, Any]]:
    return [
        {**extra, "source_id": f"standard-{slugify(extra['name'])}", "wine_link": None}
        for extra in STANDARD_EXTRAS
    ]


# ---------------------------------------------------------------------------
# Wine sales (Venta de Vinos)
# ---------------------------------------------------------------------------

def map_sale(record: SourceRecord) -> dict[str, Any]:
    return {
        "source_id": record.source_id,
        "customer_link": first_value(_links(record.get("Cliente"))),
        "total_amount": parse_decimal(record.get("Total de la Venta"), ZERO),
        "sale_date": parse_ts(record.get("Fecha de Venta")) or record.created_at,
        "status": "COMPLETED",
        "notes": _text(record, "Número de Venta"),
        "wine_links": _links(record.get("Vinos")),
    }


# ---------------------------------------------------------------------------
# Bookings (Reservas)
# ---------------------------------------------------------------------------

def derive_booking_status(estado: Any, total: Decimal, paid: Decimal) -> str:
    v = (trim(first_value(estado)) or "").casefold()
    if "realizada" in v:
        return "COMPLETED"
    if "abandonada" in v:
        return "CANCELLED"
    if total > 0 and paid >= total:
        return "PAID"
    if paid > 0:
        return "PARTIALLY_PAID"
    return "PENDING"


def map_booking(record: SourceRecord) -> dict[str, Any]:
    total = _amount(record, "Total a pagar grupo final", "Precio Total Hipotético")
    paid = parse_decimal(record.get("Pagado Total"), ZERO)

    return {
        "source_id": record.source_id,
        "organizer_email": _text(record, "Correo Lider (from Grupo)"),
        "event_link": first_value(_links(record.get("Evento"))),
        "total_participants": _positive_int(
            record.get("Tamaño Grupo (from Grupo)"), DEFAULT_GROUP_SIZE
        ),
        "adults_count": _positive_int(record.get("Bebedores"), DEFAULT_GROUP_SIZE),
        "children_count": parse_int(record.get("Niños menores de 12 (Reserva)"), 0),
        "non_drinkers_count": parse_int(record.get("No Beben mayores de 12"), 0),
        "subtotal": total,
        "total_amount": total,
        "status": derive_booking_status(record.get("Estado"), total, paid),
        "special_requests": _text(record, "Notas Especiales"),
        "notes": _text(record, "Observaciones"),
        "metadata": {
            "airtableId": record.source_id,
            "reservaId": record.get("Reserva ID"),
            "progreso": record.get("Progreso"),
            "descuentos": record.get("Total Descuentos"),
            "abono": record.get("Abono"),
            "paid": str(paid),
        },
    }
