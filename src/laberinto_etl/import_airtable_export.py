"""laberinto_etl.import_airtable_export

Airtable export → PostgreSQL import (the Laberinto booking schema).

Processes one JSON file per Airtable table in dependency order:
  customers → wines → locations → experiences → events → products → sales
  → bookings

Every run starts by clearing the destination tables, so reruns against
the same export end with the same rows even though events, products,
sales and bookings are inserted unconditionally.

Each record is written inside its own SAVEPOINT.  A record that cannot be
mapped, whose link cannot be resolved, or that violates a constraint is
rolled back, logged with its Airtable id, written to the rejects CSV and
skipped; the run carries on.  Each entity step commits when it finishes,
so a fatal error (unparseable export file, lost connection) leaves the
earlier steps in place.

Usage:
    python -m laberinto_etl.import_airtable_export \\
        --db-dsn "$DATABASE_URL" \\
        --export-dir ../laberinto-booking/airtable-export
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import click
import psycopg

from laberinto_etl.export_reader import (
    SourceRecord,
    load_table,
    summarize_export,
    table_file_name,
)
from laberinto_etl.mappers import (
    map_booking,
    map_customer,
    map_event,
    map_experience,
    map_location,
    map_product,
    map_sale,
    map_wine,
    standard_extra_rows,
)
from laberinto_etl.resolver import (
    default_location,
    first_experience,
    resolve_customer_by_email,
    resolve_source_id,
)
from laberinto_etl.shared import (
    ExportParseError,
    RejectWriter,
    RunCounters,
    SkipRecord,
    write_run_report,
)
from laberinto_etl.store import (
    clear_destination,
    ensure_default_category,
    ensure_default_region,
    get_experience_defaults,
    get_wine_price,
    insert_booking,
    insert_event,
    insert_product,
    insert_sale,
    insert_sale_item,
    upsert_customer,
    upsert_experience,
    upsert_location,
    upsert_wine,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Processing order (dependency order)
ENTITY_ORDER = [
    "customers", "wines", "locations", "experiences",
    "events", "products", "sales", "bookings",
]

# Entity → Airtable table name
SOURCE_TABLES: dict[str, str] = {
    "customers":   "Contactos",
    "wines":       "Vinos",
    "locations":   "Locaciones",
    "experiences": "Experiencias",
    "events":      "Eventos",
    "products":    "Productos",
    "sales":       "Venta de Vinos",
    "bookings":    "Reservas",
}

DEFAULT_EXPORT_DIR = "./airtable-export"


@dataclass
class ImportContext:
    run_id: str
    counters: RunCounters
    category_id: str | None = None
    region_id: str | None = None

    def warn(self, message: str) -> None:
        line = f"[{self.run_id}] {message}"
        log.warning(line)
        self.counters.warnings.append(line)


# ---------------------------------------------------------------------------
# Per-entity processors
# ---------------------------------------------------------------------------

def _process_customer(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    upsert_customer(conn, map_customer(record))


def _process_wine(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    upsert_wine(conn, map_wine(record), ctx.category_id, ctx.region_id)


def _process_location(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    upsert_location(conn, map_location(record))


def _process_experience(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    data = map_experience(record)
    link = data["location_link"]
    if link:
        location_id = resolve_source_id(conn, "location", link)
        if location_id is None:
            raise SkipRecord(
                f"experience {record.source_id}: location {link!r} not found"
            )
    else:
        location_id = default_location(conn)
    upsert_experience(conn, data, location_id)


def _process_event(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    data = map_event(record)
    link = data["experience_link"]
    if link:
        experience_id = resolve_source_id(conn, "experience", link)
        if experience_id is None:
            raise SkipRecord(
                f"event {record.source_id}: experience {link!r} not found"
            )
    else:
        experience_id = first_experience(conn)
        if experience_id is None:
            raise SkipRecord(f"event {record.source_id}: no experience available")

    location_id, duration, capacity = get_experience_defaults(conn, experience_id)
    if data["end_time"] is None:
        data["end_time"] = data["start_time"] + timedelta(minutes=duration)
    if data["max_capacity"] is None:
        data["max_capacity"] = capacity

    insert_event(conn, {**data, "experience_id": experience_id, "location_id": location_id})


def _process_product(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    data = map_product(record)
    wine_id = resolve_source_id(conn, "wine", data["wine_link"])
    insert_product(conn, data, wine_id)


def _process_sale(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    data = map_sale(record)
    label = data["notes"] or record.source_id
    customer_link = data["customer_link"]
    if not customer_link:
        raise SkipRecord(f"sale {record.source_id} ({label}): missing customer reference")
    customer_id = resolve_source_id(conn, "customer", customer_link)
    if customer_id is None:
        raise SkipRecord(
            f"sale {record.source_id} ({label}): customer {customer_link!r} not found"
        )

    sale_id = insert_sale(conn, data, customer_id)

    # Item counters only move once every line item is written
    items_imported = 0
    missing: list[str] = []
    for wine_link in data["wine_links"]:
        wine_id = resolve_source_id(conn, "wine", wine_link)
        if wine_id is None:
            missing.append(wine_link)
            continue
        insert_sale_item(
            conn, sale_id, wine_id,
            source_id=f"{record.source_id}-{wine_link}",
            unit_price=get_wine_price(conn, wine_id),
        )
        items_imported += 1

    ctx.counters.sale_items_imported += items_imported
    ctx.counters.sale_items_skipped += len(missing)
    for wine_link in missing:
        ctx.warn(f"sale {record.source_id}: wine {wine_link!r} not found; line item skipped")


def _process_booking(conn: psycopg.Connection, record: SourceRecord, ctx: ImportContext) -> None:
    data = map_booking(record)
    email = data["organizer_email"]
    if not email:
        raise SkipRecord(f"booking {record.source_id}: missing organizer email")
    organizer_id = resolve_customer_by_email(conn, email)
    if organizer_id is None:
        raise SkipRecord(f"booking {record.source_id}: organizer {email!r} not found")

    event_link = data["event_link"]
    if not event_link:
        raise SkipRecord(f"booking {record.source_id}: missing event reference")
    event_id = resolve_source_id(conn, "event", event_link)
    if event_id is None:
        raise SkipRecord(f"booking {record.source_id}: event {event_link!r} not found")

    insert_booking(conn, data, organizer_id, event_id)


Processor = Callable[[psycopg.Connection, SourceRecord, ImportContext], None]

_ENTITY_PROCESSORS: dict[str, Processor] = {
    "customers":   _process_customer,
    "wines":       _process_wine,
    "locations":   _process_location,
    "experiences": _process_experience,
    "events":      _process_event,
    "products":    _process_product,
    "sales":       _process_sale,
    "bookings":    _process_booking,
}


# ---------------------------------------------------------------------------
# Per-record loop
# ---------------------------------------------------------------------------

def _skip(
    ctx: ImportContext,
    rejects: RejectWriter,
    entity: str,
    record: SourceRecord,
    reason: str,
    message: str,
) -> None:
    ctx.counters.inc(entity, "skipped")
    ctx.warn(f"{entity}: skipped {record.source_id}: {message}")
    rejects.write(entity, record.source_id, record.fields, f"{reason}: {message}")


def _import_records(
    conn: psycopg.Connection,
    entity: str,
    records: list[SourceRecord],
    ctx: ImportContext,
    rejects: RejectWriter,
) -> None:
    """Write records one at a time, each under its own savepoint."""
    processor = _ENTITY_PROCESSORS[entity]
    for idx, record in enumerate(records):
        ctx.counters.inc(entity, "read")
        sp = f"{entity}_{idx}"
        conn.execute(f"SAVEPOINT {sp}")
        try:
            processor(conn, record, ctx)
            conn.execute(f"RELEASE SAVEPOINT {sp}")
        except SkipRecord as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            _skip(ctx, rejects, entity, record, "unresolved_or_missing", str(exc))
            continue
        except psycopg.Error as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            ctx.counters.db_record_errors += 1
            _skip(ctx, rejects, entity, record, "db_error", f"{type(exc).__name__}: {exc}")
            continue
        except Exception as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
            ctx.counters.db_record_errors += 1
            _skip(
                ctx, rejects, entity, record,
                "unexpected_error", f"{type(exc).__name__}: {exc}",
            )
            continue
        ctx.counters.inc(entity, "imported")


def _insert_standard_extras(conn: psycopg.Connection, ctx: ImportContext) -> None:
    for extra in standard_extra_rows():
        insert_product(conn, extra)
        ctx.counters.standard_extras_inserted += 1


# ---------------------------------------------------------------------------
# Run driver
# ---------------------------------------------------------------------------

def _commit_step(conn: psycopg.Connection, dry_run: bool) -> None:
    if not dry_run:
        conn.commit()


def run_import(
    conn: psycopg.Connection,
    export_dir: Path,
    run_id: str,
    counters: RunCounters,
    rejects: RejectWriter,
    dry_run: bool = False,
) -> None:
    """Clear the destination, then import every entity in dependency order.

    Raises ExportParseError (and lets psycopg connection errors through);
    steps committed before the failure stay committed.
    """
    ctx = ImportContext(run_id=run_id, counters=counters)
    export_dir = Path(export_dir)

    deleted = clear_destination(conn)
    _commit_step(conn, dry_run)
    click.echo(
        f"[{run_id}] Cleared destination: "
        + " ".join(f"{table}={n}" for table, n in deleted.items())
    )

    for entity in ENTITY_ORDER:
        table_name = SOURCE_TABLES[entity]
        if not (export_dir / table_file_name(table_name)).exists():
            # load_table logs the warning itself
            counters.missing_files += 1
            counters.warnings.append(
                f"[{run_id}] {entity}: export file {table_file_name(table_name)!r} not found"
            )

        records = load_table(export_dir, table_name)

        if entity == "wines":
            ctx.category_id = ensure_default_category(conn)
            ctx.region_id = ensure_default_region(conn)

        _import_records(conn, entity, records, ctx, rejects)

        if entity == "products":
            _insert_standard_extras(conn, ctx)

        _commit_step(conn, dry_run)

        c = counters.entity_counts(entity)
        click.echo(
            f"[{run_id}] {entity}: read={c['read']} "
            f"imported={c['imported']} skipped={c['skipped']}"
        )
        if entity == "sales":
            click.echo(
                f"[{run_id}] sale items: imported={counters.sale_items_imported} "
                f"skipped={counters.sale_items_skipped}"
            )


def _run_airtable_import(
    run_id: str,
    started_at: str,
    db_dsn: str,
    counters: RunCounters,
    rejects: RejectWriter,
    export_dir: str,
    dry_run: bool,
    write_report: bool = False,
) -> None:
    dir_path = Path(export_dir)
    if not dir_path.is_dir():
        click.echo(f"[{run_id}] FATAL: export directory not found: {dir_path}", err=True)
        sys.exit(1)

    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
    except psycopg.OperationalError as exc:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {exc}", err=True)
        sys.exit(1)

    try:
        try:
            run_import(conn, dir_path, run_id, counters, rejects, dry_run=dry_run)
        except ExportParseError as exc:
            conn.rollback()
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
        except psycopg.Error as exc:
            conn.rollback()
            click.echo(
                f"[{run_id}] FATAL: database error during import: {exc}",
                err=True,
            )
            sys.exit(1)

        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    finally:
        conn.close()
        rejects.close()

    click.echo(
        f"[{run_id}] Done: skipped={counters.total_skipped} "
        f"db_errors={counters.db_record_errors} "
        f"missing_files={counters.missing_files}"
    )
    if counters.total_skipped:
        click.echo(f"[{run_id}] Skipped records written to {rejects.path}")

    if write_report:
        report_path = write_run_report(
            run_id, started_at, "import", dry_run,
            {"export_dir": str(dir_path)},
            counters,
        )
        click.echo(f"[{run_id}] Run report: {report_path}")


def _run_preview(run_id: str, export_dir: str) -> None:
    dir_path = Path(export_dir)
    if not dir_path.is_dir():
        click.echo(f"[{run_id}] FATAL: export directory not found: {dir_path}", err=True)
        sys.exit(1)
    try:
        summaries = summarize_export(dir_path, [SOURCE_TABLES[e] for e in ENTITY_ORDER])
    except ExportParseError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    total = 0
    for s in summaries:
        if not s.present:
            click.echo(f"[{run_id}] {s.table_name}: missing ({s.file_name})")
            continue
        total += s.record_count
        line = f"[{run_id}] {s.table_name}: {s.record_count} records, {len(s.field_names)} fields"
        if s.declared_count is not None and s.declared_count != s.record_count:
            line += f" (export summary declares {s.declared_count})"
        click.echo(line)
        if s.field_names:
            click.echo(f"    fields: {', '.join(s.field_names)}")
    click.echo(f"[{run_id}] Total records: {total}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice(["import", "preview"]),
    show_default=True,
    help="import: load the export into the database; preview: describe the export only",
)
@click.option("--db-dsn", envvar="DATABASE_URL", default=None, help="PostgreSQL DSN (or $DATABASE_URL)")
@click.option(
    "--export-dir",
    default=DEFAULT_EXPORT_DIR,
    type=click.Path(),
    show_default=True,
    help="Directory holding one <Table_Name>.json file per Airtable table",
)
@click.option("--dry-run", is_flag=True, default=False, help="Roll back everything at the end")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/airtable_import_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--write-report", is_flag=True, default=False, help="Write a JSON run report under ./artifacts/reports")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str | None,
    export_dir: str,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    write_report: bool,
    log_level: str,
) -> None:
    """Import a Laberinto Airtable export into PostgreSQL."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if mode == "preview":
        _run_preview(run_id, export_dir)
        return

    if not db_dsn:
        click.echo(
            f"[{run_id}] FATAL: import mode requires --db-dsn or DATABASE_URL",
            err=True,
        )
        sys.exit(1)

    click.echo(f"[{run_id}] Starting import run (dry_run={dry_run}) from {export_dir}")
    _run_airtable_import(
        run_id, started_at, db_dsn, RunCounters(), RejectWriter(Path(rejects_path)),
        export_dir=export_dir,
        dry_run=dry_run,
        write_report=write_report,
    )


if __name__ == "__main__":
    main()
