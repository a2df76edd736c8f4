"""laberinto_etl.shared

Shared utilities for the Airtable export import: exceptions, RejectWriter,
RunCounters and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ExportParseError(Exception):
    """Raised when an export file exists but cannot be parsed. Fatal for the run."""


class SkipRecord(Exception):
    """Raised while importing one record to drop it with a warning."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for skipped records."""

    FIELDNAMES = ["entity", "source_id", "reason", "fields"]

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    @property
    def path(self) -> Path:
        return self._path

    def write(
        self,
        entity: str,
        source_id: str,
        fields: dict[str, Any],
        reason: str,
    ) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=self.FIELDNAMES)
            self._writer.writeheader()
        self._writer.writerow({
            "entity": entity,
            "source_id": source_id,
            "reason": reason,
            "fields": json.dumps(fields, ensure_ascii=False, sort_keys=True, default=str),
        })
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

ENTITY_NAMES = (
    "customers", "wines", "locations", "experiences",
    "events", "products", "sales", "bookings",
)


@dataclass
class RunCounters:
    customers_read: int = 0
    customers_imported: int = 0
    customers_skipped: int = 0
    wines_read: int = 0
    wines_imported: int = 0
    wines_skipped: int = 0
    locations_read: int = 0
    locations_imported: int = 0
    locations_skipped: int = 0
    experiences_read: int = 0
    experiences_imported: int = 0
    experiences_skipped: int = 0
    events_read: int = 0
    events_imported: int = 0
    events_skipped: int = 0
    products_read: int = 0
    products_imported: int = 0
    products_skipped: int = 0
    sales_read: int = 0
    sales_imported: int = 0
    sales_skipped: int = 0
    bookings_read: int = 0
    bookings_imported: int = 0
    bookings_skipped: int = 0
    # Sale line items are counted separately from their sales
    sale_items_imported: int = 0
    sale_items_skipped: int = 0
    standard_extras_inserted: int = 0
    missing_files: int = 0
    db_record_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def inc(self, entity: str, kind: str) -> None:
        attr = f"{entity}_{kind}"
        setattr(self, attr, getattr(self, attr) + 1)

    def entity_counts(self, entity: str) -> dict[str, int]:
        return {
            kind: getattr(self, f"{entity}_{kind}")
            for kind in ("read", "imported", "skipped")
        }

    @property
    def total_skipped(self) -> int:
        return sum(getattr(self, f"{e}_skipped") for e in ENTITY_NAMES)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {e: self.entity_counts(e) for e in ENTITY_NAMES}
        out.update({
            "sale_items_imported": self.sale_items_imported,
            "sale_items_skipped": self.sale_items_skipped,
            "standard_extras_inserted": self.standard_extras_inserted,
            "missing_files": self.missing_files,
            "db_record_errors": self.db_record_errors,
            "warnings": self.warnings,
        })
        return out


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
