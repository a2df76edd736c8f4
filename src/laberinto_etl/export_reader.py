"""laberinto_etl.export_reader

Loads the per-table JSON files written by the Airtable export.

Each file looks like::

    {"tableName": "Contactos", "recordCount": 2,
     "records": [{"id": "rec...", "fields": {...}, "createdTime": "..."}]}

A missing file is not fatal (the table yields no records); a file that
exists but cannot be parsed is.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from laberinto_etl.normalize import parse_ts, trim
from laberinto_etl.shared import ExportParseError

log = logging.getLogger(__name__)

SUMMARY_FILE_NAME = "export-summary.json"


@dataclass(frozen=True)
class SourceRecord:
    source_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


def table_file_name(table_name: str) -> str:
    """'Venta de Vinos' → 'Venta_de_Vinos.json'."""
    return re.sub(r"[^a-zA-Z0-9]", "_", table_name) + ".json"


def _parse_record(raw: Any, file_name: str, idx: int) -> SourceRecord:
    if not isinstance(raw, dict):
        raise ExportParseError(f"{file_name}: record {idx} is not an object")
    source_id = trim(raw.get("id"))
    if source_id is None:
        raise ExportParseError(f"{file_name}: record {idx} has no id")
    fields = raw.get("fields") or {}
    if not isinstance(fields, dict):
        raise ExportParseError(f"{file_name}: record {source_id} fields is not an object")
    return SourceRecord(
        source_id=source_id,
        fields=fields,
        created_at=parse_ts(raw.get("createdTime")),
    )


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ExportParseError(f"{path.name}: malformed JSON: {exc}") from exc


def load_table(export_dir: Path, table_name: str) -> list[SourceRecord]:
    """Return the records of one exported table in file order.

    Raises ExportParseError when the file exists but is malformed.
    """
    path = Path(export_dir) / table_file_name(table_name)
    if not path.exists():
        log.warning("Export file not found for table %r: %s", table_name, path)
        return []

    data = _read_json(path)
    if not isinstance(data, dict) or not isinstance(data.get("records"), list):
        raise ExportParseError(f"{path.name}: expected an object with a 'records' list")

    records = [_parse_record(raw, path.name, idx) for idx, raw in enumerate(data["records"])]
    log.info("Loaded %d records from %s", len(records), table_name)
    return records


# ---------------------------------------------------------------------------
# Export preview
# ---------------------------------------------------------------------------

@dataclass
class TableSummary:
    table_name: str
    file_name: str
    record_count: int
    field_names: list[str]
    present: bool
    declared_count: int | None = None


def summarize_export(export_dir: Path, table_names: list[str]) -> list[TableSummary]:
    """Describe each exported table: record counts and the union of field names.

    When the exporter's summary file is present its declared record counts
    are reported alongside the counted ones so truncated exports stand out.
    """
    export_dir = Path(export_dir)
    declared: dict[str, int] = {}
    summary_path = export_dir / SUMMARY_FILE_NAME
    if summary_path.exists():
        summary = _read_json(summary_path)
        for table in (summary.get("tables") or []) if isinstance(summary, dict) else []:
            if isinstance(table, dict) and trim(table.get("name")):
                count = table.get("recordCount")
                if isinstance(count, int):
                    declared[table["name"]] = count

    out: list[TableSummary] = []
    for table_name in table_names:
        file_name = table_file_name(table_name)
        present = (export_dir / file_name).exists()
        records = load_table(export_dir, table_name) if present else []
        field_names: list[str] = []
        seen: set[str] = set()
        for rec in records:
            for name in rec.fields:
                if name not in seen:
                    seen.add(name)
                    field_names.append(name)
        out.append(TableSummary(
            table_name=table_name,
            file_name=file_name,
            record_count=len(records),
            field_names=field_names,
            present=present,
            declared_count=declared.get(table_name),
        ))
    return out
