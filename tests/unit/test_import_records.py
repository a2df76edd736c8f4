"""Unit tests for the per-record savepoint loop in import_airtable_export."""

from __future__ import annotations

import csv

from laberinto_etl import import_airtable_export as importer
from laberinto_etl.export_reader import SourceRecord
from laberinto_etl.import_airtable_export import ImportContext, _import_records
from laberinto_etl.shared import RejectWriter, RunCounters, SkipRecord


class _RecordingConn:
    """Stands in for a psycopg connection; records every statement."""

    def __init__(self):
        self.statements: list[str] = []

    def execute(self, query, params=None):
        self.statements.append(query)


def _run(monkeypatch, tmp_path, processor, records):
    monkeypatch.setitem(importer._ENTITY_PROCESSORS, "events", processor)
    conn = _RecordingConn()
    ctx = ImportContext(run_id="t", counters=RunCounters())
    rejects = RejectWriter(tmp_path / "rejects.csv")
    _import_records(conn, "events", records, ctx, rejects)
    rejects.close()
    return conn, ctx.counters


def _reject_rows(tmp_path):
    with (tmp_path / "rejects.csv").open(encoding="utf-8") as fh:
        return list(csv.DictReader(fh))


class TestImportRecords:
    def test_unexpected_error_does_not_stop_siblings(self, monkeypatch, tmp_path):
        def processor(conn, record, ctx):
            if record.source_id == "e1":
                raise OverflowError("date value out of range")
            conn.execute("INSERT INTO event ...")

        conn, counters = _run(
            monkeypatch, tmp_path, processor,
            [SourceRecord("e1"), SourceRecord("e2")],
        )

        assert counters.events_read == 2
        assert counters.events_imported == 1
        assert counters.events_skipped == 1
        assert counters.db_record_errors == 1
        assert "ROLLBACK TO SAVEPOINT events_0" in conn.statements
        assert "RELEASE SAVEPOINT events_1" in conn.statements
        assert any("OverflowError" in w and "e1" in w for w in counters.warnings)

        [row] = _reject_rows(tmp_path)
        assert row["source_id"] == "e1"
        assert row["reason"].startswith("unexpected_error")

    def test_skip_record_rolls_back_only_that_record(self, monkeypatch, tmp_path):
        def processor(conn, record, ctx):
            if record.source_id == "e1":
                raise SkipRecord("event e1: experience 'recGONE' not found")

        conn, counters = _run(
            monkeypatch, tmp_path, processor,
            [SourceRecord("e1"), SourceRecord("e2")],
        )

        assert counters.events_imported == 1
        assert counters.events_skipped == 1
        assert counters.db_record_errors == 0
        assert conn.statements == [
            "SAVEPOINT events_0",
            "ROLLBACK TO SAVEPOINT events_0",
            "SAVEPOINT events_1",
            "RELEASE SAVEPOINT events_1",
        ]
