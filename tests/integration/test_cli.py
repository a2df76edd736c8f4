"""CLI-level tests for laberinto-import (click entrypoint)."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from laberinto_etl.export_reader import table_file_name
from laberinto_etl.import_airtable_export import main


def _write_table(export_dir: Path, table_name: str, records: list[dict]) -> None:
    export_dir.mkdir(parents=True, exist_ok=True)
    (export_dir / table_file_name(table_name)).write_text(
        json.dumps({"tableName": table_name, "records": records}, ensure_ascii=False),
        encoding="utf-8",
    )


def _export(tmp_path: Path) -> Path:
    export_dir = tmp_path / "airtable-export"
    _write_table(export_dir, "Contactos", [
        {"id": "c1", "fields": {"Correo Electrónico": "a@b.com", "Nombre Completo": "Ana Ruiz"},
         "createdTime": "2024-01-01T12:00:00.000Z"},
    ])
    _write_table(export_dir, "Venta de Vinos", [
        {"id": "s1", "fields": {"Cliente": ["c1"], "Total de la Venta": 10000},
         "createdTime": "2024-01-02T12:00:00.000Z"},
        {"id": "s2", "fields": {"Cliente": ["missing"], "Total de la Venta": 500},
         "createdTime": "2024-01-03T12:00:00.000Z"},
    ])
    return export_dir


# ---------------------------------------------------------------------------
# Preview mode (no database)
# ---------------------------------------------------------------------------

class TestPreview:
    def test_lists_tables_and_missing_files(self, tmp_path):
        export_dir = _export(tmp_path)
        (export_dir / "export-summary.json").write_text(
            json.dumps({"tables": [{"name": "Venta de Vinos", "recordCount": 3}]}),
            encoding="utf-8",
        )

        result = CliRunner().invoke(main, [
            "--mode", "preview", "--export-dir", str(export_dir), "--run-id", "prev",
        ])

        assert result.exit_code == 0, result.output
        assert "[prev] Contactos: 1 records, 2 fields" in result.output
        assert "Venta de Vinos: 2 records, 2 fields (export summary declares 3)" in result.output
        assert "Vinos: missing (Vinos.json)" in result.output
        assert "[prev] Total records: 3" in result.output

    def test_missing_export_dir_is_fatal(self, tmp_path):
        result = CliRunner().invoke(main, [
            "--mode", "preview", "--export-dir", str(tmp_path / "nope"),
        ])
        assert result.exit_code == 1
        assert "FATAL" in result.output

    def test_malformed_file_is_fatal(self, tmp_path):
        export_dir = tmp_path / "airtable-export"
        export_dir.mkdir()
        (export_dir / "Contactos.json").write_text("[1, 2", encoding="utf-8")

        result = CliRunner().invoke(main, ["--mode", "preview", "--export-dir", str(export_dir)])

        assert result.exit_code == 1
        assert "Contactos.json" in result.output


# ---------------------------------------------------------------------------
# Import mode
# ---------------------------------------------------------------------------

class TestImport:
    def test_import_requires_dsn(self, tmp_path):
        result = CliRunner().invoke(
            main,
            ["--export-dir", str(_export(tmp_path))],
            env={"DATABASE_URL": None},
        )
        assert result.exit_code == 1
        assert "requires --db-dsn" in result.output

    def test_run_with_skips_exits_zero(self, db_conn, tmp_path):
        conn, dsn = db_conn
        rejects_file = tmp_path / "rejects.csv"

        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--export-dir", str(_export(tmp_path)),
            "--rejects-path", str(rejects_file),
            "--run-id", "test-run",
        ])

        assert result.exit_code == 0, f"CLI failed:\n{result.output}"
        assert "[test-run] customers: read=1 imported=1 skipped=0" in result.output
        assert "[test-run] sales: read=2 imported=1 skipped=1" in result.output
        assert "[test-run] bookings: read=0 imported=0 skipped=0" in result.output
        assert rejects_file.exists()

        row = conn.execute("SELECT count(*) FROM wine_sale").fetchone()
        assert row[0] == 1

    def test_dsn_from_environment(self, db_conn, tmp_path):
        conn, dsn = db_conn

        result = CliRunner().invoke(
            main,
            ["--export-dir", str(_export(tmp_path)),
             "--rejects-path", str(tmp_path / "rejects.csv")],
            env={"DATABASE_URL": dsn},
        )

        assert result.exit_code == 0, result.output
        row = conn.execute("SELECT count(*) FROM customer").fetchone()
        assert row[0] == 1

    def test_dry_run_leaves_database_empty(self, db_conn, tmp_path):
        conn, dsn = db_conn

        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--export-dir", str(_export(tmp_path)),
            "--rejects-path", str(tmp_path / "rejects.csv"),
            "--dry-run",
        ])

        assert result.exit_code == 0, result.output
        assert "All changes rolled back" in result.output
        for table in ["customer", "wine_sale"]:
            row = conn.execute(f"SELECT count(*) FROM {table}").fetchone()
            assert row[0] == 0, f"Expected 0 rows in {table} after dry-run"

    def test_write_report(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        export_dir = _export(tmp_path)
        monkeypatch.chdir(tmp_path)

        result = CliRunner().invoke(main, [
            "--db-dsn", dsn,
            "--export-dir", str(export_dir),
            "--rejects-path", str(tmp_path / "rejects.csv"),
            "--run-id", "report-run",
            "--write-report",
        ])

        assert result.exit_code == 0, result.output
        report = json.loads(
            (tmp_path / "artifacts" / "reports" / "report-run.json").read_text()
        )
        assert report["mode"] == "import"
        assert report["counters"]["sales"] == {"read": 2, "imported": 1, "skipped": 1}
        assert report["counters"]["missing_files"] == 6

    def test_unreachable_database_is_fatal(self, tmp_path):
        result = CliRunner().invoke(main, [
            "--db-dsn", "host=127.0.0.1 port=1 dbname=nope user=nope connect_timeout=1",
            "--export-dir", str(_export(tmp_path)),
            "--rejects-path", str(tmp_path / "rejects.csv"),
        ])
        assert result.exit_code == 1
        assert "cannot connect" in result.output
