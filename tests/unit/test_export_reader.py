"""Unit tests for laberinto_etl.export_reader."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from laberinto_etl.export_reader import (
    SUMMARY_FILE_NAME,
    load_table,
    summarize_export,
    table_file_name,
)
from laberinto_etl.shared import ExportParseError


def _write_table(export_dir: Path, table_name: str, records: list[dict]) -> Path:
    path = export_dir / table_file_name(table_name)
    path.write_text(
        json.dumps({"tableName": table_name, "recordCount": len(records), "records": records}),
        encoding="utf-8",
    )
    return path


# ---------------------------------------------------------------------------
# table_file_name
# ---------------------------------------------------------------------------

class TestTableFileName:
    def test_spaces_become_underscores(self):
        assert table_file_name("Venta de Vinos") == "Venta_de_Vinos.json"

    def test_plain_name(self):
        assert table_file_name("Contactos") == "Contactos.json"

    def test_each_character_replaced(self):
        assert table_file_name("A - B") == "A___B.json"


# ---------------------------------------------------------------------------
# load_table
# ---------------------------------------------------------------------------

class TestLoadTable:
    def test_preserves_file_order(self, tmp_path):
        _write_table(tmp_path, "Contactos", [
            {"id": "rec3", "fields": {}, "createdTime": "2024-01-01T00:00:00.000Z"},
            {"id": "rec1", "fields": {}, "createdTime": "2024-01-02T00:00:00.000Z"},
            {"id": "rec2", "fields": {}, "createdTime": "2024-01-03T00:00:00.000Z"},
        ])
        records = load_table(tmp_path, "Contactos")
        assert [r.source_id for r in records] == ["rec3", "rec1", "rec2"]

    def test_fields_and_created_time(self, tmp_path):
        _write_table(tmp_path, "Contactos", [
            {"id": "c1", "fields": {"Correo Electrónico": "a@b.com"},
             "createdTime": "2024-01-01T10:00:00.000Z"},
        ])
        [rec] = load_table(tmp_path, "Contactos")
        assert rec.get("Correo Electrónico") == "a@b.com"
        assert rec.created_at == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)

    def test_missing_fields_key_is_empty(self, tmp_path):
        _write_table(tmp_path, "Vinos", [{"id": "w1"}])
        [rec] = load_table(tmp_path, "Vinos")
        assert rec.fields == {}
        assert rec.created_at is None

    def test_missing_file_returns_empty_and_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            assert load_table(tmp_path, "Productos") == []
        assert "Productos" in caplog.text

    def test_malformed_json_is_fatal(self, tmp_path):
        (tmp_path / "Vinos.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ExportParseError, match="Vinos.json"):
            load_table(tmp_path, "Vinos")

    def test_missing_records_list_is_fatal(self, tmp_path):
        (tmp_path / "Vinos.json").write_text('{"tableName": "Vinos"}', encoding="utf-8")
        with pytest.raises(ExportParseError):
            load_table(tmp_path, "Vinos")

    def test_top_level_list_is_fatal(self, tmp_path):
        (tmp_path / "Vinos.json").write_text("[]", encoding="utf-8")
        with pytest.raises(ExportParseError):
            load_table(tmp_path, "Vinos")

    def test_record_without_id_is_fatal(self, tmp_path):
        _write_table(tmp_path, "Vinos", [{"fields": {"Vinos": "Syrah"}}])
        with pytest.raises(ExportParseError, match="no id"):
            load_table(tmp_path, "Vinos")


# ---------------------------------------------------------------------------
# summarize_export
# ---------------------------------------------------------------------------

class TestSummarizeExport:
    def test_counts_and_fields(self, tmp_path):
        _write_table(tmp_path, "Contactos", [
            {"id": "c1", "fields": {"Nombre": "Ana", "RUT": "1-9"}},
            {"id": "c2", "fields": {"Nombre": "Luis", "Apellido": "Soto"}},
        ])
        [contactos, vinos] = summarize_export(tmp_path, ["Contactos", "Vinos"])
        assert contactos.present
        assert contactos.record_count == 2
        assert contactos.field_names == ["Nombre", "RUT", "Apellido"]
        assert not vinos.present
        assert vinos.record_count == 0

    def test_declared_counts_from_summary_file(self, tmp_path):
        _write_table(tmp_path, "Vinos", [{"id": "w1", "fields": {}}])
        (tmp_path / SUMMARY_FILE_NAME).write_text(
            json.dumps({"tables": [{"name": "Vinos", "recordCount": 5}]}),
            encoding="utf-8",
        )
        [vinos] = summarize_export(tmp_path, ["Vinos"])
        assert vinos.declared_count == 5
        assert vinos.record_count == 1
