"""
KPI Tracker
Tests — Import pipeline (ImportService) against in-memory stores.

Covers:
    - Successful import: dataset merged, one success entry with counts/areas
    - Duplicate under a different file name → DuplicateFileError + error entry
    - Unsupported format / parse failure / validation failure → error entries
    - Permission denied → nothing recorded
    - Preview is a dry run
    - Log records carry file hash / entry id context
    - Persistence retry: transient failure recovered, exhausted → PersistenceError,
      same bytes import cleanly once the store recovers
"""

import json
import logging
from datetime import datetime, timezone

import pytest

from conftest import truncate_worksheet
from kpi_tracker.core.exceptions import (
    DuplicateFileError,
    ImportValidationError,
    ParseError,
    PermissionDeniedError,
    PersistenceError,
    UnsupportedFormatError,
)
from kpi_tracker.middleware.logging_config import JSONFormatter
from kpi_tracker.services.dataset_store import RetryPolicy
from kpi_tracker.services.import_service import ImportService
from kpi_tracker.services.permission import Actor

ANALYST = Actor(id="an-1", name="Luis Analista", role="analyst")
CONSULTANT = Actor(id="c-1", name="Carla", role="consultant")
NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


class MemoryDatasetStore:
    def __init__(self, fail_saves=0):
        self.dataset = {"indicators": [], "risks": []}
        self.fail_saves = fail_saves
        self.save_calls = 0

    def load_dataset(self):
        return {"indicators": list(self.dataset["indicators"]), "risks": list(self.dataset["risks"])}

    def save_dataset(self, dataset):
        self.save_calls += 1
        if self.fail_saves:
            self.fail_saves -= 1
            raise OSError("disk unavailable")
        self.dataset = dataset


class MemoryHistoryStore:
    def __init__(self):
        self.entries = []

    def load_history(self):
        return list(self.entries)

    def save_history(self, entries):
        self.entries = list(entries)


@pytest.fixture()
def stores():
    return MemoryDatasetStore(), MemoryHistoryStore()


@pytest.fixture()
def service(stores):
    dataset_store, history_store = stores
    return ImportService(
        dataset_store,
        history_store,
        retry=RetryPolicy(max_attempts=3, backoff=[0], sleep=lambda s: None),
        clock=lambda: NOW,
    )


class TestImportFile:
    def test_spreadsheet_import_succeeds(self, service, stores, xlsx_report):
        dataset_store, history_store = stores
        summary = service.import_file("mayo.xlsx", xlsx_report(), ANALYST)

        assert summary.file_type == "Excel"
        assert summary.counts == {"indicators": 2, "activities": 2, "risks": 1}
        assert summary.affected_areas == ["infrastructure", "quality"]
        assert len(dataset_store.dataset["indicators"]) == 2
        assert len(dataset_store.dataset["risks"]) == 1

        (entry,) = history_store.entries
        assert entry.status == "success"
        assert entry.id == summary.entry_id
        assert entry.imported_by == "Luis Analista"
        assert entry.indicators_count == 2 and entry.activities_count == 2
        assert all(i["import_batch_id"] == entry.id for i in dataset_store.dataset["indicators"])

    def test_html_import_succeeds(self, service, stores, html_report):
        summary = service.import_file("mayo.html", html_report(), ANALYST)
        assert summary.file_type == "HTML"
        assert summary.counts == {"indicators": 1, "activities": 1, "risks": 1}
        assert summary.affected_areas == ["infrastructure"]

    def test_second_import_appends(self, service, stores, xlsx_report, html_report):
        dataset_store, history_store = stores
        service.import_file("mayo.xlsx", xlsx_report(), ANALYST)
        service.import_file("junio.html", html_report(), ANALYST)
        assert len(dataset_store.dataset["indicators"]) == 3
        assert [e.seq for e in history_store.entries] == [0, 1]

    def test_duplicate_under_new_name_is_rejected(self, service, stores, xlsx_report):
        dataset_store, history_store = stores
        data = xlsx_report()
        service.import_file("mayo.xlsx", data, ANALYST)

        with pytest.raises(DuplicateFileError) as exc_info:
            service.import_file("mayo_copia.xlsx", data, ANALYST)

        assert exc_info.value.original.file_name == "mayo.xlsx"
        assert "Este archivo ya fue importado el 01/06/2025 09:00 por Luis Analista" == str(exc_info.value)
        assert [e.status for e in history_store.entries] == ["success", "error"]
        assert len(dataset_store.dataset["indicators"]) == 2

    def test_same_name_after_success_is_rejected(self, service, stores, html_report):
        service.import_file("mayo.html", html_report(), ANALYST)
        with pytest.raises(DuplicateFileError):
            service.import_file("mayo.html", html_report(period="otro"), ANALYST)

    def test_unsupported_format_is_recorded(self, service, stores):
        _, history_store = stores
        with pytest.raises(UnsupportedFormatError):
            service.import_file("datos.csv", b"a,b\n1,2", ANALYST)
        (entry,) = history_store.entries
        assert entry.status == "error"
        assert entry.file_type == "Excel"
        assert "Formato de archivo no soportado" in entry.error_message

    def test_parse_error_is_recorded(self, service, stores):
        _, history_store = stores
        with pytest.raises(ParseError):
            service.import_file("roto.xlsx", b"not a workbook", ANALYST)
        assert history_store.entries[0].status == "error"

    def test_damaged_worksheet_is_recorded(self, service, stores, xlsx_report):
        dataset_store, history_store = stores
        with pytest.raises(ParseError):
            service.import_file("mayo.xlsx", truncate_worksheet(xlsx_report()), ANALYST)
        (entry,) = history_store.entries
        assert entry.status == "error"
        assert entry.error_message.startswith("Hoja ilegible")
        assert dataset_store.save_calls == 0

    def test_validation_error_writes_nothing_to_dataset(self, service, stores, xlsx_report):
        dataset_store, history_store = stores
        data = xlsx_report(indicators=[["Sin meta", "Sistemas", 0, 5, None, "Ana", "", ""]])

        with pytest.raises(ImportValidationError) as exc_info:
            service.import_file("malo.xlsx", data, ANALYST)

        assert exc_info.value.errors == ["Indicador 1: Meta debe ser mayor a 0"]
        assert dataset_store.save_calls == 0
        (entry,) = history_store.entries
        assert entry.status == "error"
        assert "Meta debe ser mayor a 0" in entry.error_message

    def test_failed_file_can_be_retried(self, service, stores, xlsx_report):
        _, history_store = stores
        data = xlsx_report(indicators=[["Sin meta", "Sistemas", 0, 5, None, "Ana", "", ""]])
        with pytest.raises(ImportValidationError):
            service.import_file("malo.xlsx", data, ANALYST)
        with pytest.raises(ImportValidationError):
            service.import_file("malo.xlsx", data, ANALYST)
        assert [e.status for e in history_store.entries] == ["error", "error"]

    def test_permission_denied_records_nothing(self, service, stores, xlsx_report):
        _, history_store = stores
        with pytest.raises(PermissionDeniedError):
            service.import_file("mayo.xlsx", xlsx_report(), CONSULTANT)
        assert history_store.entries == []


class TestPreview:
    def test_preview_is_dry_run(self, service, stores, xlsx_report):
        dataset_store, history_store = stores
        preview = service.preview_file("mayo.xlsx", xlsx_report(), ANALYST)

        assert preview.is_valid is True
        assert preview.to_dict()["counts"] == {"indicators": 2, "activities": 1, "risks": 1}
        assert dataset_store.save_calls == 0
        assert history_store.entries == []

    def test_preview_reports_validation_errors(self, service, xlsx_report):
        data = xlsx_report(risks=[["", "Sistemas", None, "alto", "alta", None, ""]])
        preview = service.preview_file("mayo.xlsx", data, ANALYST)
        assert preview.is_valid is False
        assert preview.errors == ["Riesgo 1: Nombre requerido", "Riesgo 1: Responsable requerido"]


class TestPersistenceRetry:
    def test_transient_failure_is_retried(self, stores, xlsx_report):
        _, history_store = stores
        dataset_store = MemoryDatasetStore(fail_saves=1)
        service = ImportService(
            dataset_store, history_store,
            retry=RetryPolicy(max_attempts=3, backoff=[0], sleep=lambda s: None),
            clock=lambda: NOW,
        )
        service.import_file("mayo.xlsx", xlsx_report(), ANALYST)
        assert dataset_store.save_calls == 2
        assert history_store.entries[0].status == "success"

    def test_exhausted_retries_raise_persistence_error(self, stores, xlsx_report):
        _, history_store = stores
        dataset_store = MemoryDatasetStore(fail_saves=5)
        sleeps = []
        service = ImportService(
            dataset_store, history_store,
            retry=RetryPolicy(max_attempts=3, backoff=[0.5, 2], sleep=sleeps.append),
            clock=lambda: NOW,
        )
        with pytest.raises(PersistenceError) as exc_info:
            service.import_file("mayo.xlsx", xlsx_report(), ANALYST)

        assert exc_info.value.attempts == 3
        assert sleeps == [0.5, 2]
        assert dataset_store.save_calls == 3
        assert history_store.entries[0].status == "error"

    def test_same_bytes_import_after_persistence_failure(self, stores, xlsx_report):
        _, history_store = stores
        dataset_store = MemoryDatasetStore(fail_saves=3)
        service = ImportService(
            dataset_store, history_store,
            retry=RetryPolicy(max_attempts=3, backoff=[0], sleep=lambda s: None),
            clock=lambda: NOW,
        )
        data = xlsx_report()
        with pytest.raises(PersistenceError):
            service.import_file("mayo.xlsx", data, ANALYST)

        summary = service.import_file("mayo.xlsx", data, ANALYST)

        assert summary.counts["indicators"] == 2
        assert len(dataset_store.dataset["indicators"]) == 2
        assert [e.status for e in history_store.entries] == ["error", "success"]
        assert history_store.entries[0].file_hash == history_store.entries[1].file_hash


class TestImportLogging:
    def test_log_records_carry_hash_and_entry(self, service, xlsx_report, caplog):
        caplog.set_level(logging.INFO, logger="kpi_tracker")
        summary = service.import_file("mayo.xlsx", xlsx_report(), ANALYST)

        finished = [r for r in caplog.records if r.getMessage().startswith("Import finished")]
        assert len(finished) == 1
        assert finished[0].file_hash == summary.file_hash
        assert finished[0].entry_id == summary.entry_id
        assert finished[0].actor_id == "an-1"

        ledger = [r for r in caplog.records if getattr(r, "entry_id", None) == summary.entry_id]
        assert any(r.name == "kpi_tracker.services.import_ledger" for r in ledger)

    def test_json_formatter_emits_import_context(self):
        record = logging.LogRecord("kpi_tracker", logging.INFO, __file__, 1, "Import finished", None, None)
        record.file_hash = "ab" * 32
        record.entry_id = "imp-1"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["file_hash"] == "ab" * 32
        assert payload["entry_id"] == "imp-1"
        assert "request_id" not in payload
