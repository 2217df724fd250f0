"""
KPI Tracker
Import Service — the end-to-end import pipeline.

    permission → hash → duplicate → format → parse → validate
        → load dataset → reconcile → save dataset → success entry

Runs under ``dataset_lock``: one import at a time, history entries in
submission order. Every failure after the permission check appends an
``error`` entry to the history before the exception leaves this module.

Usage:
    service = ImportService(SqlDatasetStore(), SqlHistoryStore())
    summary = service.import_file("reporte.xlsx", data, actor)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from kpi_tracker.core.exceptions import (
    DuplicateFileError,
    ImportValidationError,
    KpiTrackerError,
    ParseError,
)
from kpi_tracker.models.import_history import UNKNOWN_HASH
from kpi_tracker.services import import_ledger
from kpi_tracker.services.dataset_store import RetryPolicy, dataset_lock
from kpi_tracker.services.import_parsers import detect_file_type, get_parser
from kpi_tracker.services.import_validator import validate_batch
from kpi_tracker.services.permission import ACTION_IMPORT, check_permission
from kpi_tracker.services.reconciliation import reconcile

logger = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    entry_id: str
    file_name: str
    file_hash: str
    file_type: str
    counts: dict
    affected_areas: list[str] = field(default_factory=list)
    indicator_ids: list[str] = field(default_factory=list)
    risk_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "file_name": self.file_name,
            "file_hash": self.file_hash,
            "file_type": self.file_type,
            "counts": dict(self.counts),
            "affected_areas": list(self.affected_areas),
            "indicator_ids": list(self.indicator_ids),
            "risk_ids": list(self.risk_ids),
        }


@dataclass
class ImportPreview:
    file_name: str
    file_hash: str
    file_type: str
    batch: dict
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "file_hash": self.file_hash,
            "file_type": self.file_type,
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "counts": {k: len(v) for k, v in self.batch.items()},
            "batch": self.batch,
        }


def _hash_upload(data) -> str:
    try:
        return import_ledger.compute_content_hash(bytes(data))
    except (TypeError, ValueError) as exc:
        raise ParseError(f"No se pudo leer el archivo: {exc}") from exc


class ImportService:
    """Wires the pure pipeline stages to the persistence collaborators."""

    def __init__(self, dataset_store, history_store, retry: RetryPolicy | None = None, clock=None):
        self.dataset_store = dataset_store
        self.history_store = history_store
        self.retry = retry or RetryPolicy()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ── persistence boundary ─────────────────────────────────────────────

    def load_history(self) -> list:
        return self.retry.call(self.history_store.load_history, label="load_history")

    def save_history(self, entries: list) -> None:
        self.retry.call(self.history_store.save_history, entries, label="save_history")

    def load_dataset(self) -> dict:
        return self.retry.call(self.dataset_store.load_dataset, label="load_dataset")

    def save_dataset(self, dataset: dict) -> None:
        self.retry.call(self.dataset_store.save_dataset, dataset, label="save_dataset")

    # ── pipeline ─────────────────────────────────────────────────────────

    def preview_file(self, file_name: str, data: bytes, actor) -> ImportPreview:
        """Hash, duplicate check, parse and validate without writing anything."""
        check_permission(actor, ACTION_IMPORT)
        file_hash = _hash_upload(data)
        original = import_ledger.find_duplicate(file_hash, file_name, self.load_history())
        if original is not None:
            raise DuplicateFileError(original)
        file_type = detect_file_type(file_name)
        batch = get_parser(file_type)(data, today=self.clock().date())
        validation = validate_batch(batch)
        return ImportPreview(
            file_name=file_name,
            file_hash=file_hash,
            file_type=file_type,
            batch=batch.to_dict(),
            is_valid=validation.is_valid,
            errors=validation.errors,
        )

    def import_file(self, file_name: str, data: bytes, actor, file_size: int | None = None) -> ImportSummary:
        check_permission(actor, ACTION_IMPORT)
        size = file_size if file_size is not None else len(data or b"")

        with dataset_lock:
            history = self.load_history()
            file_hash = UNKNOWN_HASH
            try:
                file_hash = _hash_upload(data)
                short = file_hash[:12]
                logger.info(
                    "Import started: %s (%d bytes, %s) by %s", file_name, size, short, actor.id,
                    extra={"file_hash": file_hash, "actor_id": actor.id},
                )

                original = import_ledger.find_duplicate(file_hash, file_name, history)
                if original is not None:
                    logger.warning(
                        "Duplicate upload %s matches entry %s", short, original.id,
                        extra={"file_hash": file_hash, "entry_id": original.id},
                    )
                    raise DuplicateFileError(original)

                file_type = detect_file_type(file_name)
                now = self.clock()
                batch = get_parser(file_type)(data, today=now.date())
                logger.info("Parsed %s: %s", short, batch.counts())

                validation = validate_batch(batch)
                if not validation.is_valid:
                    logger.info("Validation failed for %s: %d errors", short, len(validation.errors))
                    raise ImportValidationError(validation.errors)

                entry_id = import_ledger.new_entry_id()
                result = reconcile(batch, self.load_dataset(), import_batch_id=entry_id, now=now)
                self.save_dataset(result.dataset)

                entry = import_ledger.build_entry(
                    entry_id=entry_id,
                    file_name=file_name,
                    file_size=size,
                    file_hash=file_hash,
                    file_type=file_type,
                    actor=actor,
                    status="success",
                    counts=result.counts,
                    areas=result.affected_areas,
                    now=now,
                )
                self.save_history(import_ledger.append_entry(history, entry))
            except KpiTrackerError as exc:
                self._record_failure(history, file_name, size, file_hash, actor, exc)
                raise

        logger.info(
            "Import finished: %s → %s", file_name, result.counts,
            extra={"file_hash": file_hash, "entry_id": entry.id, "actor_id": actor.id},
        )
        return ImportSummary(
            entry_id=entry.id,
            file_name=file_name,
            file_hash=file_hash,
            file_type=file_type,
            counts=result.counts,
            affected_areas=result.affected_areas,
            indicator_ids=[i["id"] for i in result.new_indicators],
            risk_ids=[r["id"] for r in result.new_risks],
        )

    def _record_failure(self, history, file_name, size, file_hash, actor, exc) -> None:
        entry = import_ledger.build_entry(
            file_name=file_name,
            file_size=size,
            file_hash=file_hash,
            actor=actor,
            status="error",
            error_message=str(exc),
            now=self.clock(),
        )
        try:
            self.save_history(import_ledger.append_entry(history, entry))
        except KpiTrackerError:
            logger.exception("Could not record failed import of %s", file_name)
