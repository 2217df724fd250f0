"""
KPI Tracker
Import Ledger — content-hash deduplication and the append-only history log.

Every upload attempt, successful or not, becomes one ImportHistoryEntry.
The functions here work on the in-memory history list; ImportService and
the history blueprint load and save that list through a HistoryStore.

    file_hash = compute_content_hash(data)
    original = find_duplicate(file_hash, file_name, history)
    if original:
        raise DuplicateFileError(original)
"""

import hashlib
import logging
import uuid
from datetime import datetime, timezone

from kpi_tracker.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from kpi_tracker.models.import_history import UNKNOWN_HASH, ImportHistoryEntry
from kpi_tracker.services.permission import (
    ACTION_DELETE_HISTORY,
    ACTION_DELETE_IMPORTED_DATA,
    ACTION_PURGE_HISTORY,
    can_delete_entry,
    check_permission,
)

logger = logging.getLogger(__name__)

REDACTED_MESSAGE = "Datos eliminados por el administrador"

DELETE_STRATEGY_BATCH = "batch"
DELETE_STRATEGY_DAY = "day"
DELETE_STRATEGIES = {DELETE_STRATEGY_BATCH, DELETE_STRATEGY_DAY}


# ═════════════════════════════════════════════════════════════════════════════
# Deduplication
# ═════════════════════════════════════════════════════════════════════════════

def compute_content_hash(data: bytes) -> str:
    """SHA-256 hex digest of the raw upload bytes."""
    return hashlib.sha256(data).hexdigest()


def find_duplicate(file_hash: str, file_name: str, history) -> ImportHistoryEntry | None:
    """
    First successful history entry that makes this upload a duplicate:
      - same content hash, or
      - same file name.

    Failed attempts keep their hash for the audit trail but never block a
    retry of the same bytes.
    """
    for entry in history:
        if entry.status != "success":
            continue
        if file_hash and file_hash != UNKNOWN_HASH and entry.file_hash == file_hash:
            return entry
        if entry.file_name == file_name:
            return entry
    return None


def is_duplicate(file_hash: str, file_name: str, history) -> bool:
    return find_duplicate(file_hash, file_name, history) is not None


# ═════════════════════════════════════════════════════════════════════════════
# Entry construction & append
# ═════════════════════════════════════════════════════════════════════════════

def file_type_label(file_name: str) -> str:
    name = (file_name or "").lower()
    return "HTML" if name.endswith((".html", ".htm")) else "Excel"


def new_entry_id() -> str:
    return str(uuid.uuid4())


def build_entry(
    *,
    file_name: str,
    file_size: int,
    actor,
    status: str,
    file_hash: str | None = None,
    file_type: str | None = None,
    counts: dict | None = None,
    areas=None,
    error_message: str | None = None,
    entry_id: str | None = None,
    now: datetime | None = None,
) -> ImportHistoryEntry:
    """Build a transient history entry. Error entries carry zero counts."""
    counts = counts or {}
    return ImportHistoryEntry(
        id=entry_id or new_entry_id(),
        file_name=file_name,
        file_size=file_size or 0,
        file_hash=file_hash or UNKNOWN_HASH,
        file_type=file_type or file_type_label(file_name),
        imported_at=now or datetime.now(timezone.utc),
        indicators_count=counts.get("indicators", 0),
        activities_count=counts.get("activities", 0),
        risks_count=counts.get("risks", 0),
        status=status,
        error_message=error_message,
        imported_by_id=actor.id if actor else "",
        imported_by=actor.name if actor else "Usuario desconocido",
        imported_by_role=actor.role if actor else "unknown",
        areas=sorted(areas or []),
    )


def append_entry(history: list, entry: ImportHistoryEntry) -> list:
    """Return a new history list with ``entry`` appended in submission order."""
    entry.seq = (max((e.seq or 0) for e in history) + 1) if history else 0
    logger.info(
        "History entry %s: %s %s (%s)",
        entry.id, entry.status, entry.file_name, (entry.file_hash or "")[:12],
        extra={"entry_id": entry.id, "file_hash": entry.file_hash, "actor_id": entry.imported_by_id},
    )
    return [*history, entry]


def find_entry(history, entry_id: str) -> ImportHistoryEntry:
    for entry in history:
        if entry.id == entry_id:
            return entry
    raise NotFoundError(resource="ImportHistoryEntry", resource_id=entry_id)


# ═════════════════════════════════════════════════════════════════════════════
# Permission-gated mutations
# ═════════════════════════════════════════════════════════════════════════════

def can_delete(entry, actor) -> bool:
    return can_delete_entry(entry, actor)


def delete_entry(history: list, entry_id: str, actor) -> list:
    """Remove one entry from the log. The data it describes is untouched."""
    entry = find_entry(history, entry_id)
    if not can_delete_entry(entry, actor):
        raise PermissionDeniedError(ACTION_DELETE_HISTORY, actor.role if actor else None)
    logger.info("History entry %s deleted by %s", entry_id, actor.id)
    return [e for e in history if e.id != entry_id]


def purge_history(history: list, actor) -> list:
    """Drop the whole log (admin only). Indicators and risks are kept."""
    check_permission(actor, ACTION_PURGE_HISTORY)
    logger.warning("Import history purged by %s (%d entries)", actor.id, len(history))
    return []


def _created_on(record: dict, day) -> bool:
    created = record.get("created_at")
    if not created:
        return False
    if isinstance(created, datetime):
        return created.date() == day
    return str(created)[:10] == day.isoformat()


def delete_imported_data(entry, actor, dataset: dict, strategy: str = DELETE_STRATEGY_BATCH):
    """
    Remove the indicators/risks an import created and redact its entry.

    strategy="batch": records tagged with ``import_batch_id == entry.id``.
    strategy="day":   records created on the entry's import day, for data
                      imported before batch tagging existed.

    Returns ``(new_dataset, removed)`` where ``removed`` holds the counts.
    The entry is mutated in place (status → error, redaction message).
    """
    check_permission(actor, ACTION_DELETE_IMPORTED_DATA)
    if strategy not in DELETE_STRATEGIES:
        raise ValidationError(
            f"Unknown delete strategy: {strategy}",
            details={"strategy": sorted(DELETE_STRATEGIES)},
        )
    if entry.status != "success":
        raise ValidationError(
            "Only successful imports have data to delete",
            details={"status": entry.status},
        )

    if strategy == DELETE_STRATEGY_BATCH:
        def matches(record):
            return record.get("import_batch_id") == entry.id
    else:
        day = entry.imported_at.date()

        def matches(record):
            return _created_on(record, day)

    indicators = list(dataset.get("indicators", []))
    risks = list(dataset.get("risks", []))
    kept_indicators = [i for i in indicators if not matches(i)]
    kept_risks = [r for r in risks if not matches(r)]
    removed = {
        "indicators": len(indicators) - len(kept_indicators),
        "risks": len(risks) - len(kept_risks),
    }

    entry.status = "error"
    entry.error_message = REDACTED_MESSAGE
    logger.warning(
        "Imported data of %s deleted by %s (strategy=%s): %s",
        entry.id, actor.id, strategy, removed,
    )
    return {"indicators": kept_indicators, "risks": kept_risks}, removed
