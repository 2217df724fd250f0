"""
KPI Tracker
Dataset & history persistence collaborators.

Contracts (any durable store can implement them):
    DatasetStore.load_dataset() -> {"indicators": [...], "risks": [...]}
    DatasetStore.save_dataset(dataset)
    HistoryStore.load_history() -> [ImportHistoryEntry, ...]
    HistoryStore.save_history(entries)

The shipped implementations sit on Flask-SQLAlchemy. ``save_*`` diff-syncs
the wholesale payload against the tables (insert / update / delete missing)
and commits once, so a save either lands completely or not at all.

Every call from the services goes through a RetryPolicy. Writers hold
``dataset_lock`` so imports and manual edits never interleave.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError

from kpi_tracker.core.exceptions import PersistenceError
from kpi_tracker.models import db
from kpi_tracker.models.dashboard import Activity, Indicator, Risk
from kpi_tracker.models.import_history import ImportHistoryEntry
from kpi_tracker.utils.helpers import parse_date

logger = logging.getLogger(__name__)

# Single writer for the dataset and the history ledger.
dataset_lock = threading.RLock()


class DatasetStore(Protocol):
    def load_dataset(self) -> dict: ...

    def save_dataset(self, dataset: dict) -> None: ...


class HistoryStore(Protocol):
    def load_history(self) -> list: ...

    def save_history(self, entries: list) -> None: ...


# ═════════════════════════════════════════════════════════════════════════════
# Retry policy
# ═════════════════════════════════════════════════════════════════════════════

_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [0.5, 2]

RETRYABLE_ERRORS = (SQLAlchemyError, PersistenceError, OSError)


@dataclass
class RetryPolicy:
    """
    Uniform retry at the persistence boundary.

    ``max_attempts`` includes the first try. ``backoff`` holds the sleep
    before each retry; the last value repeats if there are more retries.
    """
    max_attempts: int = _RETRY_MAX + 1
    backoff: list[float] = field(default_factory=lambda: list(_RETRY_BACKOFF_SECONDS))
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(config.get("PERSISTENCE_RETRY_ATTEMPTS", _RETRY_MAX + 1))),
            backoff=list(config.get("PERSISTENCE_RETRY_BACKOFF", _RETRY_BACKOFF_SECONDS)),
        )

    def call(self, fn, *args, label: str = "persistence call"):
        last_error = None
        for attempt in range(self.max_attempts):
            try:
                return fn(*args)
            except RETRYABLE_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "%s failed attempt=%d/%d error=%s",
                    label, attempt + 1, self.max_attempts, exc,
                )
            if attempt < self.max_attempts - 1 and self.backoff:
                sleep_s = self.backoff[min(attempt, len(self.backoff) - 1)]
                logger.info("Retrying %s in %ss (attempt %d)", label, sleep_s, attempt + 2)
                self.sleep(sleep_s)

        raise PersistenceError(
            f"{label} failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error


# ═════════════════════════════════════════════════════════════════════════════
# SQL implementations
# ═════════════════════════════════════════════════════════════════════════════

def _timestamp(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _commit(label: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("%s: commit failed, rolled back", label)
        raise


_INDICATOR_FIELDS = ("name", "area", "target", "actual", "responsible", "status", "observations",
                     "import_batch_id")
_ACTIVITY_FIELDS = ("name", "area", "status", "progress", "responsible", "observations")
_ACTIVITY_DATES = ("start_date", "estimated_end_date", "actual_end_date")
_RISK_FIELDS = ("name", "area", "category", "impact", "probability", "mitigation_plan",
                "mitigation_status", "status", "responsible", "import_batch_id")


def _apply(obj, data: dict, fields) -> None:
    for name in fields:
        if name in data:
            setattr(obj, name, data[name])
    for name in ("created_at", "updated_at"):
        stamp = _timestamp(data.get(name))
        if stamp is not None:
            setattr(obj, name, stamp)


class SqlDatasetStore:
    """Indicators (+ owned activities) and risks in their relational tables."""

    def load_dataset(self) -> dict:
        indicators = Indicator.query.order_by(Indicator.seq, Indicator.created_at).all()
        risks = Risk.query.order_by(Risk.seq, Risk.created_at).all()
        return {
            "indicators": [i.to_dict() for i in indicators],
            "risks": [r.to_dict() for r in risks],
        }

    def save_dataset(self, dataset: dict) -> None:
        try:
            self._sync_indicators(dataset.get("indicators", []))
            self._sync_risks(dataset.get("risks", []))
        except SQLAlchemyError:
            db.session.rollback()
            raise
        _commit("save_dataset")

    def _sync_indicators(self, items) -> None:
        existing = {i.id: i for i in Indicator.query.all()}
        keep = set()
        for seq, data in enumerate(items):
            indicator = existing.get(data["id"])
            if indicator is None:
                indicator = Indicator(id=data["id"])
                db.session.add(indicator)
            _apply(indicator, data, _INDICATOR_FIELDS)
            indicator.seq = seq
            indicator.measurement_date = parse_date(data.get("measurement_date"))
            indicator.activities = self._sync_activities(indicator, data.get("activities", []))
            keep.add(indicator.id)
        for indicator_id, indicator in existing.items():
            if indicator_id not in keep:
                db.session.delete(indicator)

    def _sync_activities(self, indicator, items) -> list:
        current = {a.id: a for a in indicator.activities}
        result = []
        for position, data in enumerate(items):
            activity = current.get(data["id"]) or Activity(id=data["id"])
            _apply(activity, data, _ACTIVITY_FIELDS)
            for name in _ACTIVITY_DATES:
                setattr(activity, name, parse_date(data.get(name)))
            activity.position = position
            activity.indicator_id = indicator.id
            result.append(activity)
        return result

    def _sync_risks(self, items) -> None:
        existing = {r.id: r for r in Risk.query.all()}
        keep = set()
        for seq, data in enumerate(items):
            risk = existing.get(data["id"])
            if risk is None:
                risk = Risk(id=data["id"])
                db.session.add(risk)
            _apply(risk, data, _RISK_FIELDS)
            risk.seq = seq
            risk.recalculate_exposure()
            keep.add(risk.id)
        for risk_id, risk in existing.items():
            if risk_id not in keep:
                db.session.delete(risk)


class SqlHistoryStore:
    """The import_history table, in submission order."""

    def load_history(self) -> list:
        return ImportHistoryEntry.query.order_by(
            ImportHistoryEntry.seq, ImportHistoryEntry.imported_at
        ).all()

    def save_history(self, entries: list) -> None:
        try:
            keep = {e.id for e in entries}
            for row in ImportHistoryEntry.query.all():
                if row.id not in keep:
                    db.session.delete(row)
            for seq, entry in enumerate(entries):
                entry.seq = seq
                db.session.merge(entry)
        except SQLAlchemyError:
            db.session.rollback()
            raise
        _commit("save_history")
