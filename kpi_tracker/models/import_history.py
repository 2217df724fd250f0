"""
KPI Tracker
Import history ledger model.

Models:
    - ImportHistoryEntry: one row per upload attempt, success or error.

Append-only except for permission-gated deletion/redaction. Entries are
never cascaded from the indicators/risks they describe.
"""

from datetime import datetime, timezone

from kpi_tracker.models import db


# ── Constants ────────────────────────────────────────────────────────────────

IMPORT_STATUSES = {"success", "error"}
FILE_TYPES = {"HTML", "Excel"}
UNKNOWN_HASH = "unknown"


class ImportHistoryEntry(db.Model):
    """Ledger row for a single import attempt."""

    __tablename__ = "import_history"
    __table_args__ = (
        db.Index("idx_import_history_hash", "file_hash"),
        db.Index("idx_import_history_name_status", "file_name", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    seq = db.Column(db.Integer, nullable=False, default=0, comment="Submission order")
    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, default=0)
    file_hash = db.Column(db.String(64), nullable=False, default=UNKNOWN_HASH)
    file_type = db.Column(db.String(10), default="")
    imported_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    indicators_count = db.Column(db.Integer, default=0)
    activities_count = db.Column(db.Integer, default=0)
    risks_count = db.Column(db.Integer, default=0)
    status = db.Column(db.String(10), nullable=False, default="error")
    error_message = db.Column(db.Text, nullable=True)
    imported_by_id = db.Column(db.String(64), default="")
    imported_by = db.Column(db.String(150), default="")
    imported_by_role = db.Column(db.String(30), default="")
    areas = db.Column(db.JSON, default=list)

    def to_dict(self):
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "file_hash": self.file_hash,
            "file_type": self.file_type,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
            "indicators_count": self.indicators_count,
            "activities_count": self.activities_count,
            "risks_count": self.risks_count,
            "status": self.status,
            "error_message": self.error_message,
            "imported_by_id": self.imported_by_id,
            "imported_by": self.imported_by,
            "imported_by_role": self.imported_by_role,
            "areas": list(self.areas or []),
        }

    def __repr__(self):
        return f"<ImportHistoryEntry {self.id}: {self.file_name} ({self.status})>"
