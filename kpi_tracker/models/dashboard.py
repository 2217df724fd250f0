"""
KPI Tracker
Dashboard domain models.

Models:
    - Indicator: KPI with target/actual and derived status
    - Activity: work item owned by exactly one Indicator (composition)
    - Risk: risk with impact × probability exposure (1-9)

Ownership chain: Indicator → Activity (cascade delete). Risks stand alone.
"""

import math
from datetime import datetime, timezone

from sqlalchemy import event

from kpi_tracker.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AREAS = {"quality", "projects", "infrastructure", "systems", "vp_tech"}
DEFAULT_AREA = "quality"

INDICATOR_STATUSES = {"achieved", "at_risk", "critical", "in_progress"}
ACTIVITY_STATUSES = {"pending", "in_progress", "completed", "suspended", "postponed"}

RISK_IMPACTS = {"alto", "medio", "bajo"}
RISK_PROBABILITIES = {"alta", "media", "baja"}
RISK_STATUSES = {"active", "monitoring", "mitigated"}
MITIGATION_STATUSES = {"pending", "in_progress", "completed"}

IMPACT_WEIGHTS = {"bajo": 1, "medio": 2, "alto": 3}
PROBABILITY_WEIGHTS = {"baja": 1, "media": 2, "alta": 3}

ACHIEVED_THRESHOLD = 90.0
AT_RISK_THRESHOLD = 80.0


# ── Derived fields ───────────────────────────────────────────────────────────

def derive_indicator_status(target, actual) -> str:
    """
    Status from compliance percentage (actual / target × 100).
      >= 90 → achieved
      >= 80 → at_risk
      else  → critical
    A non-positive target cannot be met and is reported as critical.
    """
    try:
        target = float(target or 0)
        actual = float(actual or 0)
    except (TypeError, ValueError):
        return "critical"
    if target <= 0 or math.isnan(target) or math.isnan(actual):
        return "critical"
    percentage = (actual / target) * 100
    if percentage >= ACHIEVED_THRESHOLD:
        return "achieved"
    if percentage >= AT_RISK_THRESHOLD:
        return "at_risk"
    return "critical"


def calculate_risk_exposure(impact: str, probability: str) -> int:
    """
    Exposure = impact weight × probability weight (bajo/baja=1 … alto/alta=3).
    Range: 1–9. Unknown tokens weigh as medio/media.
    """
    i = IMPACT_WEIGHTS.get(impact, IMPACT_WEIGHTS["medio"])
    p = PROBABILITY_WEIGHTS.get(probability, PROBABILITY_WEIGHTS["media"])
    return i * p


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  INDICATOR
# ═══════════════════════════════════════════════════════════════════════════

class Indicator(db.Model):
    """
    A KPI measured against a numeric target.

    ``status`` is derived from actual/target unless it is the explicit
    ``in_progress`` override.
    """

    __tablename__ = "indicators"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    area = db.Column(db.String(30), nullable=False, default=DEFAULT_AREA, index=True)
    target = db.Column(db.Float, nullable=False, default=0.0)
    actual = db.Column(db.Float, nullable=False, default=0.0)
    measurement_date = db.Column(db.Date, nullable=True)
    responsible = db.Column(db.String(150), default="")
    status = db.Column(db.String(20), default="at_risk", index=True)
    seq = db.Column(db.Integer, nullable=False, default=0, comment="Dataset order")
    observations = db.Column(db.Text, default="")
    import_batch_id = db.Column(
        db.String(36), nullable=True, index=True,
        comment="Import history entry that created this row (null = manual)",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    activities = db.relationship(
        "Activity",
        back_populates="indicator",
        cascade="all, delete-orphan",
        order_by="Activity.position",
        lazy="selectin",
    )

    def refresh_status(self):
        """Re-derive status from target/actual; in_progress is kept as-is."""
        if self.status != "in_progress":
            self.status = derive_indicator_status(self.target, self.actual)

    def to_dict(self, include_activities=True):
        d = {
            "id": self.id,
            "name": self.name,
            "area": self.area,
            "target": self.target,
            "actual": self.actual,
            "measurement_date": _iso(self.measurement_date),
            "responsible": self.responsible,
            "status": self.status,
            "observations": self.observations,
            "import_batch_id": self.import_batch_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_activities:
            d["activities"] = [a.to_dict() for a in self.activities]
        return d

    def __repr__(self):
        return f"<Indicator {self.id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  ACTIVITY
# ═══════════════════════════════════════════════════════════════════════════

class Activity(db.Model):
    """A work item owned by exactly one indicator."""

    __tablename__ = "activities"

    id = db.Column(db.String(120), primary_key=True)
    indicator_id = db.Column(
        db.String(64),
        db.ForeignKey("indicators.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(300), nullable=False)
    area = db.Column(db.String(30), nullable=False, default=DEFAULT_AREA)
    status = db.Column(db.String(20), default="pending")
    progress = db.Column(db.Integer, default=0, comment="0-100")
    start_date = db.Column(db.Date, nullable=True)
    estimated_end_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    responsible = db.Column(db.String(150), default="")
    observations = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    indicator = db.relationship("Indicator", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "indicator_id": self.indicator_id,
            "name": self.name,
            "area": self.area,
            "status": self.status,
            "progress": self.progress,
            "start_date": _iso(self.start_date),
            "estimated_end_date": _iso(self.estimated_end_date),
            "actual_end_date": _iso(self.actual_end_date),
            "responsible": self.responsible,
            "observations": self.observations,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Activity {self.id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  RISK
# ═══════════════════════════════════════════════════════════════════════════

class Risk(db.Model):
    """
    A risk tracked per area.

    Exposure = impact × probability (1-9); recomputed before every flush.
    """

    __tablename__ = "risks"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    area = db.Column(db.String(30), nullable=False, default=DEFAULT_AREA, index=True)
    category = db.Column(db.String(100), default="operativo")
    impact = db.Column(db.String(10), default="medio")
    probability = db.Column(db.String(10), default="media")
    exposure = db.Column(db.Integer, default=4, comment="impact × probability")
    mitigation_plan = db.Column(db.Text, default="")
    mitigation_status = db.Column(db.String(20), default="pending")
    status = db.Column(db.String(20), default="active", index=True)
    responsible = db.Column(db.String(150), default="")
    import_batch_id = db.Column(db.String(36), nullable=True, index=True)
    seq = db.Column(db.Integer, nullable=False, default=0, comment="Dataset order")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def recalculate_exposure(self):
        """Recalculate exposure from impact & probability."""
        self.exposure = calculate_risk_exposure(self.impact, self.probability)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "area": self.area,
            "category": self.category,
            "impact": self.impact,
            "probability": self.probability,
            "exposure": self.exposure,
            "mitigation_plan": self.mitigation_plan,
            "mitigation_status": self.mitigation_status,
            "status": self.status,
            "responsible": self.responsible,
            "import_batch_id": self.import_batch_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Risk {self.id}: {self.name[:40]}>"


@event.listens_for(Risk, "before_insert")
@event.listens_for(Risk, "before_update")
def _recompute_exposure(mapper, connection, target):
    target.recalculate_exposure()
