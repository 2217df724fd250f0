"""
KPI Tracker
ImportBatch — typed intermediate between the parsers and reconciliation.

Proto-records carry no ids or timestamps. Parsers build them field by field;
the validator inspects them; reconciliation turns them into dataset dicts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date


@dataclass
class ProtoIndicator:
    name: str
    area: str
    target: float
    actual: float
    measurement_date: date
    responsible: str = ""
    status: str = "at_risk"
    observations: str = ""


@dataclass
class ProtoActivity:
    """A parsed activity. ``indicator_ref`` is an optional explicit owner link
    (row number or indicator name) read from the source document."""
    name: str
    area: str
    status: str
    progress: int
    start_date: date
    estimated_end_date: date
    actual_end_date: date | None = None
    responsible: str = ""
    observations: str = ""
    indicator_ref: str | None = None


@dataclass
class ProtoRisk:
    name: str
    area: str
    category: str = "operativo"
    impact: str = "medio"
    probability: str = "media"
    mitigation_plan: str = ""
    mitigation_status: str = "pending"
    status: str = "active"
    responsible: str = ""


@dataclass
class ImportBatch:
    """Everything one document yielded, in document order."""
    indicators: list[ProtoIndicator] = field(default_factory=list)
    activities: list[ProtoActivity] = field(default_factory=list)
    risks: list[ProtoRisk] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.indicators or self.activities or self.risks)

    def counts(self) -> dict:
        return {
            "indicators": len(self.indicators),
            "activities": len(self.activities),
            "risks": len(self.risks),
        }

    def to_dict(self) -> dict:
        def _plain(record):
            d = asdict(record)
            return {k: v.isoformat() if isinstance(v, date) else v for k, v in d.items()}

        return {
            "indicators": [_plain(i) for i in self.indicators],
            "activities": [_plain(a) for a in self.activities],
            "risks": [_plain(r) for r in self.risks],
        }
