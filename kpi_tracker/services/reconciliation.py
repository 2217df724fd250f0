"""
KPI Tracker
Reconciliation Engine — validated ImportBatch + current dataset → new dataset.

Algorithm (deterministic for equal batch, dataset and ``now``):
  1. Mint indicator ids ``ind-{stamp}-{i}`` (stamp = epoch ms of ``now``).
  2. Activities with an ``indicator_ref`` matching a proto-indicator (1-based
     row number or case-insensitive name) attach to it. The remaining ones
     are apportioned in contiguous chunks of ``ceil(unlinked / N)``; chunk i
     goes to indicator i.
  3. Activities left over (all of them when N == 0) each get a synthesised
     owner "Indicador para: {name}".
  4. Any indicator still without activities gets a default activity.
  5. Indicator status is re-derived from target/actual unless in_progress.
  6. Risks get ``risk-{stamp}-{i}`` ids and a recomputed exposure.
  7. New records are appended to copies of the current lists.

Reconciliation never validates and never raises on a validated batch.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from kpi_tracker.models.dashboard import calculate_risk_exposure, derive_indicator_status
from kpi_tracker.services.import_batch import ImportBatch, ProtoActivity, ProtoIndicator

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_PROGRESS = 50
DEFAULT_ACTIVITY_HORIZON = timedelta(days=90)

OVERFLOW_STATUS = {
    "completed": "achieved",
    "in_progress": "at_risk",
}


@dataclass
class ReconciliationResult:
    dataset: dict
    new_indicators: list[dict] = field(default_factory=list)
    new_risks: list[dict] = field(default_factory=list)
    affected_areas: list[str] = field(default_factory=list)

    @property
    def counts(self) -> dict:
        return {
            "indicators": len(self.new_indicators),
            "activities": sum(len(i["activities"]) for i in self.new_indicators),
            "risks": len(self.new_risks),
        }

    def to_dict(self) -> dict:
        return {
            "counts": self.counts,
            "affected_areas": list(self.affected_areas),
            "indicator_ids": [i["id"] for i in self.new_indicators],
            "risk_ids": [r["id"] for r in self.new_risks],
        }


def _iso(value):
    if value is None:
        return None
    return value.isoformat()


class _IdMinter:
    """Hands out ids that collide neither with the dataset nor each other."""

    def __init__(self, taken):
        self.taken = set(taken)

    def mint(self, candidate: str) -> str:
        unique = candidate
        n = 2
        while unique in self.taken:
            unique = f"{candidate}-{n}"
            n += 1
        self.taken.add(unique)
        return unique


def _existing_ids(dataset: dict) -> set:
    ids = set()
    for indicator in dataset.get("indicators", []):
        ids.add(indicator.get("id"))
        for activity in indicator.get("activities", []):
            ids.add(activity.get("id"))
    for risk in dataset.get("risks", []):
        ids.add(risk.get("id"))
    return ids


def _resolve_ref(ref, protos: list[ProtoIndicator]) -> int | None:
    """Index of the proto-indicator an explicit link points at, if any."""
    if not ref:
        return None
    text = str(ref).strip()
    if text.isdigit():
        position = int(text)
        if 1 <= position <= len(protos):
            return position - 1
    lowered = text.lower()
    for index, proto in enumerate(protos):
        if proto.name and proto.name.strip().lower() == lowered:
            return index
    return None


def _activity_dict(activity: ProtoActivity, *, activity_id, owner, stamp_iso) -> dict:
    return {
        "id": activity_id,
        "indicator_id": owner["id"],
        "name": activity.name,
        "area": owner["area"],
        "status": activity.status,
        "progress": activity.progress,
        "start_date": _iso(activity.start_date),
        "estimated_end_date": _iso(activity.estimated_end_date),
        "actual_end_date": _iso(activity.actual_end_date),
        "responsible": activity.responsible,
        "observations": activity.observations,
        "created_at": stamp_iso,
        "updated_at": stamp_iso,
    }


def _indicator_dict(proto: ProtoIndicator, *, indicator_id, import_batch_id, stamp_iso) -> dict:
    return {
        "id": indicator_id,
        "name": proto.name,
        "area": proto.area,
        "target": float(proto.target),
        "actual": float(proto.actual),
        "measurement_date": _iso(proto.measurement_date),
        "responsible": proto.responsible,
        "status": proto.status,
        "observations": proto.observations,
        "import_batch_id": import_batch_id,
        "created_at": stamp_iso,
        "updated_at": stamp_iso,
        "activities": [],
    }


def apportion(activity_count: int, indicator_count: int) -> tuple[list[range], range]:
    """
    Split ``activity_count`` positions across ``indicator_count`` owners.

    Returns one contiguous range per owner plus the overflow range:
        apportion(5, 2) → ([range(0, 3), range(3, 5)], range(5, 5))
        apportion(3, 0) → ([], range(0, 3))
    """
    if indicator_count <= 0:
        return [], range(0, activity_count)
    per = math.ceil(activity_count / indicator_count)
    chunks = []
    for i in range(indicator_count):
        start = min(i * per, activity_count)
        chunks.append(range(start, min(start + per, activity_count)))
    return chunks, range(min(per * indicator_count, activity_count), activity_count)


def reconcile(
    batch: ImportBatch,
    dataset: dict,
    *,
    import_batch_id: str | None = None,
    now: datetime | None = None,
) -> ReconciliationResult:
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    stamp_iso = now.isoformat()
    minter = _IdMinter(_existing_ids(dataset))

    # ── 1. Indicators ──
    new_indicators = []
    for i, proto in enumerate(batch.indicators):
        new_indicators.append(_indicator_dict(
            proto,
            indicator_id=minter.mint(f"ind-{stamp}-{i}"),
            import_batch_id=import_batch_id,
            stamp_iso=stamp_iso,
        ))

    # ── 2. Explicit links, then apportionment ──
    owned: list[list[ProtoActivity]] = [[] for _ in new_indicators]
    unlinked: list[ProtoActivity] = []
    for activity in batch.activities:
        index = _resolve_ref(activity.indicator_ref, batch.indicators)
        if index is None:
            unlinked.append(activity)
        else:
            owned[index].append(activity)

    chunks, overflow = apportion(len(unlinked), len(new_indicators))
    for index, chunk in enumerate(chunks):
        owned[index].extend(unlinked[k] for k in chunk)

    for indicator, activities in zip(new_indicators, owned):
        indicator["activities"] = [
            _activity_dict(
                activity,
                activity_id=minter.mint(f"act-{indicator['id']}-{position}"),
                owner=indicator,
                stamp_iso=stamp_iso,
            )
            for position, activity in enumerate(activities)
        ]

    # ── 3. Overflow indicators ──
    proto_count = len(new_indicators)
    for n, k in enumerate(overflow):
        activity = unlinked[k]
        owner = _indicator_dict(
            ProtoIndicator(
                name=f"Indicador para: {activity.name}",
                area=activity.area,
                target=100.0,
                actual=float(activity.progress),
                measurement_date=activity.start_date,
                responsible=activity.responsible,
                status=OVERFLOW_STATUS.get(activity.status, "critical"),
                observations=f"Indicador generado automáticamente para la actividad: {activity.name}",
            ),
            indicator_id=minter.mint(f"ind-activity-{stamp}-{n}"),
            import_batch_id=import_batch_id,
            stamp_iso=stamp_iso,
        )
        owner["activities"] = [_activity_dict(
            activity,
            activity_id=minter.mint(f"act-{owner['id']}-0"),
            owner=owner,
            stamp_iso=stamp_iso,
        )]
        new_indicators.append(owner)

    # ── 4. Orphan guarantee & 5. status ──
    for position, indicator in enumerate(new_indicators):
        if not indicator["activities"]:
            indicator["activities"] = [
                _default_activity(indicator, minter, stamp_iso, fallback_date=now.date())
            ]
        if position < proto_count and indicator["status"] != "in_progress":
            indicator["status"] = derive_indicator_status(indicator["target"], indicator["actual"])

    # ── 6. Risks ──
    new_risks = []
    for i, proto in enumerate(batch.risks):
        new_risks.append({
            "id": minter.mint(f"risk-{stamp}-{i}"),
            "name": proto.name,
            "area": proto.area,
            "category": proto.category,
            "impact": proto.impact,
            "probability": proto.probability,
            "exposure": calculate_risk_exposure(proto.impact, proto.probability),
            "mitigation_plan": proto.mitigation_plan,
            "mitigation_status": proto.mitigation_status,
            "status": proto.status,
            "responsible": proto.responsible,
            "import_batch_id": import_batch_id,
            "created_at": stamp_iso,
            "updated_at": stamp_iso,
        })

    # ── 7. Merge ──
    merged = {
        "indicators": [*dataset.get("indicators", []), *new_indicators],
        "risks": [*dataset.get("risks", []), *new_risks],
    }
    areas = sorted({i["area"] for i in new_indicators} | {r["area"] for r in new_risks})

    result = ReconciliationResult(
        dataset=merged,
        new_indicators=new_indicators,
        new_risks=new_risks,
        affected_areas=areas,
    )
    logger.info(
        "Reconciled batch %s: %s, %d overflow, areas=%s",
        import_batch_id, result.counts, len(overflow), areas,
    )
    return result


def _default_activity(indicator: dict, minter: _IdMinter, stamp_iso: str, fallback_date: date) -> dict:
    start = date.fromisoformat(indicator["measurement_date"]) if indicator["measurement_date"] else fallback_date
    return {
        "id": minter.mint(f"act-default-{indicator['id']}"),
        "indicator_id": indicator["id"],
        "name": f"Actividad por defecto para {indicator['name']}",
        "area": indicator["area"],
        "status": "in_progress",
        "progress": DEFAULT_ACTIVITY_PROGRESS,
        "start_date": start.isoformat(),
        "estimated_end_date": (start + DEFAULT_ACTIVITY_HORIZON).isoformat(),
        "actual_end_date": None,
        "responsible": indicator["responsible"],
        "observations": "Actividad generada automáticamente durante la importación",
        "created_at": stamp_iso,
        "updated_at": stamp_iso,
    }
