"""Dataset service layer — manual indicator / activity / risk operations.

Transaction policy: functions flush(), never commit().
Caller (route handler) holds ``dataset_lock`` and commits.

Operations:
- Indicator CRUD; status re-derived on every change, activities preserved
- Activity CRUD under an existing indicator (progress 0..100, area copied)
- Risk CRUD; exposure recomputed by the model on flush
- Dataset statistics and integrity report
"""
import logging
import uuid

from sqlalchemy import func

from kpi_tracker.core.exceptions import NotFoundError, ValidationError
from kpi_tracker.models import db
from kpi_tracker.models.dashboard import (
    ACTIVITY_STATUSES,
    AREAS,
    INDICATOR_STATUSES,
    MITIGATION_STATUSES,
    RISK_IMPACTS,
    RISK_PROBABILITIES,
    RISK_STATUSES,
    Activity,
    Indicator,
    Risk,
    calculate_risk_exposure,
)
from kpi_tracker.models.import_history import ImportHistoryEntry
from kpi_tracker.services.permission import ACTION_EDIT_DATASET, check_permission
from kpi_tracker.utils.helpers import parse_date

logger = logging.getLogger(__name__)


def _new_id(prefix):
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _require(data, fields, errors):
    for name in fields:
        if not str(data.get(name) or "").strip():
            errors[name] = "required"


def _check_choice(data, name, choices, errors):
    if name in data and data[name] not in choices:
        errors[name] = f"must be one of {sorted(choices)}"


def _number(data, name, errors):
    try:
        return float(data[name])
    except (TypeError, ValueError):
        errors[name] = "must be a number"
        return None


def _raise_if(errors, message):
    if errors:
        raise ValidationError(message, details=errors)


def _next_seq(model):
    return (db.session.query(func.max(model.seq)).scalar() or 0) + 1


# ── Indicator ────────────────────────────────────────────────────────────


def list_indicators(area=None):
    q = Indicator.query
    if area:
        q = q.filter_by(area=area)
    return q.order_by(Indicator.seq, Indicator.created_at)


def get_indicator(indicator_id):
    indicator = db.session.get(Indicator, indicator_id)
    if indicator is None:
        raise NotFoundError(resource="Indicator", resource_id=indicator_id)
    return indicator


def _validate_indicator(data, *, partial=False):
    errors = {}
    if not partial:
        _require(data, ("name", "area", "responsible"), errors)
    _check_choice(data, "area", AREAS, errors)
    _check_choice(data, "status", INDICATOR_STATUSES, errors)
    if "target" in data:
        target = _number(data, "target", errors)
        if target is not None and target <= 0:
            errors["target"] = "must be greater than 0"
    elif not partial:
        errors["target"] = "required"
    if "actual" in data:
        actual = _number(data, "actual", errors)
        if actual is not None and actual < 0:
            errors["actual"] = "must be >= 0"
    _raise_if(errors, "Invalid indicator")


def create_indicator(data, actor):
    """Create a manual indicator (no import batch). Returns the flushed row."""
    check_permission(actor, ACTION_EDIT_DATASET)
    _validate_indicator(data)
    indicator = Indicator(
        id=_new_id("ind"),
        name=data["name"].strip(),
        area=data["area"],
        target=float(data["target"]),
        actual=float(data.get("actual", 0)),
        measurement_date=parse_date(data.get("measurement_date")),
        responsible=data["responsible"].strip(),
        status=data.get("status", "at_risk"),
        observations=data.get("observations", ""),
        seq=_next_seq(Indicator),
    )
    indicator.refresh_status()
    db.session.add(indicator)
    db.session.flush()
    logger.info("Indicator %s created by %s", indicator.id, actor.id)
    return indicator


def update_indicator(indicator, data, actor):
    """Edit indicator fields. Its activities are kept; their area follows."""
    check_permission(actor, ACTION_EDIT_DATASET)
    _validate_indicator(data, partial=True)
    for field in ("name", "area", "responsible", "observations", "status"):
        if field in data:
            setattr(indicator, field, data[field])
    for field in ("target", "actual"):
        if field in data:
            setattr(indicator, field, float(data[field]))
    if "measurement_date" in data:
        indicator.measurement_date = parse_date(data["measurement_date"])
    if "area" in data:
        for activity in indicator.activities:
            activity.area = indicator.area
    indicator.refresh_status()
    db.session.flush()
    return indicator


def delete_indicator(indicator, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    logger.info(
        "Indicator %s deleted by %s (%d activities cascaded)",
        indicator.id, actor.id, len(indicator.activities),
    )
    db.session.delete(indicator)
    db.session.flush()


# ── Activity ─────────────────────────────────────────────────────────────


def get_activity(activity_id):
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError(resource="Activity", resource_id=activity_id)
    return activity


def _validate_activity(data, *, partial=False):
    errors = {}
    if not partial:
        _require(data, ("name", "responsible"), errors)
    _check_choice(data, "status", ACTIVITY_STATUSES, errors)
    if "progress" in data:
        try:
            progress = int(data["progress"])
        except (TypeError, ValueError):
            errors["progress"] = "must be an integer"
        else:
            if not 0 <= progress <= 100:
                errors["progress"] = "must be between 0 and 100"
    _raise_if(errors, "Invalid activity")


def _apply_activity_dates(activity, data):
    for field in ("start_date", "estimated_end_date", "actual_end_date"):
        if field in data:
            setattr(activity, field, parse_date(data[field]))


def add_activity(indicator_id, data, actor):
    """Add an activity to an existing indicator."""
    check_permission(actor, ACTION_EDIT_DATASET)
    indicator = get_indicator(indicator_id)
    _validate_activity(data)
    activity = Activity(
        id=_new_id(f"act-{indicator.id}"),
        indicator_id=indicator.id,
        position=len(indicator.activities),
        name=data["name"].strip(),
        area=indicator.area,
        status=data.get("status", "pending"),
        progress=int(data.get("progress", 0)),
        responsible=data["responsible"].strip(),
        observations=data.get("observations", ""),
    )
    _apply_activity_dates(activity, data)
    indicator.activities.append(activity)
    db.session.flush()
    return activity


def update_activity(activity, data, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    _validate_activity(data, partial=True)
    for field in ("name", "status", "responsible", "observations"):
        if field in data:
            setattr(activity, field, data[field])
    if "progress" in data:
        activity.progress = int(data["progress"])
    _apply_activity_dates(activity, data)
    db.session.flush()
    return activity


def delete_activity(activity, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    indicator = activity.indicator
    indicator.activities.remove(activity)
    for position, remaining in enumerate(indicator.activities):
        remaining.position = position
    db.session.flush()


# ── Risk ─────────────────────────────────────────────────────────────────


def list_risks(area=None, status=None):
    q = Risk.query
    if area:
        q = q.filter_by(area=area)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Risk.seq, Risk.created_at)


def get_risk(risk_id):
    risk = db.session.get(Risk, risk_id)
    if risk is None:
        raise NotFoundError(resource="Risk", resource_id=risk_id)
    return risk


def _validate_risk(data, *, partial=False):
    errors = {}
    if not partial:
        _require(data, ("name", "area", "responsible"), errors)
    _check_choice(data, "area", AREAS, errors)
    _check_choice(data, "impact", RISK_IMPACTS, errors)
    _check_choice(data, "probability", RISK_PROBABILITIES, errors)
    _check_choice(data, "status", RISK_STATUSES, errors)
    _check_choice(data, "mitigation_status", MITIGATION_STATUSES, errors)
    _raise_if(errors, "Invalid risk")


def create_risk(data, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    _validate_risk(data)
    risk = Risk(
        id=_new_id("risk"),
        name=data["name"].strip(),
        area=data["area"],
        category=data.get("category", "operativo"),
        impact=data.get("impact", "medio"),
        probability=data.get("probability", "media"),
        mitigation_plan=data.get("mitigation_plan", ""),
        mitigation_status=data.get("mitigation_status", "pending"),
        status=data.get("status", "active"),
        responsible=data["responsible"].strip(),
        seq=_next_seq(Risk),
    )
    risk.recalculate_exposure()
    db.session.add(risk)
    db.session.flush()
    return risk


def update_risk(risk, data, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    _validate_risk(data, partial=True)
    for field in ("name", "area", "category", "impact", "probability", "mitigation_plan",
                  "mitigation_status", "status", "responsible"):
        if field in data:
            setattr(risk, field, data[field])
    risk.recalculate_exposure()
    db.session.flush()
    return risk


def delete_risk(risk, actor):
    check_permission(actor, ACTION_EDIT_DATASET)
    db.session.delete(risk)
    db.session.flush()


# ── Statistics & integrity ───────────────────────────────────────────────


def dataset_stats():
    """Totals, successful import count and last update timestamp."""
    indicator_count = Indicator.query.count()
    risk_count = Risk.query.count()
    last_data = max(
        (ts for ts in (
            db.session.query(func.max(Indicator.updated_at)).scalar(),
            db.session.query(func.max(Risk.updated_at)).scalar(),
        ) if ts is not None),
        default=None,
    )
    return {
        "total_indicators": indicator_count,
        "total_activities": Activity.query.count(),
        "total_risks": risk_count,
        "import_count": ImportHistoryEntry.query.filter_by(status="success").count(),
        "last_update": last_data.isoformat() if last_data else None,
        "has_data": bool(indicator_count or risk_count),
    }


def integrity_report():
    """
    Check the invariants that imports and manual edits must preserve.

    Returns {"is_valid": bool, "errors": [...], "checked": {...}}.
    """
    errors = []
    indicators = list_indicators().all()
    for indicator in indicators:
        if not indicator.activities:
            errors.append(f"Indicador {indicator.id}: sin actividades")
        for activity in indicator.activities:
            if activity.area != indicator.area:
                errors.append(
                    f"Actividad {activity.id}: área {activity.area} distinta a la del indicador ({indicator.area})"
                )
            if activity.progress is None or not 0 <= activity.progress <= 100:
                errors.append(f"Actividad {activity.id}: progreso fuera de rango ({activity.progress})")
    risks = list_risks().all()
    for risk in risks:
        expected = calculate_risk_exposure(risk.impact, risk.probability)
        if risk.exposure != expected:
            errors.append(f"Riesgo {risk.id}: exposición {risk.exposure} != {expected}")
    return {
        "is_valid": not errors,
        "errors": errors,
        "checked": {"indicators": len(indicators), "risks": len(risks)},
    }
