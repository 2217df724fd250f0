"""
KPI Tracker
Dataset Blueprint — manual indicator / activity / risk maintenance.

Endpoints:
    GET    /api/v1/indicators                      ?area=
    POST   /api/v1/indicators
    GET    /api/v1/indicators/<id>
    PUT    /api/v1/indicators/<id>
    DELETE /api/v1/indicators/<id>                 (cascades to activities)
    POST   /api/v1/indicators/<id>/activities
    PUT    /api/v1/activities/<id>
    DELETE /api/v1/activities/<id>
    GET    /api/v1/risks                           ?area=&status=
    POST   /api/v1/risks
    PUT    /api/v1/risks/<id>
    DELETE /api/v1/risks/<id>
    GET    /api/v1/dataset/stats
    GET    /api/v1/dataset/integrity
"""

import logging

from flask import Blueprint, jsonify, request

from kpi_tracker.blueprints import paginate_query
from kpi_tracker.middleware.actor_context import current_actor
from kpi_tracker.services import dataset_service
from kpi_tracker.services.dataset_store import dataset_lock
from kpi_tracker.utils.errors import E, api_error
from kpi_tracker.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

dataset_bp = Blueprint("dataset_bp", __name__, url_prefix="/api/v1")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


# ══════════════════════════════════════════════════════════════════════════
# Indicators
# ══════════════════════════════════════════════════════════════════════════

@dataset_bp.route("/indicators", methods=["GET"])
def list_indicators():
    q = dataset_service.list_indicators(area=request.args.get("area"))
    items, total = paginate_query(q)
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


@dataset_bp.route("/indicators", methods=["POST"])
def create_indicator():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        indicator = dataset_service.create_indicator(data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(indicator.to_dict()), 201


@dataset_bp.route("/indicators/<indicator_id>", methods=["GET"])
def get_indicator(indicator_id):
    return jsonify(dataset_service.get_indicator(indicator_id).to_dict())


@dataset_bp.route("/indicators/<indicator_id>", methods=["PUT"])
def update_indicator(indicator_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        indicator = dataset_service.get_indicator(indicator_id)
        dataset_service.update_indicator(indicator, data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(indicator.to_dict())


@dataset_bp.route("/indicators/<indicator_id>", methods=["DELETE"])
def delete_indicator(indicator_id):
    with dataset_lock:
        indicator = dataset_service.get_indicator(indicator_id)
        dataset_service.delete_indicator(indicator, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": indicator_id})


# ══════════════════════════════════════════════════════════════════════════
# Activities
# ══════════════════════════════════════════════════════════════════════════

@dataset_bp.route("/indicators/<indicator_id>/activities", methods=["POST"])
def add_activity(indicator_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        activity = dataset_service.add_activity(indicator_id, data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(activity.to_dict()), 201


@dataset_bp.route("/activities/<activity_id>", methods=["PUT"])
def update_activity(activity_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        activity = dataset_service.get_activity(activity_id)
        dataset_service.update_activity(activity, data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(activity.to_dict())


@dataset_bp.route("/activities/<activity_id>", methods=["DELETE"])
def delete_activity(activity_id):
    with dataset_lock:
        activity = dataset_service.get_activity(activity_id)
        dataset_service.delete_activity(activity, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": activity_id})


# ══════════════════════════════════════════════════════════════════════════
# Risks
# ══════════════════════════════════════════════════════════════════════════

@dataset_bp.route("/risks", methods=["GET"])
def list_risks():
    q = dataset_service.list_risks(area=request.args.get("area"), status=request.args.get("status"))
    items, total = paginate_query(q)
    return jsonify({"items": [r.to_dict() for r in items], "total": total})


@dataset_bp.route("/risks", methods=["POST"])
def create_risk():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        risk = dataset_service.create_risk(data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(risk.to_dict()), 201


@dataset_bp.route("/risks/<risk_id>", methods=["PUT"])
def update_risk(risk_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    with dataset_lock:
        risk = dataset_service.get_risk(risk_id)
        dataset_service.update_risk(risk, data, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify(risk.to_dict())


@dataset_bp.route("/risks/<risk_id>", methods=["DELETE"])
def delete_risk(risk_id):
    with dataset_lock:
        risk = dataset_service.get_risk(risk_id)
        dataset_service.delete_risk(risk, current_actor())
        err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": risk_id})


# ══════════════════════════════════════════════════════════════════════════
# Dataset overview
# ══════════════════════════════════════════════════════════════════════════

@dataset_bp.route("/dataset/stats", methods=["GET"])
def dataset_stats():
    return jsonify(dataset_service.dataset_stats())


@dataset_bp.route("/dataset/integrity", methods=["GET"])
def dataset_integrity():
    return jsonify(dataset_service.integrity_report())
