"""
KPI Tracker
Import Blueprint — report upload and the import history ledger.

Endpoints:
    POST   /api/v1/imports                          — upload & import (multipart "file")
    POST   /api/v1/imports/preview                  — parse + validate dry run
    GET    /api/v1/imports/history                  — history, newest first
    GET    /api/v1/imports/history/<id>             — one entry
    DELETE /api/v1/imports/history/<id>             — delete entry (admin / own-area manager)
    DELETE /api/v1/imports/history                  — purge history (admin)
    DELETE /api/v1/imports/history/<id>/data        — delete imported records (admin)
                                                      ?strategy=batch|day
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from kpi_tracker import limiter
from kpi_tracker.blueprints import paginate_list
from kpi_tracker.middleware.actor_context import current_actor
from kpi_tracker.services import import_ledger
from kpi_tracker.services.dataset_store import (
    RetryPolicy,
    SqlDatasetStore,
    SqlHistoryStore,
    dataset_lock,
)
from kpi_tracker.services.import_service import ImportService
from kpi_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

import_bp = Blueprint("import_bp", __name__, url_prefix="/api/v1/imports")


def get_import_service() -> ImportService:
    return ImportService(
        SqlDatasetStore(),
        SqlHistoryStore(),
        retry=RetryPolicy.from_config(current_app.config),
    )


def _import_rate_limit():
    return current_app.config.get("IMPORT_RATE_LIMIT", "30 per minute")


def _uploaded_file():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return None, None
    return upload.filename, upload.read()


# ══════════════════════════════════════════════════════════════════════════
# Upload
# ══════════════════════════════════════════════════════════════════════════

@import_bp.route("", methods=["POST"])
@limiter.limit(_import_rate_limit)
def upload_report():
    file_name, data = _uploaded_file()
    if file_name is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")

    summary = get_import_service().import_file(file_name, data, current_actor())
    return jsonify(summary.to_dict()), 201


@import_bp.route("/preview", methods=["POST"])
@limiter.limit(_import_rate_limit)
def preview_report():
    file_name, data = _uploaded_file()
    if file_name is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")

    preview = get_import_service().preview_file(file_name, data, current_actor())
    return jsonify(preview.to_dict()), 200


# ══════════════════════════════════════════════════════════════════════════
# History
# ══════════════════════════════════════════════════════════════════════════

def _entry_dict(entry, actor):
    d = entry.to_dict()
    d["can_delete"] = import_ledger.can_delete(entry, actor)
    return d


@import_bp.route("/history", methods=["GET"])
def list_history():
    actor = current_actor()
    history = list(reversed(get_import_service().load_history()))
    status = request.args.get("status")
    if status:
        history = [e for e in history if e.status == status]
    items, total = paginate_list(history)
    return jsonify({"items": [_entry_dict(e, actor) for e in items], "total": total})


@import_bp.route("/history/<entry_id>", methods=["GET"])
def get_history_entry(entry_id):
    history = get_import_service().load_history()
    entry = import_ledger.find_entry(history, entry_id)
    return jsonify(_entry_dict(entry, current_actor()))


@import_bp.route("/history/<entry_id>", methods=["DELETE"])
def delete_history_entry(entry_id):
    service = get_import_service()
    with dataset_lock:
        history = service.load_history()
        service.save_history(import_ledger.delete_entry(history, entry_id, current_actor()))
    return jsonify({"deleted": entry_id}), 200


@import_bp.route("/history", methods=["DELETE"])
def purge_history():
    service = get_import_service()
    with dataset_lock:
        history = service.load_history()
        service.save_history(import_ledger.purge_history(history, current_actor()))
    return jsonify({"deleted": len(history)}), 200


@import_bp.route("/history/<entry_id>/data", methods=["DELETE"])
def delete_imported_data(entry_id):
    strategy = request.args.get("strategy", import_ledger.DELETE_STRATEGY_BATCH)
    service = get_import_service()
    with dataset_lock:
        history = service.load_history()
        entry = import_ledger.find_entry(history, entry_id)
        dataset, removed = import_ledger.delete_imported_data(
            entry, current_actor(), service.load_dataset(), strategy=strategy,
        )
        service.save_dataset(dataset)
        service.save_history(history)
    return jsonify({"entry": entry.to_dict(), "removed": removed, "strategy": strategy}), 200
