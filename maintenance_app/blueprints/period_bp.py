"""
Maintenance period blueprint — coordinator and collaborator actions on periods.

Endpoint groups:
  Periods        POST/GET          /api/v1/periods
                 GET               /api/v1/periods/active-window
                 GET/PATCH/DELETE  /api/v1/periods/<id>
                 PATCH             /api/v1/periods/<id>/dates
                 PATCH             /api/v1/periods/<id>/finalize
                 DELETE            /api/v1/periods/<id>/force
  Assignments    POST    /api/v1/periods/<id>/assignments
                 PATCH   /api/v1/periods/<id>/assignments/<item>/collaborator
                 POST    /api/v1/periods/<id>/assignments/<item>/complete
                 POST    /api/v1/periods/<id>/assignments/<item>/progress
                 DELETE  /api/v1/periods/<id>/assignments/<item>/pool
                 DELETE  /api/v1/periods/<id>/assignments/<item>/<collaborator_id>

Service layer owns all business logic and commits; domain exceptions are
mapped to HTTP responses by ``register_domain_error_handlers``.
"""

import logging

from flask import Blueprint, jsonify, request

from maintenance_app.blueprints import bool_arg, pagination_args
from maintenance_app.services import (
    assignment_ledger,
    completion_engine,
    period_lifecycle,
    reversion_service,
)
from maintenance_app.utils.errors import E, api_error, register_domain_error_handlers

logger = logging.getLogger(__name__)

period_bp = Blueprint("periods", __name__, url_prefix="/api/v1")
register_domain_error_handlers(period_bp)


def _require_int(data: dict, field: str):
    """Return (value, None) or (None, error_response)."""
    value = data.get(field)
    if value is None or value == "":
        return None, api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    if isinstance(value, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer")


def _optional_int(data: dict, field: str):
    """Like _require_int, but an absent or empty field yields (None, None)."""
    if data.get(field) is None or data.get(field) == "":
        return None, None
    return _require_int(data, field)


# ═════════════════════════════════════════════════════════════════════════
# Periods
# ═════════════════════════════════════════════════════════════════════════


@period_bp.route("/periods", methods=["POST"])
def create_period():
    """Create a period, optionally seeding assignments.

    Body: {
        name?, coordinator_id, start_at, end_at, description?, policy_id?,
        specialty_id?, devices?: [{catalog_item_id, collaborator_id?}],
        assign_to_all?, collaborator_ids?
    }
    """
    data = request.get_json(silent=True) or {}
    coordinator_id, err = _require_int(data, "coordinator_id")
    if err:
        return err
    policy_id, err = _optional_int(data, "policy_id")
    if err:
        return err
    specialty_id, err = _optional_int(data, "specialty_id")
    if err:
        return err
    for field in ("start_at", "end_at"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")

    period = period_lifecycle.create_period(
        name=data.get("name"),
        coordinator_id=coordinator_id,
        start_at=data["start_at"],
        end_at=data["end_at"],
        description=data.get("description"),
        seed_assignments={
            "devices": data.get("devices") or [],
            "assign_to_all": bool(data.get("assign_to_all")),
            "collaborator_ids": data.get("collaborator_ids") or [],
        },
        policy_id=policy_id,
        specialty_id=specialty_id,
    )
    return jsonify(period), 201


@period_bp.route("/periods", methods=["GET"])
def list_periods():
    """List periods. Query: coordinator_id, policy_id, active, start_from, start_to, page, per_page."""
    page, per_page = pagination_args()
    result = period_lifecycle.list_periods(
        coordinator_id=request.args.get("coordinator_id", type=int),
        policy_id=request.args.get("policy_id", type=int),
        active=bool_arg("active"),
        start_from=request.args.get("start_from"),
        start_to=request.args.get("start_to"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@period_bp.route("/periods/active-window", methods=["GET"])
def active_window():
    """Is there an active period covering now? Collaborators upload only inside one."""
    return jsonify(period_lifecycle.active_window_status()), 200


@period_bp.route("/periods/<int:period_id>", methods=["GET"])
def get_period(period_id):
    return jsonify(period_lifecycle.get_period(period_id)), 200


@period_bp.route("/periods/<int:period_id>", methods=["PATCH"])
def update_period(period_id):
    data = request.get_json(silent=True) or {}
    return jsonify(period_lifecycle.update_period(period_id, data)), 200


@period_bp.route("/periods/<int:period_id>/dates", methods=["PATCH"])
def update_dates(period_id):
    data = request.get_json(silent=True) or {}
    for field in ("start_at", "end_at"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    return jsonify(period_lifecycle.update_dates(period_id, data["start_at"], data["end_at"])), 200


@period_bp.route("/periods/<int:period_id>/finalize", methods=["PATCH"])
def finalize_period(period_id):
    return jsonify(period_lifecycle.finalize(period_id)), 200


@period_bp.route("/periods/<int:period_id>", methods=["DELETE"])
def delete_period(period_id):
    """Delete a period; 409 with details.record_count while reports are attached."""
    return jsonify(period_lifecycle.delete_period(period_id)), 200


@period_bp.route("/periods/<int:period_id>/force", methods=["DELETE"])
def force_delete_period(period_id):
    """Delete a period together with its completion records."""
    return jsonify(period_lifecycle.delete_period(period_id, force=True)), 200


# ═════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════


@period_bp.route("/periods/<int:period_id>/assignments", methods=["POST"])
def assign_devices(period_id):
    """Body: {devices: [{catalog_item_id, collaborator_id?, eligible_collaborator_ids?, notes?}],
    assign_to_all?, collaborator_ids?}"""
    data = request.get_json(silent=True) or {}
    devices = data.get("devices")
    if not devices:
        return api_error(E.VALIDATION_REQUIRED, "devices is required")
    period = assignment_ledger.assign_devices(
        period_id,
        devices,
        assign_to_all=bool(data.get("assign_to_all")),
        collaborator_ids=data.get("collaborator_ids") or [],
    )
    return jsonify(period), 200


@period_bp.route(
    "/periods/<int:period_id>/assignments/<int:catalog_item_id>/collaborator", methods=["PATCH"]
)
def reassign_owner(period_id, catalog_item_id):
    """Body: {old_collaborator_id, new_collaborator_id, notes?}"""
    data = request.get_json(silent=True) or {}
    old_id, err = _require_int(data, "old_collaborator_id")
    if err:
        return err
    new_id, err = _require_int(data, "new_collaborator_id")
    if err:
        return err
    period = assignment_ledger.reassign_owner(
        period_id, catalog_item_id, old_id, new_id, notes=data.get("notes"),
    )
    return jsonify(period), 200


@period_bp.route(
    "/periods/<int:period_id>/assignments/<int:catalog_item_id>/complete", methods=["POST"]
)
def complete_assignment(period_id, catalog_item_id):
    """Body: {collaborator_id, completion_record_id? | evidence fields, note?,
    is_collaborative?, collaborator_ids?, participation?}"""
    data = request.get_json(silent=True) or {}
    collaborator_id, err = _require_int(data, "collaborator_id")
    if err:
        return err
    payload = {k: v for k, v in data.items() if k != "collaborator_id"}
    summary = completion_engine.complete(period_id, catalog_item_id, collaborator_id, payload)
    return jsonify(summary), 200


@period_bp.route(
    "/periods/<int:period_id>/assignments/<int:catalog_item_id>/progress", methods=["POST"]
)
def record_progress(period_id, catalog_item_id):
    data = request.get_json(silent=True) or {}
    collaborator_id, err = _require_int(data, "collaborator_id")
    if err:
        return err
    return jsonify(completion_engine.record_progress(period_id, catalog_item_id, collaborator_id)), 200


@period_bp.route(
    "/periods/<int:period_id>/assignments/<int:catalog_item_id>/pool", methods=["DELETE"]
)
def delete_pooled_assignment(period_id, catalog_item_id):
    result = reversion_service.delete_pooled_assignment(period_id, catalog_item_id)
    return jsonify({"deleted": True, **result}), 200


@period_bp.route(
    "/periods/<int:period_id>/assignments/<int:catalog_item_id>/<int:collaborator_id>",
    methods=["DELETE"],
)
def delete_assignment(period_id, catalog_item_id, collaborator_id):
    result = reversion_service.delete_assignment(period_id, catalog_item_id, collaborator_id)
    return jsonify({"deleted": True, **result}), 200
