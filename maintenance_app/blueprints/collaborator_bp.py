"""
Collaborator views — a collaborator's work across all active periods.

  GET /api/v1/collaborators/<id>/pending-devices   pending + in_progress
  GET /api/v1/collaborators/<id>/devices           every state (history)
"""

from flask import Blueprint, jsonify

from maintenance_app.services import assignment_ledger
from maintenance_app.utils.errors import register_domain_error_handlers

collaborator_bp = Blueprint("collaborators", __name__, url_prefix="/api/v1/collaborators")
register_domain_error_handlers(collaborator_bp)


@collaborator_bp.route("/<int:collaborator_id>/pending-devices", methods=["GET"])
def pending_devices(collaborator_id):
    items = assignment_ledger.list_pending_for_collaborator(collaborator_id)
    return jsonify({"items": items, "total": len(items)}), 200


@collaborator_bp.route("/<int:collaborator_id>/devices", methods=["GET"])
def all_devices(collaborator_id):
    items = assignment_ledger.list_all_for_collaborator(collaborator_id)
    return jsonify({"items": items, "total": len(items)}), 200
