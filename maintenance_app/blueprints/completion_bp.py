"""
Completion record blueprint.

  GET     /api/v1/completion-records/<id>   read a record
  PATCH   /api/v1/completion-records/<id>   correct metadata (note, evidence, status)
  DELETE  /api/v1/completion-records/<id>   delete and revert referencing assignments
"""

from flask import Blueprint, jsonify, request

from maintenance_app.services import completion_engine, reversion_service
from maintenance_app.utils.errors import E, api_error, register_domain_error_handlers

completion_bp = Blueprint("completion_records", __name__, url_prefix="/api/v1/completion-records")
register_domain_error_handlers(completion_bp)


@completion_bp.route("/<int:record_id>", methods=["GET"])
def get_record(record_id):
    return jsonify(completion_engine.get_completion_record(record_id)), 200


@completion_bp.route("/<int:record_id>", methods=["PATCH"])
def update_record(record_id):
    data = request.get_json(silent=True) or {}
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    return jsonify(completion_engine.update_completion_record(record_id, data)), 200


@completion_bp.route("/<int:record_id>", methods=["DELETE"])
def delete_record(record_id):
    return jsonify(reversion_service.delete_completion_record(record_id)), 200
