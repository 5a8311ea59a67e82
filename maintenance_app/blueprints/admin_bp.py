"""
Admin blueprint — maintenance operations and the scheduled job registry.

  POST  /api/v1/admin/maintenance/repair-references
  GET   /api/v1/admin/jobs
  GET   /api/v1/admin/jobs/<name>
  POST  /api/v1/admin/jobs/<name>/run
  PATCH /api/v1/admin/jobs/<name>/toggle
"""

import logging

from flask import Blueprint, jsonify, request

from maintenance_app.services import assignment_ledger
from maintenance_app.services.scheduler_service import SchedulerService
from maintenance_app.utils.errors import E, api_error, register_domain_error_handlers

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_domain_error_handlers(admin_bp)


@admin_bp.route("/maintenance/repair-references", methods=["POST"])
def repair_references():
    """Remove assignments whose catalog item was deleted."""
    result = assignment_ledger.repair_broken_references()
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/jobs", methods=["GET"])
def list_jobs():
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200


@admin_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job(job_name):
    job = SchedulerService.get_job_status(job_name)
    if not job:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(job), 200


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Trigger a job now, outside its schedule."""
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error" and "Unknown job" in (result.get("error") or ""):
        return api_error(E.NOT_FOUND, result["error"])
    return jsonify(result), 200


@admin_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200
