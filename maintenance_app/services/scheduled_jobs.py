"""
Maintenance Period Platform
Scheduled Jobs.

Concrete job implementations run by the scheduler loop, the admin trigger
API and the Flask CLI.

Jobs:
    - period_expiry_sweep: deactivates periods whose end has passed
    - broken_reference_repair: removes assignments pointing at deleted catalog items
"""

from __future__ import annotations

import logging
from typing import Any

from maintenance_app.services import assignment_ledger, period_lifecycle
from maintenance_app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Period expiry sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("period_expiry_sweep")
def sweep_expired_periods(app) -> dict[str, Any]:
    """Deactivate active periods whose end timestamp has passed."""
    deactivated = period_lifecycle.sweep_expired()
    return {"periods_deactivated": deactivated}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Broken catalog reference repair
# ═══════════════════════════════════════════════════════════════════════════

@register_job("broken_reference_repair")
def repair_broken_references(app) -> dict[str, Any]:
    """Remove assignments whose catalog item no longer exists."""
    result = assignment_ledger.repair_broken_references()
    if result["records_removed"]:
        logger.warning("Reference repair removed %d assignment(s) across %d period(s)",
                       result["records_removed"], result["periods_touched"],
                       extra={"job_name": "broken_reference_repair"})
    return result
