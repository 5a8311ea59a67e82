"""
Scheduler tests.

Covers:
    1. Job registry (both maintenance jobs registered)
    2. Job rows: default schedules, idempotent registration, toggle
    3. Interval due-time computation
    4. run_job: success, unknown job, run history
    5. Job bodies: expiry sweep and broken reference repair
"""

from datetime import timedelta

import pytest

from maintenance_app.models import db
from maintenance_app.models.catalog import CatalogItem
from maintenance_app.models.period import MaintenancePeriod
from maintenance_app.models.scheduling import ScheduledJob
from maintenance_app.services import assignment_ledger, scheduled_jobs
from maintenance_app.services.scheduler_service import SchedulerService, get_registered_jobs
from maintenance_app.utils.helpers import utcnow

JOB_NAMES = {"period_expiry_sweep", "broken_reference_repair"}


@pytest.fixture()
def fresh_due_map(monkeypatch):
    monkeypatch.setattr(SchedulerService, "_next_due", {})


def _expire(period_id):
    p = db.session.get(MaintenancePeriod, period_id)
    p.end_at = utcnow() - timedelta(hours=1)
    p.start_at = utcnow() - timedelta(days=30)
    p.is_active = True
    db.session.commit()


class TestRegistry:

    def test_jobs_registered(self):
        assert JOB_NAMES <= set(get_registered_jobs())

    def test_ensure_jobs_registered_is_idempotent(self, app):
        created = SchedulerService.ensure_jobs_registered()
        assert len(created) == len(get_registered_jobs())
        assert SchedulerService.ensure_jobs_registered() == []
        db.session.expire_all()
        sweep = ScheduledJob.query.filter_by(job_name="period_expiry_sweep").one()
        assert sweep.interval_seconds == app.config["PERIOD_SWEEP_INTERVAL_SECONDS"]
        repair = ScheduledJob.query.filter_by(job_name="broken_reference_repair").one()
        assert repair.interval_seconds == 24 * 3600

    def test_toggle(self):
        SchedulerService.ensure_jobs_registered()
        db.session.expire_all()
        job = SchedulerService.toggle_job("period_expiry_sweep", False)
        assert job["is_enabled"] is False
        assert job["status"] == "paused"
        assert SchedulerService.toggle_job("nope", True) is None


class TestDueJobs:

    def test_interval_schedule(self, app, fresh_due_map):
        SchedulerService.ensure_jobs_registered()
        interval = app.config["PERIOD_SWEEP_INTERVAL_SECONDS"]
        assert set(SchedulerService.due_jobs(100.0)) >= JOB_NAMES
        assert SchedulerService.due_jobs(101.0) == []
        assert SchedulerService.due_jobs(100.0 + interval) == ["period_expiry_sweep"]

    def test_disabled_jobs_never_due(self, fresh_due_map):
        SchedulerService.ensure_jobs_registered()
        db.session.expire_all()
        SchedulerService.toggle_job("period_expiry_sweep", False)
        assert "period_expiry_sweep" not in SchedulerService.due_jobs(0.0)


class TestRunJob:

    def test_unknown_job(self):
        result = SchedulerService.run_job("does_not_exist")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]

    def test_run_records_history(self, period):
        SchedulerService.ensure_jobs_registered()
        _expire(period["id"])

        result = SchedulerService.run_job("period_expiry_sweep")
        assert result["status"] == "success"
        assert result["result"] == {"periods_deactivated": 1}
        assert result["error"] is None

        db.session.expire_all()
        job = SchedulerService.get_job_status("period_expiry_sweep")
        assert job["run_count"] == 1
        assert job["last_run_status"] == "success"
        assert job["last_run_result"] == {"periods_deactivated": 1}
        assert db.session.get(MaintenancePeriod, period["id"]).is_active is False


class TestJobBodies:

    def test_sweep_job(self, app, period):
        _expire(period["id"])
        assert scheduled_jobs.sweep_expired_periods(app) == {"periods_deactivated": 1}
        assert scheduled_jobs.sweep_expired_periods(app) == {"periods_deactivated": 0}

    def test_repair_job(self, app, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        db.session.delete(db.session.get(CatalogItem, devices[0].id))
        db.session.commit()
        assert scheduled_jobs.repair_broken_references(app) == {"periods_touched": 1, "records_removed": 1}
        assert scheduled_jobs.repair_broken_references(app) == {"periods_touched": 0, "records_removed": 0}

    def test_scheduler_not_started_in_testing(self):
        assert SchedulerService._thread is None or not SchedulerService._thread.is_alive()
