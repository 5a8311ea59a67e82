"""
Maintenance Period Platform
Scheduler Service.

Lightweight background job scheduler: a registry of job functions, a
``scheduled_jobs`` table for configuration and run history, a manual trigger
API, and a single daemon thread that fires interval jobs when they are due.

Architecture:
    - @register_job(name) adds a function to the registry
    - SchedulerService.ensure_jobs_registered() creates missing DB rows
    - SchedulerService.run_job(name) executes one job inside an app context
    - SchedulerService.start() launches the interval loop (SCHEDULER_ENABLED)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from maintenance_app.models import db
from maintenance_app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

LOOP_TICK_SECONDS = 1.0


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("period_expiry_sweep")
        def sweep_expired_periods(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


class SchedulerService:
    """
    Job registration, persistence, execution and the interval loop.

    Jobs are executed within a Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop: threading.Event | None = None
    _next_due: dict[str, float] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a DB row with the default schedule for every registered job."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="interval",
                        schedule_config=_get_default_schedule(cls._app, name),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    if status == "failed":
                        job_record.status = "failed"
                    elif job_record.is_enabled:
                        job_record.status = "active"
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name, extra={"job_name": job_name})

        logger.info("Job %s finished: %s (%dms)", job_name, status, duration_ms,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()

    # ── Interval loop ────────────────────────────────────────────────────

    @classmethod
    def start(cls) -> bool:
        """Start the daemon loop once. Returns False if already running."""
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls._thread is not None and cls._thread.is_alive():
            return False
        cls.ensure_jobs_registered()
        cls._stop = threading.Event()
        cls._next_due = {}
        cls._thread = threading.Thread(target=cls._loop, name="maintenance-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler loop started")
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop is not None:
            cls._stop.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None

    @classmethod
    def due_jobs(cls, now: float) -> list[str]:
        """Names of enabled interval jobs whose next run time has passed."""
        due = []
        with cls._app.app_context():
            for job in ScheduledJob.query.filter_by(is_enabled=True).all():
                interval = job.interval_seconds
                if job.job_name not in _job_registry or not interval:
                    continue
                next_due = cls._next_due.get(job.job_name)
                if next_due is None or now >= next_due:
                    cls._next_due[job.job_name] = now + interval
                    due.append(job.job_name)
        return due

    @classmethod
    def _loop(cls) -> None:
        while not cls._stop.is_set():
            try:
                for job_name in cls.due_jobs(time.monotonic()):
                    cls.run_job(job_name)
            except Exception:
                logger.exception("Scheduler loop iteration failed")
            cls._stop.wait(LOOP_TICK_SECONDS)


def _get_default_schedule(app: Flask, job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "period_expiry_sweep": {
            "seconds": int(app.config.get("PERIOD_SWEEP_INTERVAL_SECONDS", 300)),
            "description": "Deactivate expired periods",
        },
        "broken_reference_repair": {
            "seconds": 24 * 3600,
            "description": "Daily dangling catalog reference cleanup",
        },
    }
    return defaults.get(job_name, {"seconds": 24 * 3600, "description": "Daily"})
