"""
Per-period serialization tests: lock registry, guard commit/rollback, stale
version detection and multi-period guards.
"""

import threading

import pytest

from maintenance_app.core.exceptions import NotFoundError, StateError
from maintenance_app.models import db
from maintenance_app.models.period import MaintenancePeriod
from maintenance_app.services import period_lifecycle, period_locks
from maintenance_app.services.period_locks import period_guard, periods_guard


class TestLockRegistry:

    def test_one_lock_per_period(self):
        assert period_locks.lock_for(1) is period_locks.lock_for(1)
        assert period_locks.lock_for(1) is not period_locks.lock_for(2)

    def test_forget(self):
        first = period_locks.lock_for(77)
        period_locks.forget(77)
        assert period_locks.lock_for(77) is not first

    def test_concurrent_lookup_returns_same_lock(self):
        seen = []

        def grab():
            seen.append(period_locks.lock_for(555))

        threads = [threading.Thread(target=grab) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(lock) for lock in seen}) == 1


class TestPeriodGuard:

    def test_commits_on_success(self, period):
        with period_guard(period["id"]) as p:
            p.name = "Guarded"
        db.session.expire_all()
        assert db.session.get(MaintenancePeriod, period["id"]).name == "Guarded"
        assert not period_locks.lock_for(period["id"]).locked()

    def test_rolls_back_on_error(self, period):
        with pytest.raises(RuntimeError):
            with period_guard(period["id"]) as p:
                p.name = "Half written"
                raise RuntimeError("boom")
        assert period_lifecycle.get_period(period["id"])["name"] == "Current Round"
        assert not period_locks.lock_for(period["id"]).locked()

    def test_missing_period(self):
        with pytest.raises(NotFoundError):
            with period_guard(404):
                pass

    def test_stale_version_is_a_state_error(self, period):
        p = db.session.get(MaintenancePeriod, period["id"])
        # another writer bumps the version behind this session's back
        db.session.execute(
            db.text("UPDATE maintenance_periods SET version = version + 1 WHERE id = :id"),
            {"id": p.id},
        )
        p.name = "Stale write"
        with pytest.raises(StateError) as exc:
            period_locks.commit()
        assert exc.value.current == "stale"
        assert period_lifecycle.get_period(period["id"])["name"] == "Current Round"

    def test_periods_guard_skips_missing(self, coordinator, period):
        other = period_lifecycle.create_period(
            name="Other", coordinator_id=coordinator.id,
            start_at=period["start_at"], end_at=period["end_at"],
        )
        with periods_guard([other["id"], 404, period["id"]]) as periods:
            assert sorted(periods) == sorted([period["id"], other["id"]])
            for p in periods.values():
                p.description = "batch"
        assert {p.description for p in MaintenancePeriod.query.all()} == {"batch"}
