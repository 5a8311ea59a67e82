"""
Reversion & deletion tests.

Covers:
    1. Individual deletion: pending rows, completed rows (cascading deletion)
    2. Pooled deletion (Scenario D) and contributor record cleanup
    3. revert_to_pending for records removed elsewhere
    4. Standalone completion record deletion
"""

import pytest

from maintenance_app.core.exceptions import NotFoundError
from maintenance_app.models import db
from maintenance_app.models.completion import CompletionRecord
from maintenance_app.models.period import Assignment, MaintenancePeriod, PooledAssignment
from maintenance_app.services import (
    assignment_ledger,
    completion_engine,
    period_lifecycle,
    reversion_service,
)


class TestDeleteIndividual:

    def test_delete_pending(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        result = reversion_service.delete_assignment(period["id"], devices[0].id, collaborators[0].id)
        assert result == {"assignments_removed": 1, "records_deleted": 0}
        assert period_lifecycle.get_period(period["id"])["total_devices"] == 0

    def test_cascading_deletion(self, period, collaborators, devices):
        c1 = collaborators[0]
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        assignment_ledger.assign_individual(period["id"], devices[1].id, c1.id)
        summary = completion_engine.complete(period["id"], devices[0].id, c1.id, {"note": "wrong photo"})
        record_id = summary["completion_record"]["id"]

        result = reversion_service.delete_assignment(period["id"], devices[0].id, c1.id)
        assert result == {"assignments_removed": 1, "records_deleted": 1}
        assert db.session.get(CompletionRecord, record_id) is None

        history = assignment_ledger.list_all_for_collaborator(c1.id)
        assert [i["catalog_item_id"] for i in history] == [devices[1].id]
        assert all(i["completion_record_id"] != record_id for i in history)

        p = period_lifecycle.get_period(period["id"])
        assert p["total_devices"] == 1
        assert p["completed_devices"] == 0
        assert p["completion_percentage"] == 0

    def test_reassign_after_deletion(self, period, collaborators, devices):
        c1 = collaborators[0]
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        completion_engine.complete(period["id"], devices[0].id, c1.id, {})
        reversion_service.delete_assignment(period["id"], devices[0].id, c1.id)
        a = assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        assert a["status"] == "pending"

    def test_no_match(self, period, collaborators, devices):
        with pytest.raises(NotFoundError):
            reversion_service.delete_assignment(period["id"], devices[0].id, collaborators[0].id)

    def test_pooled_row_not_deleted_by_individual_path(self, period, collaborators, devices):
        assignment_ledger.assign_pooled(period["id"], devices[0].id, [collaborators[0].id])
        with pytest.raises(NotFoundError):
            reversion_service.delete_assignment(period["id"], devices[0].id, collaborators[0].id)
        assert Assignment.query.count() == 1

    def test_allowed_on_inactive_period(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        period_lifecycle.finalize(period["id"])
        reversion_service.delete_assignment(period["id"], devices[0].id, collaborators[0].id)
        assert Assignment.query.count() == 0


class TestDeletePooled:

    def test_scenario_d(self, period, collaborators, devices):
        _, c2, c3 = collaborators
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c2.id, c3.id])
        summary = completion_engine.complete(period["id"], devices[1].id, c2.id, {})
        record_id = summary["completion_record"]["id"]

        result = reversion_service.delete_pooled_assignment(period["id"], devices[1].id)
        assert result["records_deleted"] == 1
        assert db.session.get(CompletionRecord, record_id) is None
        p = period_lifecycle.get_period(period["id"])
        assert [a for a in p["assignments"] if a["catalog_item_id"] == devices[1].id] == []

    def test_pending_pool(self, period, collaborators, devices):
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [collaborators[0].id])
        result = reversion_service.delete_pooled_assignment(period["id"], devices[1].id)
        assert result == {"assignments_removed": 1, "records_deleted": 0}

    def test_contributor_records_deleted(self, period, collaborators, devices):
        c1, c2, c3 = collaborators
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c1.id, c2.id, c3.id])
        # c3 uploaded a separate report for the same device in this period
        own = CompletionRecord(catalog_item_id=devices[1].id, collaborator_id=c3.id, period_id=period["id"])
        unrelated = CompletionRecord(catalog_item_id=devices[2].id, collaborator_id=c3.id, period_id=period["id"])
        db.session.add_all([own, unrelated])
        db.session.commit()
        own_id, unrelated_id = own.id, unrelated.id

        completion_engine.complete(period["id"], devices[1].id, c2.id, {
            "is_collaborative": True, "collaborator_ids": [c3.id],
        })
        result = reversion_service.delete_pooled_assignment(period["id"], devices[1].id)
        assert result["records_deleted"] == 2
        assert db.session.get(CompletionRecord, own_id) is None
        assert db.session.get(CompletionRecord, unrelated_id) is not None

    def test_individual_row_survives_pool_deletion(self, period, collaborators, devices):
        c1 = collaborators[0]
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c1.id])
        assignment_ledger.assign_individual(period["id"], devices[1].id, c1.id)
        reversion_service.delete_pooled_assignment(period["id"], devices[1].id)
        assert [a.kind for a in Assignment.query.all()] == ["individual"]

    def test_no_pool(self, period, devices):
        with pytest.raises(NotFoundError):
            reversion_service.delete_pooled_assignment(period["id"], devices[1].id)


class TestRevertAndRecordDeletion:

    def test_revert_to_pending(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        summary = completion_engine.complete(period["id"], devices[0].id, c1.id, {
            "is_collaborative": True, "collaborator_ids": [c2.id],
        })
        record_id = summary["completion_record"]["id"]

        assert reversion_service.revert_to_pending(record_id) == 1
        a = Assignment.query.one()
        assert a.status == "pending"
        assert a.completed_at is None
        assert a.completed_by_id is None
        assert a.completion_record_id is None
        assert a.is_collaborative is False
        assert a.contributor_ids == []
        assert period_lifecycle.get_period(period["id"])["completed_devices"] == 0
        assert db.session.get(CompletionRecord, record_id) is not None

    def test_revert_unreferenced_record(self, collaborators, devices):
        record = CompletionRecord(catalog_item_id=devices[0].id, collaborator_id=collaborators[0].id)
        db.session.add(record)
        db.session.commit()
        assert reversion_service.revert_to_pending(record.id) == 0

    def test_revert_covers_fanned_out_siblings(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c1.id])
        p = db.session.get(MaintenancePeriod, period["id"])
        p.assignments.append(PooledAssignment(catalog_item_id=devices[1].id, eligible_collaborator_ids=[c2.id]))
        db.session.commit()
        summary = completion_engine.complete(period["id"], devices[1].id, c1.id, {})
        assert reversion_service.revert_to_pending(summary["completion_record"]["id"]) == 2
        assert {a.status for a in Assignment.query.all()} == {"pending"}

    def test_delete_completion_record(self, period, collaborators, devices):
        c1 = collaborators[0]
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        summary = completion_engine.complete(period["id"], devices[0].id, c1.id, {})
        record_id = summary["completion_record"]["id"]

        result = reversion_service.delete_completion_record(record_id)
        assert result == {"deleted": True, "completion_record_id": record_id, "assignments_reverted": 1}
        assert db.session.get(CompletionRecord, record_id) is None
        assert Assignment.query.one().status == "pending"
        # the task can be completed again
        again = completion_engine.complete(period["id"], devices[0].id, c1.id, {})
        assert again["assignment"]["status"] == "completed"

    def test_delete_standalone_record(self, collaborators, devices):
        record = CompletionRecord(catalog_item_id=devices[0].id, collaborator_id=collaborators[0].id)
        db.session.add(record)
        db.session.commit()
        result = reversion_service.delete_completion_record(record.id)
        assert result["assignments_reverted"] == 0

    def test_delete_missing_record(self):
        with pytest.raises(NotFoundError):
            reversion_service.delete_completion_record(404)
