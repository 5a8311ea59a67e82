"""
Assignment ledger tests.

Covers:
    1. Individual and pooled assignment (preconditions, uniqueness, policy)
    2. Exclusivity of the two assignment shapes (model + CHECK constraint)
    3. Batch assignment atomicity
    4. Owner reassignment
    5. Collaborator views (pending / all) across active periods
    6. Broken catalog reference repair
"""

import pytest
from sqlalchemy.exc import IntegrityError

from maintenance_app.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from maintenance_app.models import db
from maintenance_app.models.catalog import CatalogItem
from maintenance_app.models.period import (
    Assignment,
    IndividualAssignment,
    MaintenancePeriod,
    PooledAssignment,
)
from maintenance_app.services import assignment_ledger, completion_engine, period_lifecycle


# ═══════════════════════════════════════════════════════════════════════════
#  INDIVIDUAL
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignIndividual:

    def test_assign(self, period, collaborators, devices):
        a = assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id, "check seal")
        assert a["kind"] == "individual"
        assert a["collaborator_id"] == collaborators[0].id
        assert a["eligible_collaborator_ids"] == []
        assert a["status"] == "pending"
        assert a["notes"] == "check seal"
        assert period_lifecycle.get_period(period["id"])["total_devices"] == 1

    def test_duplicate_pair_conflicts(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        with pytest.raises(ConflictError):
            assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        assert Assignment.query.count() == 1

    def test_same_item_different_collaborators(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[1].id)
        assert period_lifecycle.get_period(period["id"])["total_devices"] == 2

    def test_inactive_period(self, period, collaborators, devices):
        period_lifecycle.finalize(period["id"])
        with pytest.raises(StateError):
            assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)

    def test_unknown_catalog_item(self, period, collaborators):
        with pytest.raises(NotFoundError):
            assignment_ledger.assign_individual(period["id"], 9999, collaborators[0].id)

    def test_inactive_catalog_item(self, period, collaborators, devices):
        devices[0].is_active = False
        db.session.commit()
        with pytest.raises(NotFoundError):
            assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)

    def test_unknown_collaborator(self, period, devices):
        with pytest.raises(NotFoundError):
            assignment_ledger.assign_individual(period["id"], devices[0].id, 9999)

    def test_collaborator_outside_policy(self, period, outsider, devices):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_individual(period["id"], devices[0].id, outsider.id)

    def test_unknown_period(self, collaborators, devices):
        with pytest.raises(NotFoundError):
            assignment_ledger.assign_individual(404, devices[0].id, collaborators[0].id)


# ═══════════════════════════════════════════════════════════════════════════
#  POOLED
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignPooled:

    def test_assign(self, period, collaborators, devices):
        ids = [c.id for c in collaborators]
        a = assignment_ledger.assign_pooled(period["id"], devices[1].id, ids)
        assert a["kind"] == "pooled"
        assert a["is_pooled"] is True
        assert a["collaborator_id"] is None
        assert a["eligible_collaborator_ids"] == ids

    def test_empty_eligible_list(self, period, devices):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_pooled(period["id"], devices[1].id, [])

    def test_duplicate_ids_collapsed(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        a = assignment_ledger.assign_pooled(period["id"], devices[1].id, [c2.id, c1.id, c2.id])
        assert a["eligible_collaborator_ids"] == [c2.id, c1.id]

    def test_outsiders_dropped(self, period, collaborators, outsider, devices):
        a = assignment_ledger.assign_pooled(period["id"], devices[1].id, [outsider.id, collaborators[0].id])
        assert a["eligible_collaborator_ids"] == [collaborators[0].id]

    def test_only_outsiders_rejected(self, period, outsider, devices):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_pooled(period["id"], devices[1].id, [outsider.id])
        assert Assignment.query.count() == 0

    def test_one_pool_per_item(self, period, collaborators, devices):
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [collaborators[0].id])
        with pytest.raises(ConflictError):
            assignment_ledger.assign_pooled(period["id"], devices[1].id, [collaborators[1].id])

    def test_non_integer_ids_rejected(self, period, devices):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_pooled(period["id"], devices[1].id, ["abc"])


# ═══════════════════════════════════════════════════════════════════════════
#  EXCLUSIVITY
# ═══════════════════════════════════════════════════════════════════════════

class TestExclusivity:

    def test_individual_requires_collaborator(self):
        with pytest.raises(ValueError):
            IndividualAssignment(catalog_item_id=1, collaborator_id=None)

    def test_pooled_requires_eligible(self):
        with pytest.raises(ValueError):
            PooledAssignment(catalog_item_id=1, eligible_collaborator_ids=[])

    def test_transition_table(self):
        a = IndividualAssignment(catalog_item_id=1, collaborator_id=1, status="pending")
        assert a.can_transition("in_progress") and a.can_transition("completed")
        a.status = "in_progress"
        assert a.can_transition("completed")
        assert not a.can_transition("pending")
        a.status = "completed"
        assert not a.can_transition("completed")
        assert not a.can_transition("in_progress")
        assert a.can_transition("pending")

    def test_shapes_never_mix(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c.id for c in collaborators])
        for a in Assignment.query.all():
            has_owner = a.collaborator_id is not None
            has_pool = bool(a.eligible_collaborator_ids)
            assert has_owner != has_pool
            assert a.is_pooled is has_pool

    def test_check_constraint_rejects_pooled_with_owner(self, period, collaborators, devices):
        a = PooledAssignment(catalog_item_id=devices[0].id, eligible_collaborator_ids=[collaborators[0].id])
        p = db.session.get(MaintenancePeriod, period["id"])
        p.assignments.append(a)
        a.collaborator_id = collaborators[0].id
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


# ═══════════════════════════════════════════════════════════════════════════
#  BATCH
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignDevices:

    def test_mixed_batch(self, period, collaborators, devices):
        c1, c2, c3 = collaborators
        result = assignment_ledger.assign_devices(period["id"], [
            {"catalog_item_id": devices[0].id, "collaborator_id": c1.id},
            {"catalog_item_id": devices[1].id, "eligible_collaborator_ids": [c2.id, c3.id]},
            {"catalog_item_id": devices[2].id},
        ], assign_to_all=True, collaborator_ids=[c1.id, c2.id, c3.id])
        assert result["total_devices"] == 3
        by_item = {a["catalog_item_id"]: a for a in result["assignments"]}
        assert by_item[devices[0].id]["kind"] == "individual"
        assert by_item[devices[1].id]["eligible_collaborator_ids"] == [c2.id, c3.id]
        assert by_item[devices[2].id]["eligible_collaborator_ids"] == [c1.id, c2.id, c3.id]

    def test_batch_is_all_or_nothing(self, period, collaborators, devices):
        with pytest.raises(NotFoundError):
            assignment_ledger.assign_devices(period["id"], [
                {"catalog_item_id": devices[0].id, "collaborator_id": collaborators[0].id},
                {"catalog_item_id": 9999, "collaborator_id": collaborators[0].id},
            ])
        assert period_lifecycle.get_period(period["id"])["total_devices"] == 0

    def test_duplicate_inside_batch_conflicts(self, period, collaborators, devices):
        spec = {"catalog_item_id": devices[0].id, "collaborator_id": collaborators[0].id}
        with pytest.raises(ConflictError):
            assignment_ledger.assign_devices(period["id"], [spec, dict(spec)])
        assert Assignment.query.count() == 0

    def test_spec_without_target(self, period, devices):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_devices(period["id"], [{"catalog_item_id": devices[0].id}])

    def test_specs_must_be_a_list(self, period):
        with pytest.raises(ValidationError):
            assignment_ledger.assign_devices(period["id"], {"catalog_item_id": 1})


# ═══════════════════════════════════════════════════════════════════════════
#  REASSIGN
# ═══════════════════════════════════════════════════════════════════════════

class TestReassignOwner:

    def test_reassign(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        result = assignment_ledger.reassign_owner(period["id"], devices[0].id, c1.id, c2.id, notes="swap")
        (a,) = result["assignments"]
        assert a["collaborator_id"] == c2.id
        assert a["notes"] == "swap"

    def test_no_match(self, period, collaborators, devices):
        with pytest.raises(NotFoundError):
            assignment_ledger.reassign_owner(period["id"], devices[0].id, collaborators[0].id, collaborators[1].id)

    def test_pooled_is_not_reassignable(self, period, collaborators, devices):
        assignment_ledger.assign_pooled(period["id"], devices[0].id, [collaborators[0].id])
        with pytest.raises(NotFoundError):
            assignment_ledger.reassign_owner(period["id"], devices[0].id, collaborators[0].id, collaborators[1].id)

    def test_new_collaborator_must_exist(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        with pytest.raises(ValidationError):
            assignment_ledger.reassign_owner(period["id"], devices[0].id, collaborators[0].id, 9999)
        (a,) = Assignment.query.all()
        assert a.collaborator_id == collaborators[0].id

    def test_new_collaborator_outside_policy(self, period, collaborators, outsider, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        with pytest.raises(ValidationError):
            assignment_ledger.reassign_owner(period["id"], devices[0].id, collaborators[0].id, outsider.id)

    def test_new_owner_already_holds_item(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        assignment_ledger.assign_individual(period["id"], devices[0].id, c2.id)
        with pytest.raises(ConflictError):
            assignment_ledger.reassign_owner(period["id"], devices[0].id, c1.id, c2.id)


# ═══════════════════════════════════════════════════════════════════════════
#  COLLABORATOR VIEWS
# ═══════════════════════════════════════════════════════════════════════════

class TestCollaboratorViews:

    def _setup(self, period, collaborators, devices):
        c1, c2, c3 = collaborators
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        assignment_ledger.assign_individual(period["id"], devices[1].id, c2.id)
        assignment_ledger.assign_pooled(period["id"], devices[2].id, [c1.id, c3.id])

    def test_pending_includes_owned_and_pooled(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        items = assignment_ledger.list_pending_for_collaborator(collaborators[0].id)
        assert {i["catalog_item_id"] for i in items} == {devices[0].id, devices[2].id}
        for item in items:
            assert item["period"]["id"] == period["id"]
            assert item["catalog_item"]["identifier"].startswith("EXT-")

    def test_not_eligible_sees_nothing_pooled(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        items = assignment_ledger.list_pending_for_collaborator(collaborators[1].id)
        assert [i["catalog_item_id"] for i in items] == [devices[1].id]

    def test_completed_only_in_history(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        completion_engine.complete(period["id"], devices[0].id, collaborators[0].id, {})
        pending = assignment_ledger.list_pending_for_collaborator(collaborators[0].id)
        history = assignment_ledger.list_all_for_collaborator(collaborators[0].id)
        assert devices[0].id not in {i["catalog_item_id"] for i in pending}
        assert {i["catalog_item_id"]: i["status"] for i in history}[devices[0].id] == "completed"

    def test_in_progress_still_pending(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        completion_engine.record_progress(period["id"], devices[0].id, collaborators[0].id)
        statuses = {i["catalog_item_id"]: i["status"]
                    for i in assignment_ledger.list_pending_for_collaborator(collaborators[0].id)}
        assert statuses[devices[0].id] == "in_progress"

    def test_inactive_periods_excluded(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        period_lifecycle.finalize(period["id"])
        assert assignment_ledger.list_pending_for_collaborator(collaborators[0].id) == []
        assert assignment_ledger.list_all_for_collaborator(collaborators[0].id) == []

    def test_dangling_catalog_reference_tolerated(self, period, collaborators, devices):
        self._setup(period, collaborators, devices)
        db.session.delete(db.session.get(CatalogItem, devices[0].id))
        db.session.commit()
        items = {i["catalog_item_id"]: i for i in
                 assignment_ledger.list_pending_for_collaborator(collaborators[0].id)}
        assert items[devices[0].id]["catalog_item"] is None


# ═══════════════════════════════════════════════════════════════════════════
#  REPAIR
# ═══════════════════════════════════════════════════════════════════════════

class TestRepairBrokenReferences:

    def test_no_op_when_nothing_broken(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        version = period_lifecycle.get_period(period["id"])["version"]
        assert assignment_ledger.repair_broken_references() == {"periods_touched": 0, "records_removed": 0}
        assert period_lifecycle.get_period(period["id"])["version"] == version

    def test_removes_dangling_assignments(self, period, collaborators, devices):
        c1, c2, _ = collaborators
        assignment_ledger.assign_individual(period["id"], devices[0].id, c1.id)
        assignment_ledger.assign_individual(period["id"], devices[0].id, c2.id)
        assignment_ledger.assign_pooled(period["id"], devices[1].id, [c1.id, c2.id])
        db.session.delete(db.session.get(CatalogItem, devices[0].id))
        db.session.commit()

        result = assignment_ledger.repair_broken_references()
        assert result == {"periods_touched": 1, "records_removed": 2}
        p = period_lifecycle.get_period(period["id"])
        assert p["total_devices"] == 1
        assert [a["catalog_item_id"] for a in p["assignments"]] == [devices[1].id]

        assert assignment_ledger.repair_broken_references() == {"periods_touched": 0, "records_removed": 0}

    def test_repair_touches_inactive_periods_too(self, period, collaborators, devices):
        assignment_ledger.assign_individual(period["id"], devices[0].id, collaborators[0].id)
        period_lifecycle.finalize(period["id"])
        db.session.delete(db.session.get(CatalogItem, devices[0].id))
        db.session.commit()
        assert assignment_ledger.repair_broken_references()["records_removed"] == 1
