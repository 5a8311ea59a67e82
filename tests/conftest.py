"""
Shared pytest fixtures for the Maintenance Period Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - coordinator / collaborators / outsider / devices: committed identity and
      catalog rows for one policy
    - period: an active period created through the lifecycle service

Services commit (and roll back on failure) themselves, so fixture data is
always committed, never just flushed.
"""

from datetime import timedelta

import pytest

from maintenance_app import create_app
from maintenance_app.models import db as _db
from maintenance_app.models.catalog import CatalogItem
from maintenance_app.models.identity import Collaborator, Coordinator
from maintenance_app.services import identity_resolver, period_lifecycle
from maintenance_app.utils.helpers import utcnow

POLICY_ID = 7
OTHER_POLICY_ID = 99


def window(days_before=10, days_after=30):
    """(start, end) around now as ISO strings."""
    now = utcnow()
    return (
        (now - timedelta(days=days_before)).isoformat(),
        (now + timedelta(days=days_after)).isoformat(),
    )


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused across tests; never serve a snapshot from a previous one.
        identity_resolver.invalidate_all()
        yield
        identity_resolver.invalidate_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def coordinator():
    c = Coordinator(name="Marta Coordinator", email="coordinator@test.local", policy_id=POLICY_ID)
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def collaborators(coordinator):
    """Three collaborators in POLICY_ID."""
    people = [
        Collaborator(
            name=f"Collaborator {i}",
            email=f"collaborator{i}@test.local",
            policy_id=POLICY_ID,
            coordinator_id=coordinator.id,
            role="encargado" if i == 1 else "auxiliar",
        )
        for i in (1, 2, 3)
    ]
    _db.session.add_all(people)
    _db.session.commit()
    return people


@pytest.fixture()
def outsider():
    """A collaborator from another policy."""
    c = Collaborator(name="Outsider", email="outsider@test.local", policy_id=OTHER_POLICY_ID)
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def devices():
    items = [
        CatalogItem(type="extinguisher", location=f"Floor {i}", identifier=f"EXT-{i:03d}",
                    building="A", level=str(i))
        for i in (1, 2, 3)
    ]
    _db.session.add_all(items)
    _db.session.commit()
    return items


@pytest.fixture()
def period(coordinator):
    """An active period for POLICY_ID with no assignments."""
    start, end = window()
    return period_lifecycle.create_period(
        name="Current Round",
        coordinator_id=coordinator.id,
        start_at=start,
        end_at=end,
        policy_id=POLICY_ID,
    )
