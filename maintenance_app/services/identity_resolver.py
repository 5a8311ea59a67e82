"""
Identity lookups — collaborators and coordinators.

The core only needs existence and policy membership. Collaborator lookups are
hot (every assignment and every completion resolves at least one id), so they
go through an explicit TTL cache:

    - TTL is injected from ``IDENTITY_CACHE_TTL_SECONDS`` by ``init_app``
    - entries are snapshots (plain dicts), never live ORM objects
    - writes to the ``collaborators`` table invalidate the touched ids when
      the writing transaction commits (see ``_track_collaborator_writes``)
"""

import logging
import threading
import time

from sqlalchemy import event
from sqlalchemy.orm import Session

from maintenance_app.core.exceptions import NotFoundError
from maintenance_app.models import db
from maintenance_app.models.identity import Collaborator, Coordinator

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5.0

_PENDING_KEY = "identity_resolver.touched_collaborators"


class TTLCache:
    """Thread-safe key → value cache with a fixed time-to-live.

    ``clock`` is injectable so tests can move time without sleeping.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key, value) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def invalidate(self, key) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


collaborator_cache = TTLCache()


def init_app(app) -> None:
    """Apply the configured TTL and start from an empty cache."""
    collaborator_cache.ttl_seconds = float(
        app.config.get("IDENTITY_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS)
    )
    collaborator_cache.invalidate_all()


def invalidate_collaborator(collaborator_id: int) -> None:
    collaborator_cache.invalidate(collaborator_id)


def invalidate_all() -> None:
    collaborator_cache.invalidate_all()


# ── Lookups ──────────────────────────────────────────────────────────────────

def _snapshot(collaborator: Collaborator) -> dict:
    return {
        "id": collaborator.id,
        "name": collaborator.name,
        "policy_id": collaborator.policy_id,
        "status": collaborator.status,
    }


def find_collaborator(collaborator_id: int) -> dict | None:
    """Return a cached snapshot of the collaborator, or None."""
    cached = collaborator_cache.get(collaborator_id)
    if cached is not None:
        return cached
    collaborator = db.session.get(Collaborator, collaborator_id)
    if collaborator is None:
        return None
    snap = _snapshot(collaborator)
    collaborator_cache.set(collaborator_id, snap)
    return snap


def resolve_collaborator(collaborator_id: int) -> dict:
    snap = find_collaborator(collaborator_id)
    if snap is None:
        raise NotFoundError(resource="Collaborator", resource_id=collaborator_id)
    return snap


def resolve_coordinator(coordinator_id: int) -> Coordinator:
    coordinator = db.session.get(Coordinator, coordinator_id)
    if coordinator is None:
        raise NotFoundError(resource="Coordinator", resource_id=coordinator_id)
    return coordinator


def is_policy_member(collaborator_id: int, policy_id: int | None) -> bool:
    """A period without a policy accepts any existing collaborator."""
    snap = find_collaborator(collaborator_id)
    if snap is None:
        return False
    if policy_id is None:
        return True
    return snap["policy_id"] == policy_id


def filter_policy_members(collaborator_ids, policy_id: int | None) -> list[int]:
    """Keep the ids that resolve and belong to ``policy_id``, preserving order."""
    return [cid for cid in collaborator_ids if is_policy_member(cid, policy_id)]


# ── Invalidation at the transaction boundary ─────────────────────────────────

@event.listens_for(Session, "after_flush")
def _track_collaborator_writes(session, flush_context):
    touched = session.info.setdefault(_PENDING_KEY, set())
    for obj in list(session.dirty) + list(session.deleted):
        if isinstance(obj, Collaborator) and obj.id is not None:
            touched.add(obj.id)


@event.listens_for(Session, "after_commit")
def _invalidate_on_commit(session):
    touched = session.info.pop(_PENDING_KEY, None)
    if not touched:
        return
    for collaborator_id in touched:
        invalidate_collaborator(collaborator_id)
    logger.debug("Invalidated %d cached collaborator(s)", len(touched))


@event.listens_for(Session, "after_soft_rollback")
def _discard_on_rollback(session, previous_transaction):
    session.info.pop(_PENDING_KEY, None)
