#!/usr/bin/env python3
"""
Maintenance Period Platform: demo seed.

Creates one coordinator, four collaborators in the same policy, a handful of
catalog devices and a current period holding both individual and pooled
assignments, then completes two of them so every view has something to show.

Usage:
    python scripts/seed_demo_data.py            # seed into the configured DB
    python scripts/seed_demo_data.py --reset    # drop + create tables first
"""

import argparse
import sys
from datetime import timedelta

sys.path.insert(0, ".")

from maintenance_app import create_app
from maintenance_app.models import db
from maintenance_app.models.catalog import CatalogItem
from maintenance_app.models.identity import Collaborator, Coordinator
from maintenance_app.services import completion_engine, period_lifecycle
from maintenance_app.utils.helpers import utcnow

POLICY_ID = 1001

DEVICES = [
    ("extinguisher", "Lobby", "EXT-001", "A", "PB"),
    ("extinguisher", "Kitchen", "EXT-002", "A", "PB"),
    ("smoke_detector", "Server room", "SD-101", "B", "1"),
    ("hydrant", "Parking", "HY-01", "B", "S1"),
    ("emergency_light", "Stairwell", "EL-07", "A", "2"),
]


def seed_people():
    coordinator = Coordinator(name="Laura Coordinator", email="coordinator@demo.local", policy_id=POLICY_ID)
    db.session.add(coordinator)
    db.session.flush()
    collaborators = [
        Collaborator(name=name, email=f"{name.lower()}@demo.local", policy_id=POLICY_ID,
                     coordinator_id=coordinator.id, role=role)
        for name, role in [("Ana", "encargado"), ("Bruno", "auxiliar"),
                           ("Carla", "auxiliar"), ("Diego", "auxiliar")]
    ]
    db.session.add_all(collaborators)
    db.session.commit()
    return coordinator, collaborators


def seed_catalog():
    items = [
        CatalogItem(type=t, location=loc, identifier=ident, building=b, level=lvl)
        for t, loc, ident, b, lvl in DEVICES
    ]
    db.session.add_all(items)
    db.session.commit()
    return items


def seed_period(coordinator, collaborators, items):
    ana, bruno, carla, diego = collaborators
    now = utcnow()
    period = period_lifecycle.create_period(
        name="Demo Quarter",
        coordinator_id=coordinator.id,
        start_at=now - timedelta(days=15),
        end_at=now + timedelta(days=75),
        description="Quarterly fire-safety inspection round",
        policy_id=POLICY_ID,
        seed_assignments=[
            {"catalog_item_id": items[0].id, "collaborator_id": ana.id},
            {"catalog_item_id": items[1].id, "collaborator_id": bruno.id},
            {"catalog_item_id": items[2].id, "eligible_collaborator_ids": [bruno.id, carla.id, diego.id]},
            {"catalog_item_id": items[3].id, "eligible_collaborator_ids": [ana.id, carla.id]},
            {"catalog_item_id": items[4].id, "collaborator_id": diego.id},
        ],
    )
    completion_engine.complete(period["id"], items[0].id, ana.id, {
        "note": "Pressure OK, seal intact",
        "work_evidence": "evidence/ext-001-work.jpg",
    })
    completion_engine.complete(period["id"], items[2].id, carla.id, {
        "note": "Detector tested with aerosol",
        "is_collaborative": True,
        "participation": [{"collaborator_id": diego.id, "description": "Held the ladder"}],
    })
    return period_lifecycle.get_period(period["id"])


def main():
    parser = argparse.ArgumentParser(description="Seed maintenance-period demo data")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
        coordinator, collaborators = seed_people()
        items = seed_catalog()
        period = seed_period(coordinator, collaborators, items)
        print(f"Seeded period {period['id']} '{period['name']}': "
              f"{period['completed_devices']}/{period['total_devices']} "
              f"({period['completion_percentage']}%) complete")


if __name__ == "__main__":
    main()
