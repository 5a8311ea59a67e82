#!/usr/bin/env python3
"""Show DB record counts for the maintenance-period tables."""
import sys
sys.path.insert(0, ".")

from maintenance_app import create_app
from maintenance_app.models import db

TABLES = [
    "coordinators", "collaborators", "device_catalog",
    "maintenance_periods", "period_assignments",
    "completion_records", "completion_participants", "scheduled_jobs",
]

app = create_app()
with app.app_context():
    total = 0
    for t in TABLES:
        c = db.session.execute(db.text(f"SELECT COUNT(*) FROM {t}")).scalar()
        total += c
        print(f"    {t:.<30} {c}")
    print(f"    {'TOTAL':.<30} {total}")

    active = db.session.execute(
        db.text("SELECT COUNT(*) FROM maintenance_periods WHERE is_active")
    ).scalar()
    print(f"\n    active periods: {active}")
