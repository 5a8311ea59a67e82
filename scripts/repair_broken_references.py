#!/usr/bin/env python3
"""
Remove period assignments whose catalog item no longer exists.

Same operation as ``flask repair-references`` and the daily
``broken_reference_repair`` job, for cron hosts without the Flask CLI.

Usage:
    python scripts/repair_broken_references.py
    python scripts/repair_broken_references.py --dry-run
"""

import argparse
import sys

sys.path.insert(0, ".")

from maintenance_app import create_app
from maintenance_app.models import db
from maintenance_app.models.period import Assignment
from maintenance_app.services import assignment_ledger, catalog_resolver


def find_broken():
    rows = db.session.query(Assignment.id, Assignment.period_id, Assignment.catalog_item_id).all()
    existing = catalog_resolver.existing_ids({r.catalog_item_id for r in rows})
    return [r for r in rows if r.catalog_item_id not in existing]


def main():
    parser = argparse.ArgumentParser(description="Repair dangling catalog references")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be removed")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.dry_run:
            broken = find_broken()
            for r in broken:
                print(f"    period {r.period_id}: assignment {r.id} -> missing item {r.catalog_item_id}")
            print(f"\n    {len(broken)} dangling assignment(s)")
            return 0

        result = assignment_ledger.repair_broken_references()
        print(f"    removed {result['records_removed']} assignment(s) "
              f"across {result['periods_touched']} period(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
