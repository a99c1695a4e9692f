#!/usr/bin/env python3
# scripts/fix_asset_item_statuses.py
import argparse
import logging
import os
import sys

from crud import status_summary
from db import has_schema, session_for
from reconcile import reconcile_asset_item_statuses


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Reset asset item statuses that disagree with open, non-deleted loans."
    )
    ap.add_argument("--db", default=None, help="Path to SQLite DB (default: DATABASE_URL, APP_DB_PATH or data/loans.db)")
    ap.add_argument("--dry-run", action="store_true", help="Show corrections only, do not write")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.db and os.getenv("DATABASE_URL"):
        print(f"warning: DATABASE_URL is set but --db {args.db} is used", file=sys.stderr)

    db = session_for(args.db)
    try:
        if not has_schema(db.get_bind()):
            raise SystemExit(f"error: no loan tables in {db.get_bind().url}; start the API once to create them")

        report = reconcile_asset_item_statuses(db, dry_run=args.dry_run)

        for c in report.corrections:
            print(f"{c.asset_tag}: {c.old_status} -> {c.new_status}")
        for d in report.double_booked:
            print(f"{d.asset_tag}: on {len(d.loan_ids)} open loans ({', '.join(d.loan_ids)}), fix by hand")

        verb = "would be fixed" if args.dry_run else "fixed"
        print(f"{len(report.corrections)} asset item(s) {verb}, {len(report.double_booked)} double-booked.")

        print("Status summary:")
        for status, n in sorted(status_summary(db).items()):
            print(f"  {status}: {n}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
