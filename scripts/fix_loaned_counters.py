#!/usr/bin/env python3
# scripts/fix_loaned_counters.py
import argparse
import logging
import os
import sys

from db import has_schema, session_for
from reconcile import reconcile_stock_loaned


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Recompute stock_items.loaned from the lines of open, non-deleted loans."
    )
    ap.add_argument("--db", default=None, help="Path to SQLite DB (default: DATABASE_URL, APP_DB_PATH or data/loans.db)")
    ap.add_argument("--dry-run", action="store_true", help="Show discrepancies only, do not write")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.db and os.getenv("DATABASE_URL"):
        print(f"warning: DATABASE_URL is set but --db {args.db} is used", file=sys.stderr)

    db = session_for(args.db)
    try:
        if not has_schema(db.get_bind()):
            raise SystemExit(f"error: no loan tables in {db.get_bind().url}; start the API once to create them")

        corrections = reconcile_stock_loaned(db, dry_run=args.dry_run)

        if not corrections:
            print("All loaned counters are consistent.")
            return

        for c in corrections:
            flag = " (over-allocated, clamped to quantity)" if c.over_allocated else ""
            print(f"{c.label}: stored loaned={c.stored_loaned}, actual={c.actual_loaned}, quantity={c.quantity}{flag}")

        if args.dry_run:
            print(f"Dry-run: {len(corrections)} stock item(s) would be corrected.")
        else:
            print(f"Corrected {len(corrections)} stock item(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
