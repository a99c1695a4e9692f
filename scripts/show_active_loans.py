#!/usr/bin/env python3
# scripts/show_active_loans.py
import argparse
import os
import sys

import loans
from db import has_schema, session_for


def main() -> None:
    ap = argparse.ArgumentParser(description="List open loans, or soft-deleted loans with --deleted.")
    ap.add_argument("--db", default=None, help="Path to SQLite DB (default: DATABASE_URL, APP_DB_PATH or data/loans.db)")
    ap.add_argument("--deleted", action="store_true", help="List soft-deleted loans instead")
    args = ap.parse_args()

    if args.db and os.getenv("DATABASE_URL"):
        print(f"warning: DATABASE_URL is set but --db {args.db} is used", file=sys.stderr)

    db = session_for(args.db)
    try:
        if not has_schema(db.get_bind()):
            raise SystemExit(f"error: no loan tables in {db.get_bind().url}; start the API once to create them")

        rows = loans.list_deleted_loans(db) if args.deleted else loans.list_active_loans(db)
        if not rows:
            print("No loans found.")
            return

        for loan in rows:
            who = f"{loan.employee.first_name} {loan.employee.last_name}" if loan.employee else loan.employee_id
            print(f"{loan.id}  {who}  status={loan.status}  opened={loan.opened_at:%Y-%m-%d}")
            if loan.deleted_at:
                print(f"    deleted at {loan.deleted_at:%Y-%m-%d %H:%M} by {loan.deleted_by_id}")
            for line in loan.lines:
                if line.asset_item:
                    print(f"    - {line.asset_item.asset_tag}")
                elif line.stock_item:
                    print(f"    - {line.quantity}x stock {line.stock_item_id}")
        print(f"{len(rows)} loan(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
