"""
Expire abandoned signup intents and delete stale unfinished ones (same sweep the hourly job runs).
Run: python scripts/purge_abandoned_intents.py [--dry-run] (from project root)
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from provisioning.database import SessionLocal
from provisioning.services.retention import run_retention


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="List what would change without writing.")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        report = run_retention(db, dry_run=args.dry_run)
        prefix = "Would expire" if args.dry_run else "Expired"
        print(f"{prefix} {len(report.expired)} abandoned intent(s): {', '.join(report.expired) or '-'}")
        prefix = "Would delete" if args.dry_run else "Deleted"
        print(f"{prefix} {len(report.purged)} stale intent(s): {', '.join(report.purged) or '-'}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
