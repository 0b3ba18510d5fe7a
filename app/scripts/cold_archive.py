from __future__ import annotations

import argparse
import logging

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.archive_service import run_cold_archive


def main():
    ap = argparse.ArgumentParser(
        description="Move records archived for N+ days to cold storage.")
    ap.add_argument("--days",
                    type=int,
                    default=settings.COLD_ARCHIVE_AFTER_DAYS,
                    help="Archived at least this many days ago")
    ap.add_argument("--dir",
                    default=settings.COLD_STORAGE_DIR,
                    help="Directory for the JSON export")
    ap.add_argument("--dry-run",
                    action="store_true",
                    help="Only report what would be archived")
    args = ap.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = SessionLocal()
    try:
        result = run_cold_archive(db,
                                  older_than_days=args.days,
                                  archive_dir=args.dir,
                                  dry_run=args.dry_run)
        prefix = "Dry run" if args.dry_run else "Cold archive completed"
        print(f"{prefix}: patients={result.patients_archived} "
              f"documentations={result.documentations_archived} "
              f"bills={result.bills_removed}")
        if result.archive_path:
            print(f"   File: {result.archive_path}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
