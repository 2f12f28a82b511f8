"""
Run the credit refund sweep once (foreground).

Usage (from backend/):
  python -m app.scripts.run_refund_sweep [--grace-days N] [--expire-attempts]

Same logic as POST /api/v1/cron/refund-uncompleted and the celery beat task,
printed as JSON so it can be piped into other tooling.
"""
from __future__ import annotations

import argparse
import json

from app.components.attempts.service import expire_overdue_attempts
from app.components.credits.refund_sweep import refund_uncompleted_invites
from app.platform.database import SessionLocal
from app.platform.logging import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Refund credit reservations for uncompleted invites")
    parser.add_argument("--grace-days", type=int, default=None, help="Override REFUND_GRACE_DAYS")
    parser.add_argument("--expire-attempts", action="store_true", help="Also expire overdue attempts first")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()
    try:
        result = {}
        if args.expire_attempts:
            result["expiredAttempts"] = expire_overdue_attempts(db)
        result.update(refund_uncompleted_invites(db, grace_days=args.grace_days))
    finally:
        db.close()
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
