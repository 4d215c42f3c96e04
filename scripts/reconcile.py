#!/usr/bin/env python3
"""Reconciliation sweep for cron: expires stale pending payments, activates verified
payments that are missing their subscription, repairs BillingTotals drift.
   Usage: python3 scripts/reconcile.py"""
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(ROOT / ".env")

from sqlmodel import Session  # noqa: E402

from app.core.database import engine, init_db  # noqa: E402
from app.logging import setup_logging  # noqa: E402
from app.services.notifications import DatabaseNotificationSink  # noqa: E402
from app.services.reconcile import reconcile  # noqa: E402


def main() -> int:
    setup_logging(level=logging.INFO)
    init_db()
    with Session(engine) as db:
        report = reconcile(db, DatabaseNotificationSink(engine))
    print(
        f"expired={report.expired} activated={report.activated} totals_repaired={report.totals_repaired}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
