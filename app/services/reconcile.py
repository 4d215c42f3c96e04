"""
Reconciliation sweep: lazy expiry for everyone, verified payments that never
got their subscription, and drift in the BillingTotals counters.
Triggered by the admin payment list and by scripts/reconcile.py (cron).
"""
import logging

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.errors import BillingError
from app.models import BillingTotals, PaymentRecord, Subscription
from app.models.payment import VERIFIED
from app.schemas.admin import ReconcileReport
from app.services.notifications import NotificationSink
from app.services.payments import PaymentStore
from app.services.verification import VerificationService

log = logging.getLogger(__name__)


def verified_without_subscription(db: Session, limit: int = 100) -> list[PaymentRecord]:
    has_sub = select(Subscription.id).where(Subscription.payment_id == PaymentRecord.id).exists()
    stmt = select(PaymentRecord).where(PaymentRecord.status == VERIFIED, ~has_sub).limit(limit)
    return list(db.exec(stmt).all())


def activate_missing(db: Session, sink: NotificationSink | None = None) -> int:
    service = VerificationService(db, sink=sink)
    count = 0
    for record in verified_without_subscription(db):
        try:
            sub = service.complete_activation(record)
        except BillingError as e:
            log.error("Cannot complete activation: record=%s error=%s", record.id, e.message)
            continue
        if sub is not None:
            count += 1
    return count


def repair_totals(db: Session) -> int:
    """Recompute per-user counters from history; returns the number of rows fixed."""
    stmt = (
        select(PaymentRecord.user_id, func.count(PaymentRecord.id), func.coalesce(func.sum(PaymentRecord.amount), 0))
        .where(PaymentRecord.status == VERIFIED)
        .group_by(PaymentRecord.user_id)
    )
    actual = {user_id: (int(count), int(total)) for user_id, count, total in db.exec(stmt).all()}
    stored = {t.user_id: t for t in db.exec(select(BillingTotals)).all()}
    fixed = 0
    for user_id in set(actual) | set(stored):
        count, total = actual.get(user_id, (0, 0))
        row = stored.get(user_id)
        if row is None:
            db.add(BillingTotals(user_id=user_id, verified_count=count, total_paid=total))
        elif row.verified_count != count or row.total_paid != total:
            log.warning(
                "BillingTotals drift: user_id=%s stored=(%s, %s) actual=(%s, %s)",
                user_id, row.verified_count, row.total_paid, count, total,
            )
            row.verified_count = count
            row.total_paid = total
            db.add(row)
        else:
            continue
        fixed += 1
    db.commit()
    return fixed


def reconcile(db: Session, sink: NotificationSink | None = None) -> ReconcileReport:
    report = ReconcileReport(
        expired=PaymentStore(db).expire_stale(),
        activated=activate_missing(db, sink),
        totals_repaired=repair_totals(db),
    )
    log.info("Reconciliation done: %s", report.model_dump())
    return report
