"""
PaymentRecord persistence.

Every status change is one conditional UPDATE guarded by status = 'pending';
the row count tells the caller whether it won the transition. Transition
helpers do not commit: the caller owns the transaction.
"""
from datetime import datetime

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from app.core.timeutil import utcnow
from app.models import PaymentRecord
from app.models.payment import EXPIRED, METHOD_GATEWAY, METHOD_MANUAL, PENDING, REJECTED, VERIFIED


class PaymentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int) -> PaymentRecord | None:
        return self.db.get(PaymentRecord, record_id)

    def by_order_id(self, order_id: str, user_id: int | None = None) -> PaymentRecord | None:
        stmt = select(PaymentRecord).where(PaymentRecord.external_order_id == order_id)
        if user_id is not None:
            stmt = stmt.where(PaymentRecord.user_id == user_id)
        return self.db.exec(stmt).first()

    def by_receipt(self, receipt: str) -> PaymentRecord | None:
        return self.db.exec(select(PaymentRecord).where(PaymentRecord.receipt == receipt)).first()

    def add(self, record: PaymentRecord) -> PaymentRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def _transition(self, record_id: int, to_status: str, **values) -> bool:
        stmt = (
            update(PaymentRecord)
            .where(PaymentRecord.id == record_id, PaymentRecord.status == PENDING)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def mark_verified(
        self,
        record_id: int,
        via: str,
        payment_id: str | None = None,
        signature: str | None = None,
        order_id: str | None = None,
        note: str | None = None,
    ) -> bool:
        values = {"verified_at": utcnow(), "verified_via": via}
        if payment_id:
            values["external_payment_id"] = payment_id
        if signature:
            values["external_signature"] = signature
        if order_id:
            values["external_order_id"] = order_id
        if note:
            values["admin_note"] = note
        return self._transition(record_id, VERIFIED, **values)

    def mark_rejected(self, record_id: int, note: str | None = None) -> bool:
        return self._transition(record_id, REJECTED, admin_note=note)

    def mark_expired(self, record_id: int) -> bool:
        return self._transition(record_id, EXPIRED)

    def attach_order_id(self, record_id: int, order_id: str) -> bool:
        stmt = (
            update(PaymentRecord)
            .where(
                PaymentRecord.id == record_id,
                PaymentRecord.status == PENDING,
                PaymentRecord.external_order_id.is_(None),
            )
            .values(external_order_id=order_id)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def expire_stale(self, user_id: int | None = None, now: datetime | None = None) -> int:
        """Lazy expiry sweep: pending records past expires_at become expired. Commits."""
        stmt = (
            update(PaymentRecord)
            .where(
                PaymentRecord.status == PENDING,
                PaymentRecord.expires_at.is_not(None),
                PaymentRecord.expires_at < (now or utcnow()),
            )
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(PaymentRecord.user_id == user_id)
        count = self.db.execute(stmt).rowcount
        self.db.commit()
        return count

    def expire_pending_gateway(self, user_id: int) -> int:
        """Single pending gateway order per user: older ones are expired. Commits."""
        stmt = (
            update(PaymentRecord)
            .where(
                PaymentRecord.user_id == user_id,
                PaymentRecord.status == PENDING,
                PaymentRecord.method == METHOD_GATEWAY,
            )
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        count = self.db.execute(stmt).rowcount
        self.db.commit()
        return count

    def list_for_user(self, user_id: int, limit: int = 20) -> list[PaymentRecord]:
        self.expire_stale(user_id)
        stmt = (
            select(PaymentRecord)
            .where(PaymentRecord.user_id == user_id)
            .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
            .limit(limit)
        )
        return list(self.db.exec(stmt).all())

    def reference_in_use(self, reference: str, exclude_id: int | None = None) -> PaymentRecord | None:
        """A live (pending/verified) record already carrying this external reference."""
        stmt = select(PaymentRecord).where(
            PaymentRecord.status.in_((PENDING, VERIFIED)),
            or_(
                PaymentRecord.reference == reference,
                PaymentRecord.external_payment_id == reference,
                PaymentRecord.external_order_id == reference,
            ),
        )
        if exclude_id is not None:
            stmt = stmt.where(PaymentRecord.id != exclude_id)
        return self.db.exec(stmt).first()

    def pending_manual(self, user_id: int) -> PaymentRecord | None:
        stmt = select(PaymentRecord).where(
            PaymentRecord.user_id == user_id,
            PaymentRecord.status == PENDING,
            PaymentRecord.method == METHOD_MANUAL,
        )
        return self.db.exec(stmt).first()

    def count_since(self, user_id: int, since: datetime) -> int:
        stmt = select(func.count()).select_from(PaymentRecord).where(
            PaymentRecord.user_id == user_id,
            PaymentRecord.created_at >= since,
        )
        return int(self.db.exec(stmt).one())
