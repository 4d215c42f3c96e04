"""
Pre-submission fraud checks. Every check fails closed: it raises
FraudRejection and never touches payment state. Counts are derived on demand
from PaymentRecord / User rows.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import FraudRejection
from app.core.timeutil import utcnow
from app.models import User
from app.services.audit import security_event
from app.services.payments import PaymentStore

log = logging.getLogger(__name__)


class FraudGuard:
    def __init__(self, db: Session, ip: str | None = None, endpoint: str | None = None):
        self.db = db
        self.payments = PaymentStore(db)
        self.ip = ip
        self.endpoint = endpoint

    def _reject(self, user_id: int | None, code: str, message: str, detail: str, status_code: int = 400):
        log.warning("Fraud guard rejected: code=%s user_id=%s ip=%s detail=%s", code, user_id, self.ip, detail)
        security_event(self.db, "fraud", user_id=user_id, ip=self.ip, endpoint=self.endpoint, detail=f"{code}: {detail}")
        raise FraudRejection(message, code=code, status_code=status_code)

    def check_reference(self, user_id: int, reference: str, exclude_id: int | None = None) -> None:
        """The same external reference may back only one live payment, across all users."""
        existing = self.payments.reference_in_use(reference, exclude_id=exclude_id)
        if existing is None:
            return
        if existing.user_id != user_id:
            self._reject(
                user_id,
                "REFERENCE_OTHER_ACCOUNT",
                "This transaction reference is already linked to another account.",
                f"reference={reference} owner={existing.user_id}",
            )
        self._reject(
            user_id,
            "DUPLICATE_REFERENCE",
            "This transaction reference has already been submitted.",
            f"reference={reference} record={existing.id}",
        )

    def check_no_pending_manual(self, user_id: int) -> None:
        self.payments.expire_stale(user_id)
        pending = self.payments.pending_manual(user_id)
        if pending is not None:
            self._reject(
                user_id,
                "PENDING_EXISTS",
                "You already have a payment awaiting verification.",
                f"record={pending.id}",
            )

    def check_daily_limit(self, user_id: int, now: datetime | None = None) -> None:
        since = (now or utcnow()) - timedelta(days=1)
        count = self.payments.count_since(user_id, since)
        if count >= settings.max_daily_submissions:
            self._reject(
                user_id,
                "DAILY_LIMIT",
                "Too many payment attempts today. Please try again tomorrow.",
                f"count={count}",
                status_code=429,
            )

    def check_registration_ip(self, ip: str | None, now: datetime | None = None) -> None:
        """Accounts created from one IP in a rolling week (trial abuse)."""
        if not ip:
            return
        since = (now or utcnow()) - timedelta(days=7)
        stmt = select(func.count()).select_from(User).where(User.registration_ip == ip, User.created_at >= since)
        count = int(self.db.exec(stmt).one())
        if count >= settings.max_accounts_per_ip_per_week:
            self._reject(
                None,
                "IP_ACCOUNT_LIMIT",
                "Too many accounts created. Please try again later or contact support.",
                f"ip={ip} count={count}",
                status_code=429,
            )

    def check_manual_submission(self, user_id: int, reference: str) -> None:
        self.check_reference(user_id, reference)
        self.check_no_pending_manual(user_id)
        self.check_daily_limit(user_id)

    def check_order_creation(self, user_id: int) -> None:
        self.check_daily_limit(user_id)
