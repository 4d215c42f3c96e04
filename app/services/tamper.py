"""
Subscription gate with tamper detection, run on every protected request.
One indexed lookup plus arithmetic; no gateway calls.
"""
import logging

from sqlmodel import Session

from app.core.errors import SubscriptionRequired, TamperDetected
from app.core.timeutil import ceil_days
from app.models import Subscription, User
from app.services.audit import security_event
from app.services.notifications import NotificationEvent, NotificationSink
from app.services.plans import max_days_for
from app.services.subscriptions import SubscriptionStore

log = logging.getLogger("dairypro.tamper")


class TamperGuard:
    def __init__(self, db: Session, sink: NotificationSink | None = None):
        self.db = db
        self.sink = sink
        self.subscriptions = SubscriptionStore(db)

    def check(self, user: User) -> Subscription | None:
        """Active subscription for the user; None for admins, who always pass."""
        if user.role == "admin":
            return None
        sub = self.subscriptions.current(user.id)
        if sub is None:
            raise SubscriptionRequired()
        duration = ceil_days(sub.end_date - sub.start_date)
        max_days = max_days_for(self.db, sub.plan, sub.payment_id)
        if duration > max_days:
            self._invalidate(user, sub, duration, max_days)
        return sub

    def _invalidate(self, user: User, sub: Subscription, duration: int, max_days: int) -> None:
        self.subscriptions.deactivate(sub.id)
        self.db.commit()
        log.error(
            "Tampered subscription detected: user=%s subscription=%s plan=%s duration=%sd max=%sd",
            user.id, sub.id, sub.plan, duration, max_days,
        )
        security_event(
            self.db,
            "tamper",
            user_id=user.id,
            detail=f"subscription={sub.id} plan={sub.plan} duration={duration}d max={max_days}d",
        )
        if self.sink is not None:
            self.sink.emit(
                NotificationEvent(
                    user_id=user.id,
                    title="Subscription invalidated",
                    message="Subscription validation failed. Please contact support.",
                    severity="critical",
                    kind="subscription_tampered",
                    dedup_key=f"subscription_tampered_{sub.id}",
                )
            )
        raise TamperDetected()
