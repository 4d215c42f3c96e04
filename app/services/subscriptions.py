"""Subscription rows: stacking activation, trial, manual grant, revoke, deactivate."""
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.timeutil import ceil_days, utcnow
from app.models import Subscription, User
from app.services.notifications import NotificationEvent, NotificationSink
from app.services.plans import MANUAL_PLAN, TRIAL_PLAN, PlanQuote

log = logging.getLogger(__name__)


class SubscriptionStore:
    def __init__(self, db: Session, sink: NotificationSink | None = None):
        self.db = db
        self.sink = sink

    def current(self, user_id: int, now: datetime | None = None) -> Subscription | None:
        """Active subscription with the latest end date still in the future."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.is_active == True,  # noqa: E712
                Subscription.end_date >= (now or utcnow()),
            )
            .order_by(Subscription.end_date.desc())
        )
        return self.db.exec(stmt).first()

    def for_payment(self, payment_id: int) -> Subscription | None:
        return self.db.exec(select(Subscription).where(Subscription.payment_id == payment_id)).first()

    def stack(self, user_id: int, plan: str, days: int, payment_id: int | None = None, now: datetime | None = None) -> Subscription:
        """
        Insert without committing. A renewal starts where the current
        subscription ends, otherwise now.
        """
        now = now or utcnow()
        existing = self.current(user_id, now)
        start = existing.end_date if existing else now
        sub = Subscription(
            user_id=user_id,
            plan=plan,
            start_date=start,
            end_date=start + timedelta(days=days),
            payment_id=payment_id,
        )
        self.db.add(sub)
        self.db.flush()
        return sub

    def lock_user(self, user_id: int) -> None:
        """
        Row lock on the user until commit, so two activations for the same user
        stack one after the other. A no-op on SQLite, which locks the database.
        """
        self.db.exec(select(User.id).where(User.id == user_id).with_for_update()).first()

    def activate(self, user_id: int, quote: PlanQuote, payment_id: int | None, now: datetime | None = None) -> Subscription:
        """Paid activation under the user lock. Does not commit."""
        self.lock_user(user_id)
        return self.stack(user_id, quote.name, quote.days, payment_id, now)

    def start_trial(self, user_id: int, days: int) -> Subscription:
        now = utcnow()
        sub = Subscription(user_id=user_id, plan=TRIAL_PLAN, start_date=now, end_date=now + timedelta(days=days))
        self.db.add(sub)
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def grant(self, user_id: int, days: int, plan: str = MANUAL_PLAN) -> Subscription:
        self.lock_user(user_id)
        sub = self.stack(user_id, plan, days)
        self.db.commit()
        self.db.refresh(sub)
        log.info("Manual subscription granted: user_id=%s plan=%s days=%s", user_id, plan, days)
        self._emit(
            NotificationEvent(
                user_id=user_id,
                title="Subscription granted",
                message=f"You have been granted {days} days of access. Valid until {sub.end_date:%d %b %Y}.",
                kind="subscription_granted",
                dedup_key=f"subscription_granted_{sub.id}",
            )
        )
        return sub

    def deactivate(self, subscription_id: int) -> bool:
        """Clears is_active; False when it was already inactive. Does not commit."""
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id, Subscription.is_active == True)  # noqa: E712
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def revoke(self, subscription_id: int) -> bool:
        sub = self.db.get(Subscription, subscription_id)
        if not sub:
            return False
        changed = self.deactivate(subscription_id)
        self.db.commit()
        if changed:
            log.info("Subscription revoked: id=%s user_id=%s", subscription_id, sub.user_id)
            self._emit(
                NotificationEvent(
                    user_id=sub.user_id,
                    title="Subscription revoked",
                    message="Your subscription has been revoked. Please contact support.",
                    severity="warning",
                    kind="subscription_revoked",
                    dedup_key=f"subscription_revoked_{subscription_id}",
                )
            )
        return changed

    def notify_activated(self, sub: Subscription) -> None:
        self._emit(
            NotificationEvent(
                user_id=sub.user_id,
                title="Subscription Activated!",
                message=f"Your {sub.plan} plan has been activated. Valid until {sub.end_date:%d %b %Y}.",
                kind="subscription_activated",
                dedup_key=f"subscription_activated_{sub.payment_id or sub.id}",
            )
        )

    def _emit(self, event: NotificationEvent) -> None:
        if self.sink is not None:
            self.sink.emit(event)


def days_left(sub: Subscription | None, now: datetime | None = None) -> int:
    if sub is None:
        return 0
    return max(0, ceil_days(sub.end_date - (now or utcnow())))
