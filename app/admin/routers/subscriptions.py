from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.api.deps import get_notification_sink
from app.core.database import get_db
from app.models import Subscription, User
from app.schemas import AdminGrantRequest, SubscriptionOut
from app.services.audit import audit
from app.services.notifications import NotificationSink
from app.services.plans import max_days_for
from app.services.subscriptions import SubscriptionStore

router = APIRouter()


@router.get("/user/{user_id}", response_model=list[SubscriptionOut])
def user_subscriptions(user_id: int, db: Session = Depends(get_db)):
    stmt = select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.end_date.desc())
    return list(db.exec(stmt).all())


@router.post("/grant", response_model=SubscriptionOut)
def subscription_grant(
    body: AdminGrantRequest,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """Support grant without a payment; stacks on the current subscription."""
    if not db.get(User, body.user_id):
        raise HTTPException(status_code=404, detail="User not found.")
    max_days = max_days_for(db, body.plan)
    if body.days > max_days:
        raise HTTPException(status_code=400, detail=f"At most {max_days} days can be granted on plan {body.plan}.")
    sub = SubscriptionStore(db, sink).grant(body.user_id, body.days, plan=body.plan)
    audit(db, "subscription_granted", body.user_id, detail=f"subscription={sub.id} days={body.days} {body.note or ''}")
    return sub


@router.post("/{subscription_id}/revoke")
def subscription_revoke(
    subscription_id: int,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    sub = db.get(Subscription, subscription_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    changed = SubscriptionStore(db, sink).revoke(subscription_id)
    if changed:
        audit(db, "subscription_revoked", sub.user_id, detail=f"subscription={subscription_id}")
    return {"ok": True, "changed": changed}
