from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_current_user, require_active_subscription
from app.core.database import get_db
from app.models import Subscription, User
from app.schemas import AccessResponse, CurrentSubscriptionResponse, PlanOut, SubscriptionOut
from app.services.plans import list_plans
from app.services.subscriptions import SubscriptionStore, days_left

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("/plans", response_model=list[PlanOut])
def plans(db: Session = Depends(get_db)):
    return list_plans(db)


@router.get("/current", response_model=CurrentSubscriptionResponse)
def current_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Status only; does not block an expired user."""
    sub = SubscriptionStore(db).current(user.id)
    return CurrentSubscriptionResponse(
        is_active=sub is not None,
        subscription=SubscriptionOut.model_validate(sub) if sub else None,
        days_left=days_left(sub),
    )


@router.get("/access", response_model=AccessResponse)
def access(sub: Subscription | None = Depends(require_active_subscription)):
    """Gate used by protected modules; 403 when expired or tampered."""
    return AccessResponse(ok=True, plan=sub.plan if sub else None, days_left=days_left(sub) if sub else 0)
