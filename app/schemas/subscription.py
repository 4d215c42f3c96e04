from datetime import datetime

from pydantic import BaseModel


class SubscriptionOut(BaseModel):
    id: int
    plan: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    payment_id: int | None = None

    model_config = {"from_attributes": True}


class CurrentSubscriptionResponse(BaseModel):
    is_active: bool
    subscription: SubscriptionOut | None = None
    days_left: int = 0


class PlanOut(BaseModel):
    name: str
    label: str
    price: int
    days: int

    model_config = {"from_attributes": True}


class AccessResponse(BaseModel):
    ok: bool = True
    plan: str | None = None
    days_left: int = 0
