from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class Plan(SQLModel, table=True):
    """Catalogue plan: authoritative price (INR) and entitlement (days)."""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # monthly, quarterly, ...
    label: str = ""
    price: int
    days: int
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
