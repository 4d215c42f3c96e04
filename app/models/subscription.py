from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class Subscription(SQLModel, table=True):
    """Append-only grant of access. Only is_active changes after insert."""

    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_user_end", "user_id", "end_date"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    plan: str
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    # At most one subscription per payment; NULL for trial and admin grants
    payment_id: int | None = Field(default=None, unique=True)
    created_at: datetime = Field(default_factory=utcnow)
