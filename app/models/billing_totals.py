from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class BillingTotals(SQLModel, table=True):
    """Per-user counters, incremented in the same transaction as the verified write."""

    __tablename__ = "billing_totals"
    user_id: int = Field(primary_key=True)
    verified_count: int = 0
    total_paid: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
