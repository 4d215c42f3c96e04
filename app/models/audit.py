from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class AuditLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # register, order_created, payment_verified, subscription_granted, ...
    user_id: int | None = Field(default=None, index=True)
    ip: str | None = None
    detail: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
