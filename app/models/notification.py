from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    title: str
    message: str
    severity: str = "info"  # info | warning | critical
    kind: str = Field(default="", index=True)  # subscription_activated, payment_rejected, ...
    dedup_key: str = Field(unique=True, max_length=128)
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
