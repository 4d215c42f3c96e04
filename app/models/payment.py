from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from app.core.timeutil import utcnow

PENDING = "pending"
VERIFIED = "verified"
REJECTED = "rejected"
EXPIRED = "expired"

METHOD_MANUAL = "manual"
METHOD_GATEWAY = "gateway"


class PaymentRecord(SQLModel, table=True):
    """One payment attempt. Status only moves pending -> verified | rejected | expired."""

    __tablename__ = "payment_records"
    __table_args__ = (Index("ix_payment_records_user_status", "user_id", "status"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    plan: str
    amount: int  # INR, whole rupees; the gateway works in paise (amount * 100)
    currency: str = "INR"
    method: str = METHOD_GATEWAY  # manual | gateway
    status: str = Field(default=PENDING, index=True)
    # Our own order reference, sent to the gateway before its order id is known
    receipt: str | None = Field(default=None, unique=True)
    external_order_id: str | None = Field(default=None, unique=True, index=True)
    external_payment_id: str | None = Field(default=None, index=True)
    external_signature: str | None = None
    # Manual flow: UPI / bank transaction reference typed in by the user
    reference: str | None = Field(default=None, index=True, max_length=128)
    custom_days: int | None = None
    custom_modules: str | None = None  # comma separated module keys
    created_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime | None = None
    verified_at: datetime | None = None
    verified_via: str | None = None  # callback | webhook | admin
    admin_note: str | None = None
    ip_address: str | None = None
    user_agent: str | None = Field(default=None, max_length=500)
