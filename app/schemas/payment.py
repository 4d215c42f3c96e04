from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


def _normalize_plan(v: str) -> str:
    return (v or "").strip().lower()


class CreateOrderRequest(BaseModel):
    """Gateway checkout: a remote order is created and confirmed later by callback or webhook."""
    plan: str = Field(min_length=1, max_length=64)
    modules: list[str] | None = None  # only for plan == "custom"
    period: int | None = Field(default=None, ge=1)  # months, only for plan == "custom"

    @field_validator("plan")
    @classmethod
    def normalize_plan(cls, v: str) -> str:
        return _normalize_plan(v)


class ManualPaymentRequest(BaseModel):
    """UPI/bank transfer made outside the gateway; an admin verifies it later."""
    plan: str = Field(min_length=1, max_length=64)
    reference: str = Field(min_length=6, max_length=128)
    modules: list[str] | None = None
    period: int | None = Field(default=None, ge=1)

    @field_validator("plan")
    @classmethod
    def normalize_plan(cls, v: str) -> str:
        return _normalize_plan(v)

    @field_validator("reference")
    @classmethod
    def strip_reference(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 6:
            raise ValueError("Transaction reference must be at least 6 characters.")
        return v


class OrderHandle(BaseModel):
    order_id: str
    amount: int  # paise
    currency: str
    gateway_key_id: str
    receipt: str
    plan: str
    expires_at: datetime
    name: str = "DairyPro"
    description: str = ""


class VerifyPaymentRequest(BaseModel):
    """Checkout widget callback. Accepts the gateway's razorpay_* field names too."""
    order_id: str = Field(min_length=1, validation_alias=AliasChoices("order_id", "razorpay_order_id"))
    payment_id: str = Field(min_length=1, validation_alias=AliasChoices("payment_id", "razorpay_payment_id"))
    signature: str = Field(min_length=1, validation_alias=AliasChoices("signature", "razorpay_signature"))


class VerifyPaymentResponse(BaseModel):
    plan: str
    amount: int
    end_date: datetime | None
    already_processed: bool = False
    message: str = ""


class PaymentOut(BaseModel):
    id: int
    plan: str
    amount: int
    currency: str
    method: str
    status: str
    reference: str | None = None
    external_order_id: str | None = None
    created_at: datetime
    expires_at: datetime | None = None
    verified_at: datetime | None = None
    admin_note: str | None = None

    model_config = {"from_attributes": True}


class GatewayConfigResponse(BaseModel):
    enabled: bool
    key_id: str | None = None


class WebhookPayment(BaseModel):
    id: str
    order_id: str | None = None
    amount: int | None = None  # paise
    currency: str | None = None
    status: str | None = None
    notes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("notes", mode="before")
    @classmethod
    def notes_as_dict(cls, v: Any) -> dict[str, Any]:
        # The gateway sends an empty list instead of an empty object
        return v if isinstance(v, dict) else {}


class WebhookEvent(BaseModel):
    """Flattened gateway event: {"event": ..., "payload": {"payment": {"entity": {...}}}}."""
    event: str
    payment: WebhookPayment | None = None
    order_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "payload" not in data:
            return data
        payload = data.get("payload") or {}
        payment = ((payload.get("payment") or {}).get("entity")) or None
        order = ((payload.get("order") or {}).get("entity")) or {}
        order_id = (payment or {}).get("order_id") or order.get("id")
        return {"event": data.get("event", ""), "payment": payment, "order_id": order_id}

    @property
    def receipt(self) -> str | None:
        if self.payment is None:
            return None
        value = self.payment.notes.get("receipt")
        return str(value) if value else None
