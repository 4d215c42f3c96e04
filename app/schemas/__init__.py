from .admin import AdminGrantRequest, AdminRejectRequest, AdminVerifyRequest, ReconcileReport
from .auth import Token, UserCreate, UserLogin, UserResponse
from .payment import (
    CreateOrderRequest,
    GatewayConfigResponse,
    ManualPaymentRequest,
    OrderHandle,
    PaymentOut,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookEvent,
    WebhookPayment,
)
from .subscription import AccessResponse, CurrentSubscriptionResponse, PlanOut, SubscriptionOut

__all__ = [
    "AccessResponse",
    "AdminGrantRequest",
    "AdminRejectRequest",
    "AdminVerifyRequest",
    "CreateOrderRequest",
    "CurrentSubscriptionResponse",
    "GatewayConfigResponse",
    "ManualPaymentRequest",
    "OrderHandle",
    "PaymentOut",
    "PlanOut",
    "ReconcileReport",
    "SubscriptionOut",
    "Token",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
    "WebhookEvent",
    "WebhookPayment",
]
