"""Checkout: order creation, callback verification, gateway webhook, manual UPI submissions."""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.api.deps import get_current_user, get_gateway, get_notification_sink
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import SignatureError
from app.core.rate_limit import get_client_ip, limiter
from app.models import User
from app.schemas import (
    CreateOrderRequest,
    GatewayConfigResponse,
    ManualPaymentRequest,
    OrderHandle,
    PaymentOut,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.services.gateway import GatewayClient
from app.services.notifications import NotificationSink
from app.services.orders import OrderService
from app.services.payments import PaymentStore
from app.services.verification import CallbackEvidence, VerificationService

router = APIRouter(tags=["payments"])
log = logging.getLogger(__name__)
_LIMIT = f"{settings.rate_limit_per_minute}/minute"

WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"


@router.get("/payments/config", response_model=GatewayConfigResponse)
def gateway_config(gateway: GatewayClient = Depends(get_gateway)):
    return GatewayConfigResponse(enabled=gateway.enabled, key_id=gateway.key_id if gateway.enabled else None)


@router.post("/orders", response_model=OrderHandle)
@limiter.limit(_LIMIT)
def create_order(
    request: Request,
    body: CreateOrderRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    """Creates the remote order; the widget then pays against order_id."""
    service = OrderService(db, gateway, ip=get_client_ip(request), user_agent=request.headers.get("user-agent"))
    return service.create_order(user, body)


@router.post("/verify", response_model=VerifyPaymentResponse)
@limiter.limit(_LIMIT)
def verify_payment(
    request: Request,
    body: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """Checkout callback: signature check, then idempotent activation."""
    service = VerificationService(db, gateway, sink, ip=get_client_ip(request))
    result = service.try_activate(
        CallbackEvidence(order_id=body.order_id, payment_id=body.payment_id, signature=body.signature, user_id=user.id)
    )
    if result.already_processed:
        message = "Payment already processed."
    else:
        message = "Payment verified! Subscription activated instantly."
    return VerifyPaymentResponse(
        plan=result.plan,
        amount=result.amount,
        end_date=result.end_date,
        already_processed=result.already_processed,
        message=message,
    )


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """
    Server-to-server gateway events. 200 once the signature checks out (also for
    duplicates and ignored events); 400 without any detail on a bad signature.
    A storage failure ends in the global 500 handler so the gateway redelivers.
    """
    raw_body = await request.body()
    service = VerificationService(db, gateway=None, sink=sink, ip=get_client_ip(request))
    try:
        outcome = service.handle_webhook(raw_body, request.headers.get(WEBHOOK_SIGNATURE_HEADER))
    except SignatureError:
        return JSONResponse(status_code=400, content={"status": "invalid signature"})
    log.info("Webhook processed: outcome=%s", outcome)
    return {"status": "ok"}


@router.get("/payments/mine", response_model=list[PaymentOut])
def my_payments(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payment history, newest first; stale pending records show as expired."""
    return PaymentStore(db).list_for_user(user.id)


@router.post("/payments/manual", response_model=PaymentOut, status_code=201)
@limiter.limit(_LIMIT)
def submit_manual_payment(
    request: Request,
    body: ManualPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    """UPI transfer reference for admin verification."""
    service = OrderService(db, gateway, ip=get_client_ip(request), user_agent=request.headers.get("user-agent"))
    return service.submit_manual(user, body)
