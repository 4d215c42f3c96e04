"""Order creation (gateway checkout) and manual payment submission."""
import logging
import secrets
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import GatewayError
from app.core.timeutil import utcnow
from app.models import PaymentRecord, User
from app.models.payment import METHOD_GATEWAY, METHOD_MANUAL
from app.schemas.payment import CreateOrderRequest, ManualPaymentRequest, OrderHandle
from app.services.audit import audit
from app.services.fraud import FraudGuard
from app.services.gateway import GatewayClient
from app.services.payments import PaymentStore
from app.services.plans import CUSTOM_PLAN, PlanQuote, resolve_plan

log = logging.getLogger(__name__)


def new_receipt(user_id: int) -> str:
    return f"dp_{user_id}_{int(utcnow().timestamp())}_{secrets.token_hex(4)}"


class OrderService:
    def __init__(
        self,
        db: Session,
        gateway: GatewayClient,
        ip: str | None = None,
        user_agent: str | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.ip = ip
        self.user_agent = (user_agent or "")[:500] or None
        self.payments = PaymentStore(db)

    def _record(self, user: User, quote: PlanQuote, method: str, **fields) -> PaymentRecord:
        custom = quote.name == CUSTOM_PLAN
        return PaymentRecord(
            user_id=user.id,
            plan=quote.name,
            amount=quote.price,
            currency=settings.gateway_currency,
            method=method,
            custom_days=quote.days if custom else None,
            custom_modules=",".join(quote.modules) if custom else None,
            ip_address=self.ip,
            user_agent=self.user_agent,
            **fields,
        )

    def create_order(self, user: User, body: CreateOrderRequest) -> OrderHandle:
        if not self.gateway.enabled:
            raise GatewayError("Payment gateway is not configured. Please contact admin.", status_code=503)
        quote = resolve_plan(self.db, body.plan, body.modules, body.period)
        FraudGuard(self.db, ip=self.ip, endpoint="/orders").check_order_creation(user.id)

        self.payments.expire_stale(user.id)
        expired = self.payments.expire_pending_gateway(user.id)
        if expired:
            log.info("Expired previous pending gateway orders: user_id=%s count=%s", user.id, expired)

        # Local record first; a remote order can always be matched back through its receipt
        receipt = new_receipt(user.id)
        now = utcnow()
        record = self.payments.add(
            self._record(
                user,
                quote,
                METHOD_GATEWAY,
                receipt=receipt,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.order_expiry_minutes),
            )
        )

        try:
            remote = self.gateway.create_remote_order(
                amount=quote.amount_paise,
                currency=settings.gateway_currency,
                receipt=receipt,
                metadata={"user_id": str(user.id), "plan": quote.name, "receipt": receipt},
            )
        except GatewayError:
            # Record stays pending and lapses at expires_at
            log.error("Remote order creation failed: user_id=%s record=%s", user.id, record.id)
            raise

        try:
            self.payments.attach_order_id(record.id, remote.id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Could not store remote order id: record=%s order_id=%s", record.id, remote.id)
            raise
        self.db.refresh(record)
        audit(self.db, "order_created", user.id, self.ip, f"record={record.id} order_id={remote.id}")
        log.info("Order created: user_id=%s plan=%s amount=%s order_id=%s", user.id, quote.name, quote.price, remote.id)
        return OrderHandle(
            order_id=remote.id,
            amount=remote.amount,
            currency=remote.currency,
            gateway_key_id=self.gateway.key_id,
            receipt=receipt,
            plan=quote.name,
            expires_at=record.expires_at,
            name=settings.brand_name,
            description=f"{quote.name.capitalize()} Plan Subscription",
        )

    def submit_manual(self, user: User, body: ManualPaymentRequest) -> PaymentRecord:
        quote = resolve_plan(self.db, body.plan, body.modules, body.period)
        FraudGuard(self.db, ip=self.ip, endpoint="/payments/manual").check_manual_submission(user.id, body.reference)
        now = utcnow()
        record = self.payments.add(
            self._record(
                user,
                quote,
                METHOD_MANUAL,
                reference=body.reference,
                created_at=now,
                expires_at=now + timedelta(hours=settings.manual_expiry_hours),
            )
        )
        audit(self.db, "manual_payment_submitted", user.id, self.ip, f"record={record.id}")
        log.info("Manual payment submitted: user_id=%s plan=%s record=%s", user.id, quote.name, record.id)
        return record
