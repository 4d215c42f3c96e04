"""
Payment verification: the pending -> verified transition.

Three kinds of evidence funnel into try_activate():
  - CallbackEvidence: checkout widget result, HMAC(order_id|payment_id) with the API secret
  - WebhookEvidence: raw gateway event body, HMAC(raw body) with the webhook secret
  - AdminEvidence: manual verification from the admin panel

The winner of the conditional UPDATE activates the subscription in the same
transaction; every other caller gets an already_processed result and changes
nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import AmountMismatchError, BillingError, GatewayError, NotFoundError, SignatureError
from app.core.signatures import verify_callback_signature, verify_webhook_signature
from app.models import BillingTotals, PaymentRecord, Subscription
from app.models.payment import EXPIRED, PENDING, VERIFIED
from app.schemas.payment import WebhookEvent
from app.services.audit import audit, security_event
from app.services.fraud import FraudGuard
from app.services.gateway import GatewayClient
from app.services.notifications import NotificationEvent, NotificationSink
from app.services.payments import PaymentStore
from app.services.plans import quote_for_record
from app.services.subscriptions import SubscriptionStore

log = logging.getLogger(__name__)

VIA_CALLBACK = "callback"
VIA_WEBHOOK = "webhook"
VIA_ADMIN = "admin"

CAPTURE_EVENTS = ("payment.captured", "order.paid")
FAILURE_EVENTS = ("payment.failed",)


@dataclass(frozen=True)
class CallbackEvidence:
    order_id: str
    payment_id: str
    signature: str
    user_id: int


@dataclass(frozen=True)
class WebhookEvidence:
    raw_body: bytes
    signature: str | None


@dataclass(frozen=True)
class AdminEvidence:
    record_id: int
    note: str | None = None


@dataclass
class ActivationResult:
    record: PaymentRecord
    subscription: Subscription | None
    already_processed: bool = False

    @property
    def plan(self) -> str:
        return self.record.plan

    @property
    def amount(self) -> int:
        return self.record.amount

    @property
    def end_date(self) -> datetime | None:
        return self.subscription.end_date if self.subscription else None


class VerificationService:
    def __init__(
        self,
        db: Session,
        gateway: GatewayClient | None = None,
        sink: NotificationSink | None = None,
        ip: str | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.sink = sink
        self.ip = ip
        self.payments = PaymentStore(db)
        self.subscriptions = SubscriptionStore(db, sink)

    def try_activate(self, evidence: CallbackEvidence | WebhookEvidence | AdminEvidence) -> ActivationResult | None:
        if isinstance(evidence, CallbackEvidence):
            return self._from_callback(evidence)
        if isinstance(evidence, WebhookEvidence):
            return self._from_webhook(evidence)
        if isinstance(evidence, AdminEvidence):
            return self._from_admin(evidence)
        raise TypeError(f"Unsupported evidence: {type(evidence).__name__}")

    # ---------- entry points ----------

    def _from_callback(self, e: CallbackEvidence) -> ActivationResult:
        if not verify_callback_signature(settings.gateway_key_secret, e.order_id, e.payment_id, e.signature):
            log.warning("Callback signature mismatch (possible forgery): user_id=%s order_id=%s", e.user_id, e.order_id)
            security_event(self.db, "invalid_signature", user_id=e.user_id, ip=self.ip, endpoint="/verify", detail=f"order_id={e.order_id}")
            raise SignatureError()

        record = self.payments.by_order_id(e.order_id, user_id=e.user_id)
        if record is None:
            raise NotFoundError()
        if record.status != PENDING:
            return self._already_processed(record, paid=True)

        FraudGuard(self.db, ip=self.ip, endpoint="/verify").check_reference(record.user_id, e.payment_id, exclude_id=record.id)
        if settings.gateway_secondary_check and self.gateway is not None:
            self._confirm_with_gateway(record, e.payment_id)
        return self._activate(record, VIA_CALLBACK, payment_id=e.payment_id, signature=e.signature)

    def _from_webhook(self, e: WebhookEvidence) -> ActivationResult | None:
        if not verify_webhook_signature(settings.gateway_webhook_secret, e.raw_body, e.signature):
            log.warning("Webhook signature mismatch: ip=%s size=%s", self.ip, len(e.raw_body))
            security_event(self.db, "invalid_signature", ip=self.ip, endpoint="/webhook", detail="webhook")
            raise SignatureError()

        try:
            event = WebhookEvent.model_validate_json(e.raw_body)
        except PydanticValidationError as exc:
            log.warning("Webhook body not understood: %s", exc.errors()[:1])
            return None

        if event.event in FAILURE_EVENTS:
            # The checkout may retry on the same order, so the record stays pending
            log.info("Gateway reported failed attempt: order_id=%s", event.order_id)
            record = self.payments.by_order_id(event.order_id) if event.order_id else None
            audit(self.db, "payment_attempt_failed", record.user_id if record else None, self.ip, event.order_id)
            return None
        if event.event not in CAPTURE_EVENTS or event.payment is None:
            log.info("Webhook event ignored: %s", event.event)
            return None

        record = self.payments.by_order_id(event.order_id) if event.order_id else None
        attach_order_id = None
        if record is None and event.receipt:
            # Remote order whose id never reached our record
            record = self.payments.by_receipt(event.receipt)
            if record is not None and record.external_order_id is None:
                attach_order_id = event.order_id
        if record is None:
            log.warning("Webhook for unknown order: order_id=%s payment_id=%s", event.order_id, event.payment.id)
            return None
        if record.status != PENDING:
            return self._already_processed(record, paid=True)

        if event.payment.amount is not None and event.payment.amount != record.amount * 100:
            self._reject_and_raise(
                record,
                AmountMismatchError(),
                f"webhook amount={event.payment.amount} expected={record.amount * 100}",
            )
        return self._activate(record, VIA_WEBHOOK, payment_id=event.payment.id, order_id=attach_order_id)

    def _from_admin(self, e: AdminEvidence) -> ActivationResult:
        record = self.payments.get(e.record_id)
        if record is None:
            raise NotFoundError()
        if record.status != PENDING:
            return self._already_processed(record)
        return self._activate(record, VIA_ADMIN, note=e.note or "Verified by admin")

    def handle_webhook(self, raw_body: bytes, signature: str | None) -> str:
        """
        Webhook wrapper: SignatureError propagates (400) and billing rejections
        are acknowledged so the gateway stops retrying. Any other failure
        propagates as a 500 so the gateway redelivers the event.
        """
        try:
            result = self.try_activate(WebhookEvidence(raw_body=raw_body, signature=signature))
        except SignatureError:
            raise
        except BillingError as e:
            log.warning("Webhook processing rejected: code=%s", e.code)
            return "rejected"
        if result is None:
            return "ignored"
        return "duplicate" if result.already_processed else "activated"

    def reject(self, record_id: int, note: str | None = None) -> bool:
        """Admin rejection; False when the record already left pending."""
        record = self.payments.get(record_id)
        if record is None:
            raise NotFoundError()
        won = self.payments.mark_rejected(record_id, note=note)
        self.db.commit()
        if won:
            self._after_rejection(record, note or "Rejected by admin")
        return won

    # ---------- transition ----------

    def _confirm_with_gateway(self, record: PaymentRecord, payment_id: str) -> None:
        """Secondary check; a network failure falls back to the signature alone."""
        try:
            remote = self.gateway.fetch_remote_payment(payment_id)
        except GatewayError:
            log.warning("Secondary gateway check unavailable, relying on signature: record=%s payment_id=%s", record.id, payment_id)
            return
        if remote.order_id and remote.order_id != record.external_order_id:
            self._reject_and_raise(
                record,
                AmountMismatchError("Payment does not belong to this order.", code="ORDER_MISMATCH"),
                f"remote order_id={remote.order_id} expected={record.external_order_id}",
            )
        if not remote.is_captured:
            self._reject_and_raise(
                record,
                AmountMismatchError("Payment was not captured.", code="PAYMENT_NOT_CAPTURED"),
                f"remote status={remote.status}",
            )
        if remote.amount != record.amount * 100:
            self._reject_and_raise(
                record,
                AmountMismatchError(),
                f"remote amount={remote.amount} expected={record.amount * 100}",
            )

    def _reject_and_raise(self, record: PaymentRecord, error: BillingError, detail: str) -> None:
        record_id, user_id = record.id, record.user_id
        won = self.payments.mark_rejected(record_id, note=f"{error.code}: {detail}"[:500])
        self.db.commit()
        log.error("Payment rejected: record=%s user_id=%s code=%s %s", record_id, user_id, error.code, detail)
        security_event(self.db, error.code.lower(), user_id=user_id, ip=self.ip, detail=f"record={record_id} {detail}")
        if won:
            self._after_rejection(record, error.message)
        raise error

    def _after_rejection(self, record: PaymentRecord, reason: str) -> None:
        audit(self.db, "payment_rejected", record.user_id, self.ip, f"record={record.id}")
        if self.sink is not None:
            self.sink.emit(
                NotificationEvent(
                    user_id=record.user_id,
                    title="Payment rejected",
                    message=f"Your {record.plan} payment of Rs. {record.amount} was rejected: {reason}",
                    severity="warning",
                    kind="payment_rejected",
                    dedup_key=f"payment_rejected_{record.id}",
                )
            )

    def _activate(
        self,
        record: PaymentRecord,
        via: str,
        payment_id: str | None = None,
        signature: str | None = None,
        order_id: str | None = None,
        note: str | None = None,
    ) -> ActivationResult:
        quote = quote_for_record(self.db, record)
        record_id, user_id = record.id, record.user_id
        try:
            won = self.payments.mark_verified(
                record_id, via, payment_id=payment_id, signature=signature, order_id=order_id, note=note
            )
            if not won:
                self.db.rollback()
                return self._already_processed(self.payments.get(record_id), paid=via != VIA_ADMIN)
            sub = self.subscriptions.activate(user_id, quote, payment_id=record_id)
            self._bump_totals(user_id, record.amount)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            current = self.payments.get(record_id)
            if current.status == PENDING:
                # Our own transition was rolled back; the caller must retry
                log.error("Activation conflict left record pending: record=%s user_id=%s", record_id, user_id)
                raise
            return self._already_processed(current)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(record)
        self.db.refresh(sub)
        log.info(
            "Payment verified: record=%s user_id=%s plan=%s via=%s end_date=%s",
            record_id, user_id, quote.name, via, sub.end_date.isoformat(),
        )
        audit(self.db, "payment_verified", user_id, self.ip, f"record={record_id} via={via}")
        self.subscriptions.notify_activated(sub)
        return ActivationResult(record=record, subscription=sub)

    def _bump_totals(self, user_id: int, amount: int) -> None:
        stmt = (
            update(BillingTotals)
            .where(BillingTotals.user_id == user_id)
            .values(
                verified_count=BillingTotals.verified_count + 1,
                total_paid=BillingTotals.total_paid + amount,
            )
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount == 0:
            self.db.add(BillingTotals(user_id=user_id, verified_count=1, total_paid=amount))
            self.db.flush()

    def _already_processed(self, record: PaymentRecord, paid: bool = False) -> ActivationResult:
        self.db.refresh(record)
        sub = self.subscriptions.for_payment(record.id)
        if record.status == VERIFIED and sub is None:
            sub = self.complete_activation(record)
        elif record.status == EXPIRED and paid:
            log.error("Payment evidence received for expired order: record=%s user_id=%s", record.id, record.user_id)
            security_event(self.db, "paid_after_expiry", user_id=record.user_id, ip=self.ip, detail=f"record={record.id}")
        return ActivationResult(record=record, subscription=sub, already_processed=True)

    def complete_activation(self, record: PaymentRecord) -> Subscription | None:
        """Verified payment without a subscription (crash between writes): activate it now."""
        quote = quote_for_record(self.db, record)
        try:
            sub = self.subscriptions.activate(record.user_id, quote, payment_id=record.id)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self.subscriptions.for_payment(record.id)
        self.db.refresh(sub)
        log.warning("Completed missing activation: record=%s user_id=%s", record.id, record.user_id)
        self.subscriptions.notify_activated(sub)
        return sub
