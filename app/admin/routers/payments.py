"""Payment review: list, verify, reject, reconcile. Same primitives as the automated paths."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from app.api.deps import get_notification_sink
from app.core.database import get_db
from app.models import PaymentRecord, User
from app.schemas import AdminRejectRequest, AdminVerifyRequest, PaymentOut, ReconcileReport, VerifyPaymentResponse
from app.services.notifications import NotificationSink
from app.services.payments import PaymentStore
from app.services.reconcile import activate_missing, reconcile
from app.services.verification import AdminEvidence, VerificationService

router = APIRouter()

_STATUSES = ("pending", "verified", "rejected", "expired")


@router.get("")
@router.get("/")
def payments_list(
    status_filter: str | None = Query(None),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """Newest 200 payments; sweeps expiry and completes missing activations first."""
    PaymentStore(db).expire_stale()
    activated = activate_missing(db, sink)
    stmt = select(PaymentRecord).order_by(PaymentRecord.id.desc()).limit(200)
    if status_filter and status_filter in _STATUSES:
        stmt = stmt.where(PaymentRecord.status == status_filter)
    records = list(db.exec(stmt).all())
    user_ids = {r.user_id for r in records}
    emails = {}
    if user_ids:
        for u in db.exec(select(User).where(User.id.in_(user_ids))).all():
            emails[u.id] = u.email
    rows = [
        {**PaymentOut.model_validate(r).model_dump(mode="json"), "user_id": r.user_id, "user_email": emails.get(r.user_id, "")}
        for r in records
    ]
    return {"payments": rows, "reconciled": activated}


@router.post("/{record_id}/verify", response_model=VerifyPaymentResponse)
def payment_verify(
    record_id: int,
    body: AdminVerifyRequest | None = None,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    result = VerificationService(db, sink=sink).try_activate(AdminEvidence(record_id=record_id, note=body.note if body else None))
    if result.already_processed and result.record.status != "verified":
        raise HTTPException(status_code=400, detail=f"Payment is already {result.record.status}.")
    return VerifyPaymentResponse(
        plan=result.plan,
        amount=result.amount,
        end_date=result.end_date,
        already_processed=result.already_processed,
        message="Already verified" if result.already_processed else "Payment verified and subscription activated",
    )


@router.post("/{record_id}/reject")
def payment_reject(
    record_id: int,
    body: AdminRejectRequest | None = None,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    if not VerificationService(db, sink=sink).reject(record_id, note=body.note if body else None):
        record = db.get(PaymentRecord, record_id)
        raise HTTPException(status_code=400, detail=f"Payment is already {record.status}.")
    return {"ok": True}


@router.post("/reconcile", response_model=ReconcileReport)
def payments_reconcile(
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    return reconcile(db, sink)
