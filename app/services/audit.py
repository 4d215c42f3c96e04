"""AuditLog / SecurityLog writers. Call only when the session holds no uncommitted billing changes."""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.models import AuditLog, SecurityLog

log = logging.getLogger(__name__)


def audit(db: Session, event: str, user_id: int | None, ip: str | None = None, detail: str | None = None) -> None:
    try:
        db.add(AuditLog(event=event, user_id=user_id, ip=ip, detail=(detail or None) and detail[:500]))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("AuditLog write failed: event=%s error=%s", event, e)


def security_event(
    db: Session,
    event: str,
    user_id: int | None = None,
    ip: str | None = None,
    endpoint: str | None = None,
    detail: str | None = None,
) -> None:
    try:
        db.add(SecurityLog(event=event, user_id=user_id, ip=ip, endpoint=endpoint, detail=(detail or None) and detail[:1000]))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("SecurityLog write failed: event=%s error=%s", event, e)
