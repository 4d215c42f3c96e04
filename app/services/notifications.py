"""Notification sink: activation, rejection, grant, revoke and tamper events for a user."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.models import Notification

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    user_id: int
    title: str
    message: str
    severity: str = "info"
    kind: str = ""
    dedup_key: str = ""


class NotificationSink(ABC):
    @abstractmethod
    def emit(self, event: NotificationEvent) -> None:
        """Deliver one event; must not raise into the billing flow."""


class DatabaseNotificationSink(NotificationSink):
    """
    Stores events as Notification rows; a repeated dedup_key is ignored.
    Delivery failures are logged and never propagate into the billing flow.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def emit(self, event: NotificationEvent) -> None:
        try:
            with Session(self.engine) as db:
                if event.dedup_key:
                    stmt = select(Notification).where(Notification.dedup_key == event.dedup_key)
                    if db.exec(stmt).first():
                        return
                db.add(
                    Notification(
                        user_id=event.user_id,
                        title=event.title,
                        message=event.message,
                        severity=event.severity,
                        kind=event.kind,
                        dedup_key=event.dedup_key or f"{event.kind}_{event.user_id}",
                    )
                )
                db.commit()
        except IntegrityError:
            # Concurrent emit with the same dedup_key
            log.info("Notification already stored: dedup_key=%s", event.dedup_key)
        except SQLAlchemyError as e:
            log.warning("Notification write failed: kind=%s user_id=%s error=%s", event.kind, event.user_id, e)
