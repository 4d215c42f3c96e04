from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.database import get_db
from app.core.security import decode_access_token
from app.models import Subscription, User
from app.services.gateway import GatewayClient
from app.services.notifications import NotificationSink
from app.services.tamper import TamperGuard

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return int(payload["sub"])


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if user.is_banned:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been suspended. Please contact support.",
        )
    return user


def get_gateway(request: Request) -> GatewayClient:
    """Client built once in the app lifespan; overridden in tests."""
    return request.app.state.gateway


def get_notification_sink(request: Request) -> NotificationSink:
    return request.app.state.notification_sink


def require_active_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> Subscription | None:
    """Gate for protected modules: active, untampered subscription (admins pass)."""
    return TamperGuard(db, sink).check(user)
