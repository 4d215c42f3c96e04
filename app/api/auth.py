import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import get_client_ip, limiter
from app.core.security import create_access_token, hash_password, verify_password
from app.api.deps import get_current_user
from app.models import User
from app.schemas import Token, UserCreate, UserLogin, UserResponse
from app.services.audit import audit, security_event
from app.services.fraud import FraudGuard
from app.services.subscriptions import SubscriptionStore

router = APIRouter(prefix="/auth", tags=["auth"])
_REGISTER_LIMIT = f"{settings.rate_limit_register_per_minute}/minute;100/hour"
log = logging.getLogger(__name__)


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id or 0,
        email=user.email,
        full_name=user.full_name or "",
        phone=user.phone,
        role=user.role,
    )


@router.post("/register", response_model=UserResponse, status_code=201)
@limiter.limit(_REGISTER_LIMIT)
def register(
    request: Request,
    body: UserCreate,
    db: Session = Depends(get_db),
):
    """New account with a free trial; accounts per IP are capped per week."""
    email = body.email.lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="Email already registered.")
    ip = get_client_ip(request)
    FraudGuard(db, ip=ip, endpoint="/auth/register").check_registration_ip(ip)
    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        full_name=body.full_name,
        phone=(body.phone or "").strip() or None,
        registration_ip=ip,
    )
    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered.")
    db.refresh(user)
    SubscriptionStore(db).start_trial(user.id, settings.trial_days)
    audit(db, "register", user.id, ip)
    log.info("User registered: user_id=%s", user.id)
    return _user_response(user)


@router.post("/login", response_model=Token)
@limiter.limit("5/minute;20/hour")
def login(
    request: Request,
    body: UserLogin,
    db: Session = Depends(get_db),
):
    user = db.exec(select(User).where(User.email == body.email.lower())).first()
    ip = get_client_ip(request)
    if not user or not verify_password(body.password, user.hashed_password):
        security_event(db, "failed_login", ip=ip, endpoint="/auth/login", detail=body.email)
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    if user.is_banned:
        security_event(db, "failed_login", user_id=user.id, ip=ip, endpoint="/auth/login", detail="banned")
        raise HTTPException(status_code=403, detail="Your account has been suspended.")
    audit(db, "login", user.id, ip)
    return Token(access_token=create_access_token({"sub": str(user.id)}))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _user_response(user)
