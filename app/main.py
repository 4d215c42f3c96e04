import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.admin import admin_router
from app.api.auth import router as auth_router
from app.api.payments import router as payments_router
from app.api.subscription import router as subscription_router
from app.core.config import settings
from app.core.database import engine, init_db
from app.core.errors import BillingError
from app.core.rate_limit import get_client_ip, limiter
from app.logging import setup_logging
from app.models import ErrorLog
from app.services.audit import security_event
from app.services.gateway import GatewayClient
from app.services.notifications import DatabaseNotificationSink

setup_logging(level=logging.INFO)
log = logging.getLogger("dairypro")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.gateway = GatewayClient.from_settings(settings)
    app.state.notification_sink = DatabaseNotificationSink(engine)
    log.info("Payment gateway configured: %s", "yes" if app.state.gateway.enabled else "NO (set GATEWAY_KEY_ID / GATEWAY_KEY_SECRET)")
    if not settings.gateway_webhook_secret:
        log.warning("GATEWAY_WEBHOOK_SECRET is empty: every webhook will be rejected")
    yield


app = FastAPI(
    title="DairyPro Billing API",
    description="Payments and subscriptions for DairyPro",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, code: str | None = None) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if code:
        body["code"] = code
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    with Session(engine) as db:
        security_event(db, "rate_limit", ip=get_client_ip(request), endpoint=request.url.path, detail="Rate limit exceeded")
    return _error_response(request, 429, "Too many requests. Please wait a minute.", code="RATE_LIMITED")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(BillingError)
def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.message, code=exc.code)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    first = errs[0] if errs else {}
    msg = first.get("msg") or "Invalid request."
    rid = getattr(request.state, "request_id", None)
    body = {"error": msg, "status_code": 422, "code": "VALIDATION_ERROR", "detail": jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


def jsonable_errors(errs: list) -> list:
    # ctx may hold exception instances that JSON cannot encode
    return [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in errs]


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    log.exception("Unhandled exception: request_id=%s path=%s %s", rid, request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                request_id=rid,
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except SQLAlchemyError as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.", code="INTERNAL_ERROR")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(payments_router)
app.include_router(subscription_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    database = "ok"
    try:
        with Session(engine) as db:
            db.exec(text("SELECT 1"))
    except SQLAlchemyError:
        database = "error"
    return {
        "status": "ok",
        "database": database,
        "gateway_configured": bool(getattr(app.state, "gateway", None) and app.state.gateway.enabled),
    }
