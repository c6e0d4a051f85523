import hmac
import logging

import sqlalchemy.exc
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from paynotify.core.config import Settings, get_settings
from paynotify.core.exceptions import (
    AppException,
    AuthError,
    ErrorCode,
    NotConfiguredError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitedError,
    StoreError,
)
from paynotify.core.logging import setup_logging
from paynotify.db import crud
from paynotify.db.session import SessionLocal
from paynotify.middleware.body_size import BodySizeLimitMiddleware
from paynotify.middleware.request_id import RequestIdMiddleware
from paynotify.schemas.ingest import (
    EnqueueRequest,
    OkResponse,
    PaymentStatus,
    PaymentStatusRequest,
    PaymentStatusResponse,
    StripeEventPayload,
    WorkerRunResponse,
    parse_body,
)
from paynotify.services import stripe_verify
from paynotify.services.email_worker import EmailWorker
from paynotify.services.enqueue import EnqueueForwarder, enqueue_event
from paynotify.services.rate_limit import RateLimiter

settings = get_settings()
setup_logging(settings.log_level, settings.log_json)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Payment Notification Service",
    description="Receives payment webhooks and emails access codes to payers",
    version="1.0.0",
)

# Owned by the process; tests swap in a fresh instance
app.state.rate_limiter = RateLimiter()

app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Request rejected: {exc.error_code.value}",
        extra={
            "extra_data": {
                "error_code": exc.error_code.value,
                "message": exc.message,
                "path": request.url.path,
            }
        },
    )
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(-(-exc.retry_after_ms // 1000))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# ---------- dependencies ----------
def db_session():
    try:
        db: Session = SessionLocal()
    except sqlalchemy.exc.SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )
    try:
        yield db
    finally:
        db.close()


def client_ip(request: Request) -> str:
    cf = request.headers.get("cf-connecting-ip")
    if cf:
        return cf.strip()
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limited(endpoint: str, limit_setting: str, window_setting: str):
    async def dependency(request: Request, settings: Settings = Depends(get_settings)):
        limiter: RateLimiter = request.app.state.rate_limiter
        key = f"{endpoint}:{client_ip(request)}"
        result = limiter.check(
            key, getattr(settings, limit_setting), getattr(settings, window_setting)
        )
        if not result.allowed:
            raise RateLimitedError(key, result.retry_after_ms)

    return dependency


def get_enqueue_forwarder(settings: Settings = Depends(get_settings)) -> EnqueueForwarder:
    if not settings.webhook_configured:
        raise NotConfiguredError("payment_webhook")
    return EnqueueForwarder(
        settings.enqueue_url,
        settings.enqueue_secret,
        timeout=settings.http_timeout_seconds,
    )


# ---------- health ----------
@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}


# ---------- webhook ----------
@app.post(
    "/webhooks/stripe",
    response_model=OkResponse,
    dependencies=[
        Depends(rate_limited("payment_webhook", "webhook_rate_limit", "webhook_rate_window_ms"))
    ],
)
async def payment_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    forwarder: EnqueueForwarder = Depends(get_enqueue_forwarder),
):
    # Signature is computed over these exact bytes, never a re-serialization
    raw = await request.body()
    if len(raw) > settings.max_body_bytes:
        raise PayloadTooLargeError(settings.max_body_bytes)

    signature = request.headers.get("stripe-signature")
    if not signature:
        raise AuthError("missing signature")

    if not stripe_verify.verify(
        settings.stripe_webhook_secret,
        signature,
        raw,
        tolerance=settings.signature_tolerance_seconds or None,
    ):
        raise AuthError("invalid signature")

    event = parse_body(raw, StripeEventPayload)
    await forwarder.forward(event.id, event.type)

    logger.info(
        "Webhook accepted",
        extra={"extra_data": {"event_id": event.id, "event_type": event.type}},
    )
    return {"ok": True}


# ---------- enqueue ----------
@app.post("/jobs/enqueue", response_model=OkResponse)
async def enqueue(
    request: Request,
    db: Session = Depends(db_session),
    settings: Settings = Depends(get_settings),
    x_enqueue_secret: str | None = Header(None),
):
    if not settings.enqueue_secret:
        raise NotConfiguredError("email_enqueue")

    if not x_enqueue_secret or not hmac.compare_digest(
        x_enqueue_secret.encode("utf-8"), settings.enqueue_secret.encode("utf-8")
    ):
        raise AuthError("bad enqueue secret")

    body = parse_body(await request.body(), EnqueueRequest)
    await run_in_threadpool(
        enqueue_event, db, body.event_id, body.event_type, settings.job_max_attempts
    )
    return {"ok": True}


# ---------- worker ----------
@app.post("/jobs/run", response_model=WorkerRunResponse)
def run_worker(
    db: Session = Depends(db_session),
    settings: Settings = Depends(get_settings),
):
    worker = EmailWorker.from_settings(db, settings)
    try:
        processed = worker.run_batch()
    except StoreError as exc:
        raise AppException(exc.message, ErrorCode.FETCH_JOBS_FAILED, status_code=500)
    return {"ok": True, "processed": processed}


# ---------- payment status ----------
@app.post(
    "/payments/status",
    response_model=PaymentStatusResponse,
    dependencies=[
        Depends(rate_limited("payment_status", "status_rate_limit", "status_rate_window_ms"))
    ],
)
async def payment_status(request: Request, db: Session = Depends(db_session)):
    body = parse_body(
        await request.body(),
        PaymentStatusRequest,
        missing_code=ErrorCode.MISSING_PROVIDER_PAYMENT_ID,
    )
    payment = await run_in_threadpool(crud.find_payment, db, body.provider_payment_id)
    if payment is None:
        raise NotFoundError(ErrorCode.PAYMENT_NOT_FOUND, body.provider_payment_id)

    code = None
    if payment.status == "paid" and payment.access_code_id:
        code = await run_in_threadpool(crud.get_access_code, db, payment.access_code_id)

    return PaymentStatusResponse(
        payment=PaymentStatus(
            purchase_id=payment.id,
            status=payment.status,
            access_code=code.code_plaintext if code else None,
            valid_until=code.valid_until.isoformat() if code and code.valid_until else None,
        )
    )
