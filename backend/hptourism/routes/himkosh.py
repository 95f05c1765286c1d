"""
HimKosh Routes: treasury payment initiation, callback and reconciliation.
"""
from functools import lru_cache
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Query
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.orm import Session

from hptourism.config import HimKoshConfig, get_settings, resolve_himkosh_config
from hptourism.database import get_db
from hptourism.himkosh.crypto import HimKoshCipher, KeyFile
from hptourism.himkosh.exceptions import (
    ApplicationNotPayableError,
    ChecksumMismatchError,
    HimKoshConfigError,
    HimKoshError,
)
from hptourism.himkosh.gateway import HimKoshGateway
from hptourism.himkosh.service import HimKoshPaymentService
from hptourism.schemas.schemas import (
    ConfigStatusResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    TransactionListResponse,
    TransactionOut,
    VerificationResponse,
)
from hptourism.utils.rate_limiter import rate_limit
from hptourism.utils.validators import validate_app_ref_no

logger = structlog.get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api/himkosh", tags=["HimKosh"])


# ─── Dependencies ────────────────────────────────────────────────────

@lru_cache()
def get_himkosh_config() -> HimKoshConfig:
    return resolve_himkosh_config(get_settings())


@lru_cache()
def get_cipher() -> HimKoshCipher:
    """Process-wide cipher; the key file itself is read on first use."""
    config = get_himkosh_config()
    return HimKoshCipher(KeyFile(config.key_file_path, config.iv_mode))


@lru_cache()
def get_gateway() -> HimKoshGateway:
    config = get_himkosh_config()
    return HimKoshGateway(config.verification_url, timeout=config.http_timeout)


def get_payment_service(
    db: Session = Depends(get_db),
    config: HimKoshConfig = Depends(get_himkosh_config),
    cipher: HimKoshCipher = Depends(get_cipher),
    gateway: HimKoshGateway = Depends(get_gateway),
) -> HimKoshPaymentService:
    return HimKoshPaymentService(db, config, cipher, gateway, settings=get_settings())


def _http_error(exc: HimKoshError) -> HTTPException:
    detail = exc.message
    if isinstance(exc, ApplicationNotPayableError) and exc.current_status:
        detail = f"{exc.message} (current status: {exc.current_status})"
    return HTTPException(status_code=exc.status_code, detail=detail)


# ─── Endpoints ───────────────────────────────────────────────────────

@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    response_model_exclude_none=True,
)
def initiate_payment(
    payload: PaymentInitiateRequest,
    service: HimKoshPaymentService = Depends(get_payment_service),
    _throttle: None = Depends(rate_limit("himkosh-initiate", requests=settings.INITIATE_RATE_LIMIT)),
):
    """Build the encrypted challan request for an application awaiting payment."""
    try:
        result = service.initiate(payload.application_id)
    except HimKoshError as exc:
        logger.warning("himkosh_initiate_rejected", application_id=payload.application_id, error=exc.message)
        raise _http_error(exc)

    return PaymentInitiateResponse(
        payment_url=result.payment_url,
        merchant_code=result.merchant_code,
        encdata=result.encdata,
        checksum=result.checksum,
        app_ref_no=result.app_ref_no,
        total_amount=result.total_amount,
        actual_amount=result.actual_amount,
        is_test_mode=result.is_test_mode,
        is_configured=result.is_configured,
        config_status=result.config_status,
        message=result.message,
    )


@router.post("/callback")
def payment_callback(
    encdata: Optional[str] = Form(None),
    service: HimKoshPaymentService = Depends(get_payment_service),
):
    """Treasury return URL. Answers with a browser redirect or plain text, never JSON."""
    if not encdata:
        return PlainTextResponse("Missing payment response data", status_code=400)

    try:
        outcome = service.handle_callback(encdata)
    except ChecksumMismatchError:
        return PlainTextResponse("Invalid checksum", status_code=400)
    except HimKoshConfigError as exc:
        logger.error("himkosh_callback_config_error", error=exc.message)
        return PlainTextResponse("Payment processing unavailable", status_code=exc.status_code)
    except HimKoshError as exc:
        logger.warning("himkosh_callback_rejected", error=exc.message, status_code=exc.status_code)
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    except Exception:
        logger.error("himkosh_callback_failed", exc_info=True)
        return PlainTextResponse("Payment processing failed", status_code=500)

    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}{outcome.redirect_path()}",
        status_code=302,
    )


@router.post("/verify/{app_ref_no}", response_model=VerificationResponse)
def verify_transaction(
    app_ref_no: str,
    service: HimKoshPaymentService = Depends(get_payment_service),
):
    """Server-to-server double verification of a transaction."""
    if not validate_app_ref_no(app_ref_no):
        raise HTTPException(status_code=400, detail="Invalid AppRefNo")
    try:
        result = service.verify(app_ref_no)
    except HimKoshError as exc:
        raise _http_error(exc)
    return VerificationResponse(verified=result.verified, data=result.data)


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: HimKoshPaymentService = Depends(get_payment_service),
):
    """List HimKosh transactions, newest first."""
    total, transactions = service.list_transactions(status=status, limit=limit, offset=offset)
    return TransactionListResponse(
        total=total,
        transactions=[TransactionOut.model_validate(t) for t in transactions],
    )


@router.get("/transaction/{app_ref_no}", response_model=TransactionOut)
def get_transaction(
    app_ref_no: str,
    service: HimKoshPaymentService = Depends(get_payment_service),
):
    try:
        return TransactionOut.model_validate(service.get_transaction(app_ref_no))
    except HimKoshError as exc:
        raise _http_error(exc)


@router.get("/config/status", response_model=ConfigStatusResponse)
def config_status(service: HimKoshPaymentService = Depends(get_payment_service)):
    """Report which credentials are live and whether the key file is in place."""
    return ConfigStatusResponse(**service.config_status())
