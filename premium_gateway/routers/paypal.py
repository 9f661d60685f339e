import logging
import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from premium_gateway import schemas
from premium_gateway.config import Settings
from premium_gateway.deps import get_provider, get_reconciler, get_settings
from premium_gateway.errors import AuthError, NotFoundError
from premium_gateway.paypal import PayPalClient, format_amount
from premium_gateway.reconciler import EntitlementChange, Reconciler

router = APIRouter(tags=["paypal"])
logger = logging.getLogger(__name__)


def _currency(raw: str | None, settings: Settings) -> str:
    return (raw or settings.default_currency).strip().upper()


def _capture_and_grant(
    order_id: str,
    user_id: str,
    provider: PayPalClient,
    reconciler: Reconciler,
) -> bool:
    # A fixed request id makes a retried capture of the same order a no-op upstream.
    capture = provider.capture_order(order_id, request_id=f"capture-{order_id}")
    change = reconciler.apply_capture(user_id, capture)
    if change is None:
        return False
    if change == EntitlementChange.USER_NOT_FOUND:
        logger.error("Order %s captured for unknown user %s; premium not recorded", order_id, user_id)
        raise NotFoundError("User not found.")
    return True


@router.get("/test-paypal-auth")
def test_paypal_auth(provider: PayPalClient = Depends(get_provider)):
    try:
        access_token = provider.fetch_access_token()
    except AuthError:
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "PayPal authentication failed"},
        )
    return {
        "success": True,
        "message": "PayPal authentication succeeded",
        "token_start": access_token[:10] + "...",
    }


@router.get("/api/paypal/script-url")
def get_script_url(settings: Settings = Depends(get_settings)):
    return {"scriptUrl": settings.script_url}


@router.post("/api/paypal/create-order")
def create_order(
    payload: schemas.CreateOrderRequest,
    settings: Settings = Depends(get_settings),
    provider: PayPalClient = Depends(get_provider),
):
    order = provider.create_order(
        amount=payload.total,
        currency=_currency(payload.currency, settings),
        correlation_id=payload.user_id,
        request_id=payload.request_id or str(uuid.uuid4()),
    )
    return {"orderId": order.order_id, "price": format_amount(payload.total)}


@router.post("/api/paypal/capture-order")
def capture_order(
    payload: schemas.CaptureRequest,
    provider: PayPalClient = Depends(get_provider),
    reconciler: Reconciler = Depends(get_reconciler),
):
    return {"success": _capture_and_grant(payload.order_id, payload.user_id, provider, reconciler)}


@router.post("/api/paypal/create-payment")
def create_payment(
    payload: schemas.CreatePaymentRequest,
    settings: Settings = Depends(get_settings),
    provider: PayPalClient = Depends(get_provider),
):
    order = provider.create_order(
        amount=payload.amount,
        currency=_currency(payload.currency, settings),
        correlation_id=payload.user_id,
        description=payload.description,
        request_id=payload.request_id or str(uuid.uuid4()),
    )
    return {"id": order.order_id, "links": order.approval_links}


@router.post("/api/paypal/capture-payment")
def capture_payment(
    payload: schemas.CaptureRequest,
    provider: PayPalClient = Depends(get_provider),
    reconciler: Reconciler = Depends(get_reconciler),
):
    if _capture_and_grant(payload.order_id, payload.user_id, provider, reconciler):
        return {"success": True, "message": "Payment captured, premium access granted."}
    return {"success": False, "message": "Payment is not completed yet."}
