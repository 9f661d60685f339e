import logging
from typing import Optional

from fastapi import APIRouter, Depends

from premium_gateway import schemas
from premium_gateway.config import Settings
from premium_gateway.deps import get_provider, get_reconciler, get_settings
from premium_gateway.paypal import PayPalClient
from premium_gateway.reconciler import SOURCE_CANCELLATION, EntitlementChange, Reconciler

router = APIRouter(prefix="/api", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.post("/subscriptions")
def create_subscription(
    payload: schemas.CreateSubscriptionRequest,
    settings: Settings = Depends(get_settings),
    provider: PayPalClient = Depends(get_provider),
):
    return provider.create_subscription(
        plan_id=payload.plan_id,
        subscriber_email=payload.user_email,
        return_url=payload.return_url or f"{settings.base_url}/success",
        cancel_url=payload.cancel_url or f"{settings.base_url}/cancel",
        custom_id=payload.custom_id,
    )


@router.post("/subscriptions/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    payload: Optional[schemas.CancelSubscriptionRequest] = None,
    provider: PayPalClient = Depends(get_provider),
    reconciler: Reconciler = Depends(get_reconciler),
):
    payload = payload or schemas.CancelSubscriptionRequest()
    provider.cancel_subscription(subscription_id, payload.reason)
    response = {"status": "SUCCESS", "message": "Subscription cancelled."}
    if payload.user_id:
        change = reconciler.revoke_entitlement(payload.user_id, SOURCE_CANCELLATION, subscription_id)
        if change == EntitlementChange.USER_NOT_FOUND:
            logger.warning("Cancelled %s for unknown user %s", subscription_id, payload.user_id)
        response["premiumRevoked"] = change == EntitlementChange.REVOKED
    return response


@router.get("/subscriptions/{subscription_id}")
def get_subscription(subscription_id: str, provider: PayPalClient = Depends(get_provider)):
    return provider.fetch_subscription(subscription_id)


@router.get("/plans")
def list_plans(provider: PayPalClient = Depends(get_provider)):
    return provider.list_plans()


@router.post("/plans")
def create_plan(payload: schemas.CreatePlanRequest, provider: PayPalClient = Depends(get_provider)):
    return provider.create_plan(
        name=payload.name,
        description=payload.description,
        amount=payload.amount,
        currency=payload.currency.upper(),
        interval=payload.interval,
        interval_count=payload.interval_count,
    )
