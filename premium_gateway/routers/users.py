from typing import Optional

from fastapi import APIRouter, Depends, Query

from premium_gateway import schemas
from premium_gateway.auth import normalize_email
from premium_gateway.deps import get_reconciler, get_store
from premium_gateway.errors import NotFoundError, ValidationError
from premium_gateway.reconciler import SOURCE_ADMIN, EntitlementChange, Reconciler
from premium_gateway.store import UserStore

router = APIRouter(prefix="/api/user", tags=["users"])


def _require(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(
            f"{name} is required.",
            fields=[{"field": name, "message": "Field required"}],
        )
    return value


@router.get("/subscription")
def get_subscription_status(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    store: UserStore = Depends(get_store),
):
    user_id = _require(user_id, "userId")
    user = store.get(user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return {"premium": user.premium, "userId": user.id}


@router.post("/create")
def create_user(
    payload: schemas.CreateUserRequest,
    store: UserStore = Depends(get_store),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Create a payment-flow user; an existing record only has its email refreshed."""
    email = normalize_email(payload.email)
    existing = store.get(payload.user_id)
    if existing is not None:
        # Premium never goes down through this route.
        store.set(payload.user_id, {"email": email}, merge=True)
        return {"success": True, "isNew": False}
    store.set(payload.user_id, {"email": email, "premium": False}, merge=True)
    if payload.premium:
        reconciler.grant_entitlement(payload.user_id, SOURCE_ADMIN)
    return {"success": True, "isNew": True}


@router.post("/subscription/update")
def update_subscription(
    payload: schemas.UpdateSubscriptionRequest,
    reconciler: Reconciler = Depends(get_reconciler),
):
    change = reconciler.set_entitlement(payload.user_id, payload.premium, source=SOURCE_ADMIN)
    if change == EntitlementChange.USER_NOT_FOUND:
        raise NotFoundError("User not found.")
    return {"success": True}


@router.get("/check-email")
def check_email(
    email: Optional[str] = Query(default=None),
    store: UserStore = Depends(get_store),
):
    email = normalize_email(_require(email, "email"))
    matches = store.query("email", email)
    return {"exists": bool(matches), "userId": matches[0].id if matches else None}
