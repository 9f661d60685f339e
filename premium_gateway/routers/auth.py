import logging

from fastapi import APIRouter, Depends

from premium_gateway import schemas
from premium_gateway.auth import authenticate_user, generate_user_id, get_password_hash, normalize_email
from premium_gateway.deps import get_store
from premium_gateway.errors import AuthError, ValidationError
from premium_gateway.store import UserStore

router = APIRouter(prefix="/api/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


@router.post("/register")
def register(payload: schemas.RegisterRequest, store: UserStore = Depends(get_store)):
    email = normalize_email(payload.email)
    if store.query("email", email):
        raise ValidationError("Email already in use.")

    user_id = generate_user_id()
    store.set(
        user_id,
        {"email": email, "password_hash": get_password_hash(payload.password), "premium": False},
        merge=False,
    )
    logger.info("Registered user %s", user_id)
    return {"success": True, "message": "Registration successful."}


@router.post("/login")
def login(payload: schemas.LoginRequest, store: UserStore = Depends(get_store)):
    user = authenticate_user(store, payload.email, payload.password)
    if not user:
        # Same answer whether or not the email exists.
        raise AuthError("Invalid email or password.")
    return {"success": True, "userId": user.id}
