import hashlib
import secrets
import time
from typing import Optional

from passlib.context import CryptContext

from premium_gateway import schemas
from premium_gateway.store import UserStore

BCRYPT_MAX_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _prepare_secret(password: str) -> str:
    # bcrypt only looks at the first 72 bytes, so longer secrets are pre-hashed.
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        return hashlib.sha256(password_bytes).hexdigest()
    return password


def get_password_hash(password: str) -> str:
    return pwd_context.hash(_prepare_secret(password))


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(_prepare_secret(plain_password), hashed_password)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def generate_user_id() -> str:
    """Timestamp-derived id with a short random suffix."""
    return f"{int(time.time() * 1000)}{secrets.token_hex(3)}"


def authenticate_user(store: UserStore, email: str, password: str) -> Optional[schemas.UserRecord]:
    matches = store.query("email", normalize_email(email))
    for user in matches:
        if verify_password(password, user.password_hash):
            return user
    return None
