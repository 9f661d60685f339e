import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from premium_gateway import models, schemas
from premium_gateway.errors import StoreError

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = {
    "email": None,
    "password_hash": None,
    "premium": False,
}
QUERYABLE_FIELDS = {"email"}


class UserStore:
    """
    Key-value access to user records keyed by an opaque user id.

    Only get/set/query semantics are offered, plus set_premium, which
    writes the premium flag and its ledger row in one transaction. Writes to
    the same id from concurrent requests are last-write-wins per field;
    nothing here reads a value to compute the next one.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, user_id: str) -> Optional[schemas.UserRecord]:
        try:
            with self._session_factory() as db:
                user = db.get(models.User, user_id)
                return schemas.UserRecord.model_validate(user) if user else None
        except SQLAlchemyError as exc:
            logger.error("Failed to read user %s: %s", user_id, exc)
            raise StoreError("User store is unavailable.")

    def set(self, user_id: str, fields: dict[str, Any], merge: bool = True) -> schemas.UserRecord:
        """Write fields for user_id, creating the record when absent.

        With merge, fields missing from the partial record are left as they
        are. Without merge, every writable field missing from `fields` is
        reset to its default.
        """
        unknown = set(fields) - set(WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown user fields: {', '.join(sorted(unknown))}")

        values = dict(fields) if merge else {**WRITABLE_FIELDS, **fields}
        now = datetime.now(timezone.utc)
        try:
            with self._session_factory() as db:
                user = db.get(models.User, user_id)
                if user is None:
                    user = models.User(id=user_id, premium=False, created_at=now)
                    db.add(user)
                for name, value in values.items():
                    setattr(user, name, value)
                user.updated_at = now
                if "premium" in fields:
                    user.premium_updated_at = now
                db.commit()
                db.refresh(user)
                return schemas.UserRecord.model_validate(user)
        except SQLAlchemyError as exc:
            logger.error("Failed to write user %s: %s", user_id, exc)
            raise StoreError("User store is unavailable.")

    def query(self, field: str, value: Any) -> list[schemas.UserRecord]:
        if field not in QUERYABLE_FIELDS:
            raise ValueError(f"Field {field!r} cannot be queried")
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(models.User)
                    .filter(getattr(models.User, field) == value)
                    .order_by(models.User.created_at)
                    .all()
                )
                return [schemas.UserRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Failed to query users by %s: %s", field, exc)
            raise StoreError("User store is unavailable.")

    def set_premium(
        self,
        user_id: str,
        premium: bool,
        source: str,
        reference: Optional[str] = None,
    ) -> Optional[schemas.UserRecord]:
        """Write the premium flag and its entitlement_events row in one commit.

        Returns None without writing when the user does not exist.
        """
        now = datetime.now(timezone.utc)
        try:
            with self._session_factory() as db:
                user = db.get(models.User, user_id)
                if user is None:
                    return None
                user.premium = premium
                user.updated_at = now
                user.premium_updated_at = now
                db.add(
                    models.EntitlementEvent(
                        user_id=user_id,
                        premium=premium,
                        source=source,
                        reference=reference,
                        created_at=now,
                    )
                )
                db.commit()
                db.refresh(user)
                return schemas.UserRecord.model_validate(user)
        except SQLAlchemyError as exc:
            logger.error("Failed to write premium=%s for %s: %s", premium, user_id, exc)
            raise StoreError("User store is unavailable.")

    def entitlement_history(self, user_id: str) -> list[dict[str, Any]]:
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(models.EntitlementEvent)
                    .filter(models.EntitlementEvent.user_id == user_id)
                    .order_by(models.EntitlementEvent.id)
                    .all()
                )
                return [
                    {
                        "premium": row.premium,
                        "source": row.source,
                        "reference": row.reference,
                        "created_at": row.created_at,
                    }
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            logger.error("Failed to read entitlement history for %s: %s", user_id, exc)
            raise StoreError("User store is unavailable.")
