from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from premium_gateway.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    # Uniqueness is enforced by the registration path, not the table.
    email = Column(String, index=True, nullable=True)
    password_hash = Column(String, nullable=True)  # absent for payment-flow users
    premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    premium_updated_at = Column(DateTime(timezone=True), nullable=True)


class EntitlementEvent(Base):
    """Append-only record of every change to a user's premium flag."""

    __tablename__ = "entitlement_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    premium = Column(Boolean, nullable=False)
    source = Column(String, nullable=False)  # capture, webhook, admin, cancellation
    reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
