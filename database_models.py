import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Local account. Issued by the identity layer; billing only reads it.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Subscription(Base):
    """
    Last-known subscription state for one user, keyed by email.

    Email is the join key between the local account and the billing
    provider. Rows are never deleted; cancellation is a status change.
    """
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    status = Column(String(16), nullable=False, default="ACTIVE")  # ACTIVE, CANCELLED, EXPIRED
    plan = Column(String, nullable=False, default="pro")
    interval = Column(String(16), nullable=False, default="month")  # month, year, lifetime
    end_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuditLog(Base):
    """Append-only trail of billing events (webhook deliveries, status changes)."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    resource = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)
    details = Column(Text, nullable=True)  # JSON
    success = Column(Boolean, default=True, nullable=False)
    severity = Column(String(16), default="INFO", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
