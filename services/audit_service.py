"""
Audit trail for billing events: webhook deliveries and subscription changes
"""
import json
import logging
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database_models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"
    WEBHOOK_PROCESSED = "WEBHOOK_PROCESSED"
    WEBHOOK_FAILED = "WEBHOOK_FAILED"


class AuditSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AuditService:
    """
    Best-effort audit sink. A failed audit write is logged and dropped;
    it never fails the billing operation that triggered it.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        action: AuditAction,
        user_id: Optional[str] = None,
        resource: Optional[str] = "Subscription",
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> None:
        try:
            entry = AuditLog(
                user_id=str(user_id) if user_id is not None else None,
                action=AuditAction(action).value,
                resource=resource,
                resource_id=resource_id,
                details=json.dumps(details, default=str) if details else None,
                success=success,
                severity=AuditSeverity(severity).value,
            )
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception as e:
            logger.warning(f"Audit log write failed for {action}: {e}")


class NullAuditService:
    """Audit sink that discards everything."""

    async def record(self, action: AuditAction, **kwargs) -> None:
        return None
