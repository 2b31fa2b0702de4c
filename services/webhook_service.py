"""
Whop webhook ingestor - applies provider-pushed membership events to the subscription store
"""

import logging
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from config import PLAN_PRO
from crud.subscription import SubscriptionStore
from models.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
    WhopWebhookEvent,
    normalize_interval,
)
from services.audit_service import AuditAction, AuditSeverity, NullAuditService
from services.errors import MalformedPayload, UserNotFound
from services.whop_client import period_end_from_timestamp

logger = logging.getLogger(__name__)

ACTIVATING_ACTIONS = frozenset({
    "membership.went_active",
    "membership.went_valid",
    "payment.succeeded",
})

CANCELLING_ACTIONS = frozenset({
    "membership.went_cancelled",
    "membership.went_expired",
})


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED_UNKNOWN_USER = "ignored_unknown_user"
    IGNORED_ACTION = "ignored_action"
    NOOP = "noop"


class UserLookup(Protocol):
    async def get_user_by_email(self, email: str) -> Optional[Any]:
        ...


def parse_event(body: Any) -> WhopWebhookEvent:
    """Validate a decoded JSON body into a webhook event."""
    try:
        return WhopWebhookEvent.model_validate(body)
    except ValidationError as e:
        raise MalformedPayload(f"Invalid webhook payload: {e}") from e


class WhopWebhookService:
    """
    State machine driven by Whop events.

    Writes go straight to the store, independently of the reconciler's
    pull path. Both are plain upserts, so replaying an event is harmless.
    """

    def __init__(self, store: SubscriptionStore, users: UserLookup, audit=None):
        """
        Args:
            store: subscription store shared with the reconciler
            users: resolves local accounts by email
            audit: optional audit sink
        """
        self.store = store
        self.users = users
        self.audit = audit or NullAuditService()

    async def process_event(self, event: WhopWebhookEvent) -> WebhookOutcome:
        """
        Apply one event. Errors propagate so the endpoint can answer 500 and
        let Whop redeliver.
        """
        data = event.data
        logger.info(f"[Whop Webhook] Received event: {event.action} {data.email}")
        await self.audit.record(
            AuditAction.WEBHOOK_RECEIVED,
            resource="Webhook",
            resource_id=data.id,
            details={"action": event.action, "email": data.email},
        )

        # A subscription must never be attached to a non-existent account
        try:
            user = await self._resolve_user(data.email)
        except UserNotFound as e:
            logger.warning(f"[Whop Webhook] {e}")
            return WebhookOutcome.IGNORED_UNKNOWN_USER

        if event.action in ACTIVATING_ACTIONS:
            record = await self._activate(user, event)
            await self.audit.record(
                AuditAction.SUBSCRIPTION_UPDATED,
                user_id=record.user_id,
                resource_id=record.id,
                details={"source": "webhook", "action": event.action, "plan": record.plan},
            )
            outcome = WebhookOutcome.APPLIED
        elif event.action in CANCELLING_ACTIONS:
            record = await self.store.set_status(user.email, SubscriptionStatus.CANCELLED)
            if record is None:
                logger.info(f"[Whop Webhook] No subscription to cancel for {user.email}")
                outcome = WebhookOutcome.NOOP
            else:
                await self.audit.record(
                    AuditAction.SUBSCRIPTION_CANCELLED,
                    user_id=record.user_id,
                    resource_id=record.id,
                    details={"source": "webhook", "action": event.action},
                )
                outcome = WebhookOutcome.APPLIED
        else:
            logger.info(f"[Whop Webhook] Unhandled action: {event.action}")
            outcome = WebhookOutcome.IGNORED_ACTION

        await self.audit.record(
            AuditAction.WEBHOOK_PROCESSED,
            user_id=str(user.id),
            resource="Webhook",
            resource_id=data.id,
            details={"action": event.action, "outcome": outcome.value},
        )
        return outcome

    async def _resolve_user(self, email: str) -> Any:
        user = await self.users.get_user_by_email(email)
        if user is None:
            raise UserNotFound(f"User not found for email: {email}")
        return user

    async def _activate(self, user: Any, event: WhopWebhookEvent) -> SubscriptionRecord:
        data = event.data
        return await self.store.upsert(user.email, {
            "user_id": str(user.id),
            "status": SubscriptionStatus.ACTIVE,
            "plan": data.plan_id or PLAN_PRO,
            "interval": normalize_interval(data.billing_period),
            "end_date": period_end_from_timestamp(data.current_period_end),
        })

    async def record_failure(self, error: Exception, action: Optional[str] = None) -> None:
        await self.audit.record(
            AuditAction.WEBHOOK_FAILED,
            resource="Webhook",
            details={"action": action, "error": str(error)},
            success=False,
            severity=AuditSeverity.ERROR,
        )
