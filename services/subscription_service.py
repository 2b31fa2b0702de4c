"""
Subscription reconciler: instant local read plus lazy background revalidation

The caller always gets the locally stored state straight away. A detached
task then asks Whop for the truth and writes it back, so an upgrade,
renewal or revocation shows up on the *next* call rather than this one.
"""

import logging
from typing import Any, Optional

from config import PLAN_FREE
from crud.subscription import SubscriptionStore
from models.subscription import (
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionWithPrice,
)
from services.audit_service import AuditAction, NullAuditService
from services.errors import ProviderUnavailable, StoreFailure
from services.whop_client import WhopClient
from utils.background import BackgroundTaskRunner

logger = logging.getLogger(__name__)


def _user_field(user: Any, key: str) -> Optional[Any]:
    if user is None:
        return None
    if isinstance(user, dict):
        return user.get(key)
    return getattr(user, key, None)


def to_subscription_view(record: SubscriptionRecord) -> SubscriptionWithPrice:
    """Build the caller-facing view of an active record."""
    current_period_end = int(record.end_date.timestamp()) if record.end_date else 0
    return SubscriptionWithPrice(
        id=record.id,
        status="active",
        current_period_end=current_period_end,
        plan=SubscriptionPlan(id=record.plan, name=record.plan, interval=record.interval),
    )


class SubscriptionReconciler:
    """
    Orchestrates the fast path (store read) and the slow path (provider check).

    No locking: the webhook ingestor may write the same record concurrently,
    and whichever upsert lands last wins.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        provider: WhopClient,
        runner: BackgroundTaskRunner,
        audit=None,
    ):
        """
        Args:
            store: subscription store shared with the webhook ingestor
            provider: Whop client used for revalidation
            runner: owner of detached revalidation tasks
            audit: optional audit sink
        """
        self.store = store
        self.provider = provider
        self.runner = runner
        self.audit = audit or NullAuditService()

    async def get_current_subscription(self, user: Any) -> Optional[SubscriptionWithPrice]:
        """
        Return the user's active subscription from the local store, or None.

        Always schedules a background revalidation against Whop; never waits
        on it and never surfaces its errors.
        """
        email = _user_field(user, "email")
        if not email:
            return None
        user_id = _user_field(user, "id") or _user_field(user, "user_id")

        # 1. Instant local check
        local = None
        try:
            local = await self.store.get(email)
        except StoreFailure as e:
            # Subscription state must never block unrelated page rendering
            logger.error(f"Subscription store read failed for {email}: {e}")

        # 2. Background validation, not awaited
        self.runner.spawn(
            self.revalidate(email, user_id),
            name=f"revalidate-subscription:{email}",
        )

        # 3. Local state returned immediately
        if local is not None and local.is_active:
            return to_subscription_view(local)
        return None

    async def revalidate(self, email: str, user_id: Optional[Any] = None) -> Optional[SubscriptionRecord]:
        """
        Re-derive subscription state from Whop and write it to the store.

        - active membership: upsert ACTIVE with provider plan/interval/end date
        - no membership while the local record is ACTIVE: status -> CANCELLED
        - no membership otherwise: no write
        - ProviderUnavailable: logged, store untouched

        Returns:
            The record after the write, or None when nothing was written
        """
        email = email.lower()
        try:
            membership = await self.provider.resolve_active_membership(email)
        except ProviderUnavailable as e:
            logger.warning(f"Background Whop validation failed for {email}: {e}")
            return None

        local = await self.store.get(email)

        if membership is not None:
            owner_id = user_id if user_id is not None else (local.user_id if local else None)
            if local is None and not owner_id:
                logger.warning(f"Active Whop membership for {email} but no user id to attach it to")
                return None
            fields = {
                "status": SubscriptionStatus.ACTIVE,
                "plan": membership.plan,
                "interval": membership.interval,
                "end_date": membership.end_date,
            }
            if owner_id:
                fields["user_id"] = str(owner_id)
            record = await self.store.upsert(email, fields)
            await self.audit.record(
                AuditAction.SUBSCRIPTION_CREATED if local is None else AuditAction.SUBSCRIPTION_UPDATED,
                user_id=record.user_id,
                resource_id=record.id,
                details={"source": "revalidation", "plan": record.plan, "interval": record.interval.value},
            )
            return record

        if local is not None and local.is_active:
            logger.info(f"[Revocation] {email} has an active local subscription but no Whop membership. Revoking.")
            record = await self.store.set_status(email, SubscriptionStatus.CANCELLED)
            if record is not None:
                await self.audit.record(
                    AuditAction.SUBSCRIPTION_CANCELLED,
                    user_id=record.user_id,
                    resource_id=record.id,
                    details={"source": "revalidation"},
                )
            return record

        return None

    async def entitlement_for(self, user: Any) -> dict:
        """Plan name and access flag for feature gating; free when nothing is active."""
        subscription = await self.get_current_subscription(user)
        if subscription is None:
            return {"plan": PLAN_FREE, "is_active": False, "current_period_end": None}
        return {
            "plan": subscription.plan.name,
            "is_active": True,
            "current_period_end": subscription.current_period_end,
        }
