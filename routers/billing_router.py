"""
Billing Router - subscription status and Whop webhook endpoints
Webhook is defined FIRST to avoid middleware conflicts
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from config import settings
from crud.user import UserRepository
from database import get_db
from services.errors import InvalidSignature, MalformedPayload
from services.subscription_service import SubscriptionReconciler
from services.webhook_service import WhopWebhookService, parse_event
from utils.responses import error_response, success_response
from utils.webhook_signature import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def get_reconciler(request: Request) -> SubscriptionReconciler:
    return request.app.state.reconciler


def get_webhook_service(request: Request, db: AsyncSession = Depends(get_db)) -> WhopWebhookService:
    return WhopWebhookService(
        store=request.app.state.subscription_store,
        users=UserRepository(db),
        audit=request.app.state.audit,
    )


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@webhook_router.post("/whop")
async def whop_webhook(
    request: Request,
    service: WhopWebhookService = Depends(get_webhook_service),
):
    """
    Handle Whop webhook events.

    - 200 for every acknowledged delivery, including unknown users and
      unhandled actions, so Whop does not retry them
    - 401 when signature verification is enabled and the signature is bad
    - 500 for malformed payloads and processing failures, so Whop redelivers
    """
    payload = await request.body()

    if settings.whop_webhook_verify:
        if not settings.whop_webhook_secret:
            logger.error("WHOP_WEBHOOK_SECRET is not set but webhook verification is enabled")
            return error_response(
                "WEBHOOK_SECRET_NOT_CONFIGURED",
                status=500,
                message="Webhook secret not configured",
            )
        try:
            verify_signature(payload, request.headers.get(SIGNATURE_HEADER), settings.whop_webhook_secret)
        except InvalidSignature as e:
            logger.error(f"Whop webhook signature verification failed: {e}")
            return error_response("INVALID_SIGNATURE", status=401, message="Invalid webhook signature")

    action: Optional[str] = None
    try:
        try:
            body = json.loads(payload)
        except ValueError as e:
            raise MalformedPayload(f"Webhook body is not valid JSON: {e}") from e
        event = parse_event(body)
        action = event.action
        outcome = await service.process_event(event)
    except Exception as e:
        logger.error(f"[Whop Webhook] Error: {e}", exc_info=True)
        await service.record_failure(e, action=action)
        return error_response("WEBHOOK_PROCESSING_FAILED", status=500, message="Internal Server Error")

    return success_response(
        {"received": True, "action": action, "outcome": outcome.value},
        message="Webhook processed",
    )


@billing_router.get("/subscription")
async def get_subscription(
    current_user: dict = Depends(get_current_user),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """
    Current subscription from the local store (null when none is active).
    A Whop revalidation is kicked off in the background on every call.
    """
    subscription = await reconciler.get_current_subscription(current_user)
    return success_response(subscription.model_dump(mode="json") if subscription else None)


@billing_router.get("/entitlement")
async def get_entitlement(
    current_user: dict = Depends(get_current_user),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Plan and access flag for feature gating."""
    return success_response(await reconciler.entitlement_for(current_user))


@billing_router.get("/manage")
async def get_manage_url():
    """Billing is managed on Whop; hand the client the hub URL."""
    return success_response({"url": settings.whop_manage_url})
