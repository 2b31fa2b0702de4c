"""
Whop API client - resolves a user's paid membership from their email address
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from config import PLAN_PRO, settings
from models.subscription import (
    QUALIFYING_MEMBERSHIP_STATUSES,
    MembershipInfo,
    normalize_interval,
)
from services.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


def period_end_from_timestamp(value: Any, default_days: Optional[int] = None) -> datetime:
    """
    Convert a provider unix timestamp (seconds) to an aware datetime.
    Falls back to now + default_days when the provider omits it.
    """
    if value:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.warning(f"Ignoring unparseable current_period_end: {value!r}")
    days = default_days if default_days is not None else settings.default_period_days
    return datetime.now(timezone.utc) + timedelta(days=days)


class WhopClient:
    """
    Thin async wrapper over the two Whop endpoints billing needs.

    Failure policy:
    - any non-2xx status: no data, returns None
    - timeouts, transport errors, undecodable JSON: ProviderUnavailable
    - missing API key: ProviderUnavailable (cannot confirm, so never revoke)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Whop bearer credential (defaults to WHOP_API_KEY)
            base_url: API root (defaults to WHOP_API_BASE_URL)
            timeout: per-request timeout in seconds (defaults to WHOP_TIMEOUT_SECONDS)
            transport: optional httpx transport, used by tests
        """
        self.api_key = api_key if api_key is not None else settings.whop_api_key
        self.base_url = (base_url or settings.whop_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.whop_timeout_seconds
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: Optional[dict] = None) -> Optional[Any]:
        try:
            response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(f"Whop request timed out: GET {path}") from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(f"Whop request failed: GET {path}: {e}") from e

        if not response.is_success:
            logger.warning(f"Whop returned {response.status_code} for GET {path}; treating as no data")
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(f"Whop returned malformed JSON for GET {path}") from e

    @staticmethod
    def _extract_user_id(payload: Any) -> Optional[str]:
        if not isinstance(payload, dict):
            return None
        data = payload.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("id"):
            return str(data[0]["id"])
        if payload.get("id"):
            return str(payload["id"])
        return None

    @staticmethod
    def select_membership(memberships: Any) -> Optional[dict]:
        """
        First membership in provider order whose status grants access.
        past_due and trialing count the same as active.
        """
        if not isinstance(memberships, list):
            return None
        for membership in memberships:
            if isinstance(membership, dict) and membership.get("status") in QUALIFYING_MEMBERSHIP_STATUSES:
                return membership
        return None

    async def resolve_active_membership(self, email: str) -> Optional[MembershipInfo]:
        """
        Resolve the active membership for an email.

        Args:
            email: the user's email (join key with the provider)

        Returns:
            MembershipInfo when a qualifying membership exists, None otherwise

        Raises:
            ProviderUnavailable: when Whop cannot confirm either way
        """
        if not self.is_configured:
            raise ProviderUnavailable("WHOP_API_KEY is not set")

        async with self._client() as client:
            # 1. Search user by email to get the Whop user ID
            search_data = await self._get_json(client, "/users/search", params={"email": email})
            whop_user_id = self._extract_user_id(search_data)
            if not whop_user_id:
                return None

            # 2. Get memberships for this user
            memberships_data = await self._get_json(client, f"/users/{whop_user_id}/memberships")
            if not isinstance(memberships_data, dict):
                return None

        membership = self.select_membership(memberships_data.get("data"))
        if membership is None:
            return None

        return MembershipInfo(
            status="active",
            plan=membership.get("plan_id") or PLAN_PRO,
            interval=normalize_interval(membership.get("billing_period")),
            end_date=period_end_from_timestamp(membership.get("current_period_end")),
        )
