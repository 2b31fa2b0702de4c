"""
Test doubles for the billing layer
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

from models.subscription import BillingInterval, MembershipInfo

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
T1 = datetime(2027, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeWhopProvider:
    """
    Stand-in for WhopClient.

    Set ``membership`` for the answer, ``error`` to raise it instead, and
    ``gate`` (an asyncio.Event) to hold every call until the event is set.
    """

    def __init__(self, membership: Optional[MembershipInfo] = None, error: Optional[Exception] = None):
        self.membership = membership
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls = []

    async def resolve_active_membership(self, email: str) -> Optional[MembershipInfo]:
        self.calls.append(email)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.membership


class FakeUser:
    def __init__(self, id: int, email: str):
        self.id = id
        self.email = email


class FakeUserLookup:
    def __init__(self, *users: FakeUser):
        self.users = {u.email: u for u in users}

    async def get_user_by_email(self, email: str):
        return self.users.get(email.lower())


class RecordingAudit:
    def __init__(self):
        self.actions = []

    async def record(self, action, **kwargs):
        self.actions.append(action)


def make_membership(plan="elite", interval=BillingInterval.YEAR, end_date=T1) -> MembershipInfo:
    return MembershipInfo(status="active", plan=plan, interval=interval, end_date=end_date)
