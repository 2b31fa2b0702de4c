"""
Subscription store: durable email -> subscription state mapping.

Both the reconciler's background revalidation and the webhook ingestor
write here. Writes are unconditional upserts keyed by email, so the last
writer wins and no locking is needed.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import PLAN_PRO
from database_models import Subscription
from models.subscription import (
    BillingInterval,
    SubscriptionRecord,
    SubscriptionStatus,
    normalize_interval,
)
from services.errors import StoreFailure

logger = logging.getLogger(__name__)

# Columns a writer may overwrite; user_id is only honoured on creation
_MUTABLE_FIELDS = ("status", "plan", "interval", "end_date")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_fields(fields: dict) -> dict:
    cleaned = {}
    for key in _MUTABLE_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key == "status":
            value = SubscriptionStatus(value).value
        elif key == "interval":
            value = normalize_interval(value).value
        elif key == "end_date":
            value = _as_utc(value)
        cleaned[key] = value
    return cleaned


def _to_record(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        status=SubscriptionStatus(row.status),
        plan=row.plan,
        interval=normalize_interval(row.interval),
        end_date=_as_utc(row.end_date),
    )


class SubscriptionStore(Protocol):
    """Contract shared by the SQL store and the in-memory store."""

    async def get(self, email: str) -> Optional[SubscriptionRecord]:
        ...

    async def upsert(self, email: str, fields: dict) -> SubscriptionRecord:
        ...

    async def set_status(self, email: str, status: SubscriptionStatus) -> Optional[SubscriptionRecord]:
        ...


class SqlSubscriptionStore:
    """
    SQLAlchemy-backed subscription store.

    Each operation opens and commits its own session from the injected
    factory. A detached revalidation task outlives the request that
    spawned it, so it can never borrow a request-scoped session.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        """
        Args:
            session_factory: async_sessionmaker (or compatible callable)
        """
        self.session_factory = session_factory

    @staticmethod
    async def _find(session: AsyncSession, email: str) -> Optional[Subscription]:
        result = await session.execute(
            select(Subscription).where(Subscription.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get(self, email: str) -> Optional[SubscriptionRecord]:
        try:
            async with self.session_factory() as session:
                row = await self._find(session, email)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to read subscription for {email}: {e}") from e

    async def upsert(self, email: str, fields: dict) -> SubscriptionRecord:
        """
        Create the subscription for ``email`` or overwrite the supplied fields.

        Args:
            email: natural key, case-insensitive
            fields: any of status, plan, interval, end_date; user_id is
                required when the row does not exist yet

        Returns:
            The stored record after the write
        """
        email = email.lower()
        updates = _clean_fields(fields)
        try:
            async with self.session_factory() as session:
                row = await self._find(session, email)
                if row is None:
                    if not fields.get("user_id"):
                        raise ValueError("user_id is required to create a subscription")
                    row = Subscription(email=email, user_id=str(fields["user_id"]), **updates)
                    session.add(row)
                    try:
                        await session.commit()
                    except IntegrityError:
                        # A concurrent writer inserted the same email first
                        await session.rollback()
                        row = await self._find(session, email)
                        if row is None:
                            raise
                        for key, value in updates.items():
                            setattr(row, key, value)
                        await session.commit()
                else:
                    for key, value in updates.items():
                        setattr(row, key, value)
                    await session.commit()
                await session.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to upsert subscription for {email}: {e}") from e

    async def set_status(self, email: str, status: SubscriptionStatus) -> Optional[SubscriptionRecord]:
        """Change only the status of an existing record. Returns None when there is none."""
        try:
            async with self.session_factory() as session:
                row = await self._find(session, email)
                if row is None:
                    return None
                row.status = SubscriptionStatus(status).value
                await session.commit()
                await session.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Failed to update subscription status for {email}: {e}") from e


class InMemorySubscriptionStore:
    """Dict-backed store with the same contract, for tests and local wiring."""

    def __init__(self):
        self._records: Dict[str, SubscriptionRecord] = {}
        self.writes = 0

    async def get(self, email: str) -> Optional[SubscriptionRecord]:
        return self._records.get(email.lower())

    async def upsert(self, email: str, fields: dict) -> SubscriptionRecord:
        email = email.lower()
        updates = _clean_fields(fields)
        existing = self._records.get(email)
        if existing is None:
            if not fields.get("user_id"):
                raise ValueError("user_id is required to create a subscription")
            record = SubscriptionRecord(
                id=str(uuid.uuid4()),
                user_id=str(fields["user_id"]),
                email=email,
                status=updates.get("status", SubscriptionStatus.ACTIVE.value),
                plan=updates.get("plan", PLAN_PRO),
                interval=updates.get("interval", BillingInterval.MONTH.value),
                end_date=updates.get("end_date"),
            )
        else:
            record = existing.model_copy(update={
                key: (SubscriptionStatus(value) if key == "status" else
                      BillingInterval(value) if key == "interval" else value)
                for key, value in updates.items()
            })
        self._records[email] = record
        self.writes += 1
        return record

    async def set_status(self, email: str, status: SubscriptionStatus) -> Optional[SubscriptionRecord]:
        existing = self._records.get(email.lower())
        if existing is None:
            return None
        record = existing.model_copy(update={"status": SubscriptionStatus(status)})
        self._records[email.lower()] = record
        self.writes += 1
        return record
