"""
Tests for the Whop webhook ingestor state machine
"""
from datetime import datetime, timedelta, timezone

import pytest

from config import PLAN_PRO
from models.subscription import BillingInterval, SubscriptionStatus
from services.audit_service import AuditAction
from services.errors import MalformedPayload
from services.webhook_service import WebhookOutcome, WhopWebhookService, parse_event
from fakes import T0, T1, FakeUser, FakeUserLookup, RecordingAudit

ALICE = FakeUser(1, "a@x.com")
BOB = FakeUser(2, "b@x.com")


def event(action, email="b@x.com", **data):
    return parse_event({"action": action, "data": {"id": "mem_1", "email": email, **data}})


@pytest.fixture
def service(memory_store):
    return WhopWebhookService(store=memory_store, users=FakeUserLookup(ALICE, BOB), audit=RecordingAudit())


@pytest.mark.asyncio
async def test_went_active_creates_subscription(service, memory_store):
    outcome = await service.process_event(event(
        "membership.went_active",
        plan_id="elite",
        billing_period="year",
        current_period_end=int(T1.timestamp()),
    ))

    assert outcome == WebhookOutcome.APPLIED
    record = await memory_store.get("b@x.com")
    assert record.user_id == "2"
    assert record.status == SubscriptionStatus.ACTIVE
    assert record.plan == "elite"
    assert record.interval == BillingInterval.YEAR
    assert record.end_date == T1


@pytest.mark.asyncio
async def test_replaying_went_active_is_idempotent(service, memory_store):
    payload = dict(plan_id="elite", billing_period="year", current_period_end=int(T1.timestamp()))

    await service.process_event(event("membership.went_active", **payload))
    first = await memory_store.get("b@x.com")
    await service.process_event(event("membership.went_active", **payload))
    second = await memory_store.get("b@x.com")

    assert first == second


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["membership.went_valid", "payment.succeeded"])
async def test_other_activating_actions(service, memory_store, action):
    assert await service.process_event(event(action)) == WebhookOutcome.APPLIED

    record = await memory_store.get("b@x.com")
    assert record.status == SubscriptionStatus.ACTIVE
    # Defaults when the payload omits plan, period and period end
    assert record.plan == PLAN_PRO
    assert record.interval == BillingInterval.MONTH
    now = datetime.now(timezone.utc)
    assert now + timedelta(days=29) < record.end_date < now + timedelta(days=31)


@pytest.mark.asyncio
@pytest.mark.parametrize("raw,expected", [
    ("monthly", BillingInterval.MONTH),
    ("yearly", BillingInterval.YEAR),
    ("lifetime", BillingInterval.LIFETIME),
    ("fortnightly", BillingInterval.MONTH),
    (365, BillingInterval.YEAR),
    (30, BillingInterval.MONTH),
])
async def test_billing_period_is_normalized(service, memory_store, raw, expected):
    await service.process_event(event("membership.went_active", billing_period=raw))

    assert (await memory_store.get("b@x.com")).interval == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["membership.went_cancelled", "membership.went_expired"])
async def test_cancellation_marks_existing_record(service, memory_store, action):
    await memory_store.upsert("a@x.com", {
        "user_id": "1", "status": "ACTIVE", "plan": "pro", "interval": "month", "end_date": T0,
    })

    outcome = await service.process_event(event(action, email="a@x.com"))

    assert outcome == WebhookOutcome.APPLIED
    record = await memory_store.get("a@x.com")
    assert record.status == SubscriptionStatus.CANCELLED
    assert record.plan == "pro"
    assert record.end_date == T0


@pytest.mark.asyncio
async def test_cancellation_without_record_is_noop(service, memory_store):
    outcome = await service.process_event(event("membership.went_cancelled", email="a@x.com"))

    assert outcome == WebhookOutcome.NOOP
    assert await memory_store.get("a@x.com") is None


@pytest.mark.asyncio
async def test_unknown_user_is_acknowledged_without_record(service, memory_store):
    outcome = await service.process_event(event("membership.went_active", email="stranger@x.com"))

    assert outcome == WebhookOutcome.IGNORED_UNKNOWN_USER
    assert await memory_store.get("stranger@x.com") is None
    assert memory_store.writes == 0


@pytest.mark.asyncio
async def test_unknown_action_changes_nothing(service, memory_store):
    outcome = await service.process_event(event("membership.metadata_updated"))

    assert outcome == WebhookOutcome.IGNORED_ACTION
    assert memory_store.writes == 0


@pytest.mark.asyncio
async def test_email_lookup_is_case_insensitive(service, memory_store):
    await service.process_event(event("membership.went_active", email="  B@X.COM "))

    assert (await memory_store.get("b@x.com")) is not None


@pytest.mark.asyncio
async def test_audit_trail(service):
    await service.process_event(event("membership.went_active"))

    assert service.audit.actions == [
        AuditAction.WEBHOOK_RECEIVED,
        AuditAction.SUBSCRIPTION_UPDATED,
        AuditAction.WEBHOOK_PROCESSED,
    ]


@pytest.mark.parametrize("body", [
    {},
    {"action": "membership.went_active"},
    {"action": "membership.went_active", "data": {}},
    {"action": "membership.went_active", "data": {"email": ""}},
    ["not", "an", "object"],
])
def test_malformed_payloads_are_rejected(body):
    with pytest.raises(MalformedPayload):
        parse_event(body)
