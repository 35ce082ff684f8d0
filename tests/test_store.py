"""Tests for the in-memory policy and audit stores."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from aegis_guardrails.engine.store import (
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyNotFoundError,
    StoreError,
)
from aegis_guardrails.engine.templates import policy_from_template
from aegis_guardrails.models.core import AuditLogEntry, Decision

_T0 = datetime(2026, 1, 1, tzinfo=UTC)


# ── Policies ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_is_per_customer_and_oldest_first() -> None:
    customer = uuid4()
    newer = policy_from_template("pii_detection", customer, created_at=_T0 + timedelta(1))
    older = policy_from_template("custom_rules", customer, created_at=_T0)
    foreign = policy_from_template("pii_detection", uuid4())
    store = InMemoryPolicyStore([newer, older, foreign])

    assert [p.id for p in await store.list(customer)] == [older.id, newer.id]


@pytest.mark.asyncio
async def test_list_enabled_skips_disabled() -> None:
    customer = uuid4()
    on = policy_from_template("pii_detection", customer)
    off = policy_from_template("custom_rules", customer, enabled=False)
    store = InMemoryPolicyStore([on, off])
    assert [p.id for p in await store.list_enabled(customer)] == [on.id]


@pytest.mark.asyncio
async def test_create_get_update() -> None:
    store = InMemoryPolicyStore()
    policy = await store.create(policy_from_template("pii_detection", uuid4()))
    assert await store.get(policy.id) == policy

    renamed = policy.model_copy(update={"name": "Renamed"})
    await store.update(renamed)
    fetched = await store.get(policy.id)
    assert fetched is not None
    assert fetched.name == "Renamed"


@pytest.mark.asyncio
async def test_create_duplicate() -> None:
    policy = policy_from_template("pii_detection", uuid4())
    store = InMemoryPolicyStore([policy])
    with pytest.raises(StoreError):
        await store.create(policy)


@pytest.mark.asyncio
async def test_update_missing() -> None:
    store = InMemoryPolicyStore()
    with pytest.raises(PolicyNotFoundError):
        await store.update(policy_from_template("pii_detection", uuid4()))
    assert await store.get(uuid4()) is None


# ── Audit ─────────────────────────────────────────────────────────


def _entry(customer_id, agent_id: str, decision: Decision, minutes: int) -> AuditLogEntry:
    return AuditLogEntry(
        customer_id=customer_id,
        agent_id=agent_id,
        input_hash="0" * 64,
        decision=decision,
        latency_ms=1.0,
        timestamp=_T0 + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_audit_filters_and_pagination() -> None:
    customer = uuid4()
    store = InMemoryAuditStore()
    await store.append(_entry(customer, "a", Decision.ALLOWED, 0))
    await store.append(_entry(customer, "a", Decision.DENIED, 1))
    await store.append(_entry(customer, "b", Decision.WARN, 2))
    await store.append(_entry(uuid4(), "a", Decision.DENIED, 3))

    entries, total = await store.list(customer_id=customer)
    assert total == 3
    assert [e.agent_id for e in entries] == ["b", "a", "a"]

    entries, total = await store.list(customer_id=customer, agent_id="a")
    assert total == 2
    assert entries[0].decision == Decision.DENIED

    entries, total = await store.list(customer_id=customer, decision=Decision.WARN)
    assert total == 1

    entries, total = await store.list(customer_id=customer, limit=1, offset=1)
    assert total == 3
    assert len(entries) == 1
    assert entries[0].decision == Decision.DENIED
