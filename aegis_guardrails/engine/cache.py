"""Versioned cache of compiled checks, one immutable snapshot per customer.

Readers take the current snapshot with a single attribute read and never
lock. Writers rebuild a customer's snapshot off to the side (reusing every
compiled check whose source hash is unchanged) and publish it by replacing
the snapshot mapping wholesale. Evaluations already holding a resolved
check list keep using it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING

from aegis_guardrails.engine.compiler import (
    CompiledCheck,
    PolicyConfigError,
    compile_policy,
    source_hash,
)
from aegis_guardrails.models.core import POLICY_TYPE_PRIORITY, CheckVerdict, Policy

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID

    from aegis_guardrails.engine.classifier import ContentClassifier
    from aegis_guardrails.engine.store import PolicyStore

logger = logging.getLogger(__name__)


def resolution_key(policy: Policy) -> tuple[int, datetime, str]:
    """Deterministic order: policy type priority, creation time, then id."""
    return (POLICY_TYPE_PRIORITY[policy.policy_type], policy.created_at, str(policy.id))


@dataclass(frozen=True)
class CachedPolicy:
    policy: Policy
    check: CompiledCheck


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of a customer's enabled, compiled policies."""

    customer_id: UUID
    version: int
    entries: tuple[CachedPolicy, ...] = ()
    rejected: Mapping[UUID, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def resolve(self, agent_id: str) -> list[CompiledCheck]:
        """Checks applying to ``agent_id``, in resolution order."""
        return [e.check for e in self.entries if e.policy.applies_to(agent_id)]


class PolicyCache:
    """Lazily loaded, snapshot-isolated store of compiled checks."""

    def __init__(
        self,
        store: PolicyStore,
        *,
        classifier: ContentClassifier | None = None,
        fallback: CheckVerdict = CheckVerdict.WARN,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._fallback = fallback
        self._snapshots: Mapping[UUID, PolicySnapshot] = MappingProxyType({})
        self._write_lock = asyncio.Lock()

    async def resolve(self, customer_id: UUID, agent_id: str) -> list[CompiledCheck]:
        """Ordered compiled checks for an agent (agent-scoped plus global)."""
        snapshot = self._snapshots.get(customer_id)
        if snapshot is None:
            snapshot = await self._load(customer_id)
        return snapshot.resolve(agent_id)

    def snapshot(self, customer_id: UUID) -> PolicySnapshot | None:
        """The currently published snapshot, if loaded."""
        return self._snapshots.get(customer_id)

    async def refresh(self, customer_id: UUID) -> PolicySnapshot:
        """Reload a customer's policies from the store and publish them."""
        async with self._write_lock:
            return await self._rebuild(customer_id)

    async def invalidate(self, policy_id: UUID) -> None:
        """Recompile after a policy was created, updated or disabled."""
        async with self._write_lock:
            policy = await self._store.get(policy_id)
            customer_id = policy.customer_id if policy else self._owner_of(policy_id)
            if customer_id is None or customer_id not in self._snapshots:
                # Not loaded yet; the next resolve reads fresh state.
                return
            await self._rebuild(customer_id)

    def clear(self) -> None:
        self._snapshots = MappingProxyType({})

    async def _load(self, customer_id: UUID) -> PolicySnapshot:
        async with self._write_lock:
            snapshot = self._snapshots.get(customer_id)
            if snapshot is not None:
                return snapshot
            return await self._rebuild(customer_id)

    async def _rebuild(self, customer_id: UUID) -> PolicySnapshot:
        policies = await self._store.list_enabled(customer_id)
        previous = self._snapshots.get(customer_id)
        snapshot = self._build(customer_id, policies, previous)

        snapshots = dict(self._snapshots)
        snapshots[customer_id] = snapshot
        self._snapshots = MappingProxyType(snapshots)

        logger.info(
            "Policy snapshot v%d published for customer %s: %d checks, %d rejected",
            snapshot.version,
            customer_id,
            len(snapshot.entries),
            len(snapshot.rejected),
        )
        return snapshot

    def _build(
        self,
        customer_id: UUID,
        policies: Iterable[Policy],
        previous: PolicySnapshot | None,
    ) -> PolicySnapshot:
        reusable = {e.policy.id: e.check for e in previous.entries} if previous else {}
        entries: list[CachedPolicy] = []
        rejected: dict[UUID, tuple[str, ...]] = {}

        for policy in sorted(policies, key=resolution_key):
            if not policy.enabled or policy.customer_id != customer_id:
                continue
            check = reusable.get(policy.id)
            if check is None or check.source_hash != source_hash(policy):
                try:
                    check = compile_policy(
                        policy, classifier=self._classifier, fallback=self._fallback
                    )
                except PolicyConfigError as exc:
                    logger.warning(
                        "Skipping policy %s (%s): %s", policy.id, policy.name, exc
                    )
                    rejected[policy.id] = tuple(exc.problems)
                    continue
            entries.append(CachedPolicy(policy=policy, check=check))

        return PolicySnapshot(
            customer_id=customer_id,
            version=previous.version + 1 if previous else 1,
            entries=tuple(entries),
            rejected=MappingProxyType(rejected),
        )

    def _owner_of(self, policy_id: UUID) -> UUID | None:
        for customer_id, snapshot in self._snapshots.items():
            if policy_id in snapshot.rejected:
                return customer_id
            if any(e.policy.id == policy_id for e in snapshot.entries):
                return customer_id
        return None
