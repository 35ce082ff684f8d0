"""Policy and audit persistence: abstract interfaces + implementations.

The engine needs only three operations: list enabled policies for a
customer, get a policy by id, and append an audit entry. The remaining
methods back the policy management and audit read endpoints.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from aegis_guardrails.models.core import AuditLogEntry, Decision, Policy

if TYPE_CHECKING:
    from uuid import UUID

    import asyncpg


class StoreError(Exception):
    """Base class for store errors."""


class PolicyNotFoundError(StoreError):
    """Policy not found."""


class PolicyStore(ABC):
    """Abstract interface for policy persistence backends."""

    @abstractmethod
    async def list_enabled(self, customer_id: UUID) -> list[Policy]:
        """All enabled policies of a customer, agent-scoped and global."""

    @abstractmethod
    async def get(self, policy_id: UUID) -> Policy | None:
        """Fetch a policy by id, or None."""

    @abstractmethod
    async def list(self, customer_id: UUID) -> list[Policy]:
        """All policies of a customer, oldest first."""

    @abstractmethod
    async def create(self, policy: Policy) -> Policy:
        """Store a new policy."""

    @abstractmethod
    async def update(self, policy: Policy) -> Policy:
        """Replace an existing policy."""


class AuditStore(ABC):
    """Abstract interface for the append-only audit trail."""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        """Append one entry."""

    @abstractmethod
    async def list(
        self,
        customer_id: UUID | None = None,
        agent_id: str | None = None,
        decision: Decision | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        """Matching entries newest first, and the total match count."""


# ── In-memory ────────────────────────────────────────────────────


class InMemoryPolicyStore(PolicyStore):
    def __init__(self, policies: list[Policy] | None = None) -> None:
        self._policies: dict[UUID, Policy] = {p.id: p for p in policies or []}

    async def list_enabled(self, customer_id: UUID) -> list[Policy]:
        return [p for p in await self.list(customer_id) if p.enabled]

    async def get(self, policy_id: UUID) -> Policy | None:
        return self._policies.get(policy_id)

    async def list(self, customer_id: UUID) -> list[Policy]:
        found = [p for p in self._policies.values() if p.customer_id == customer_id]
        found.sort(key=lambda p: (p.created_at, str(p.id)))
        return found

    async def create(self, policy: Policy) -> Policy:
        if policy.id in self._policies:
            raise StoreError(f"Policy {policy.id} already exists")
        self._policies[policy.id] = policy
        return policy

    async def update(self, policy: Policy) -> Policy:
        if policy.id not in self._policies:
            raise PolicyNotFoundError(f"Policy {policy.id} not found")
        self._policies[policy.id] = policy
        return policy


class InMemoryAuditStore(AuditStore):
    def __init__(self) -> None:
        self._entries: list[AuditLogEntry] = []

    @property
    def entries(self) -> list[AuditLogEntry]:
        return list(self._entries)

    async def append(self, entry: AuditLogEntry) -> None:
        self._entries.append(entry)

    async def list(
        self,
        customer_id: UUID | None = None,
        agent_id: str | None = None,
        decision: Decision | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        matches = [
            e
            for e in reversed(self._entries)
            if (customer_id is None or e.customer_id == customer_id)
            and (agent_id is None or e.agent_id == agent_id)
            and (decision is None or e.decision == decision)
        ]
        return matches[offset : offset + limit], len(matches)


# ── PostgreSQL ───────────────────────────────────────────────────

_POLICY_COLUMNS = (
    "id, customer_id, name, description, agent_id, policy_type, "
    "rule_json, enabled, created_at"
)


def _policy_from_row(row: Any) -> Policy:
    data = dict(row)
    if isinstance(data.get("rule_json"), str):
        data["rule_json"] = json.loads(data["rule_json"])
    return Policy.model_validate(data)


def _rule_param(policy: Policy) -> str | None:
    return json.dumps(policy.rule_json) if policy.rule_json is not None else None


class PostgresPolicyStore(PolicyStore):
    """Policy store backed by the ``policies`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def list_enabled(self, customer_id: UUID) -> list[Policy]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_POLICY_COLUMNS} FROM policies "
                "WHERE customer_id = $1 AND enabled = TRUE "
                "ORDER BY created_at, id",
                customer_id,
            )
        return [_policy_from_row(r) for r in rows]

    async def get(self, policy_id: UUID) -> Policy | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_POLICY_COLUMNS} FROM policies WHERE id = $1",
                policy_id,
            )
        return _policy_from_row(row) if row is not None else None

    async def list(self, customer_id: UUID) -> list[Policy]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_POLICY_COLUMNS} FROM policies "
                "WHERE customer_id = $1 ORDER BY created_at, id",
                customer_id,
            )
        return [_policy_from_row(r) for r in rows]

    async def create(self, policy: Policy) -> Policy:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"INSERT INTO policies ({_POLICY_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9) "
                f"RETURNING {_POLICY_COLUMNS}",
                policy.id,
                policy.customer_id,
                policy.name,
                policy.description,
                policy.agent_id,
                str(policy.policy_type),
                _rule_param(policy),
                policy.enabled,
                policy.created_at,
            )
        return _policy_from_row(row)

    async def update(self, policy: Policy) -> Policy:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "UPDATE policies SET name = $2, description = $3, agent_id = $4, "
                "rule_json = $5::jsonb, enabled = $6 "
                f"WHERE id = $1 RETURNING {_POLICY_COLUMNS}",
                policy.id,
                policy.name,
                policy.description,
                policy.agent_id,
                _rule_param(policy),
                policy.enabled,
            )
        if row is None:
            raise PolicyNotFoundError(f"Policy {policy.id} not found")
        return _policy_from_row(row)


class PostgresAuditStore(AuditStore):
    """Audit store backed by the ``audit_logs`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def append(self, entry: AuditLogEntry) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO audit_logs "
                "(id, customer_id, agent_id, policy_id, timestamp, input_hash, "
                "decision, latency_ms) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                entry.id,
                entry.customer_id,
                entry.agent_id,
                entry.policy_id,
                entry.timestamp,
                entry.input_hash,
                str(entry.decision),
                entry.latency_ms,
            )

    async def list(
        self,
        customer_id: UUID | None = None,
        agent_id: str | None = None,
        decision: Decision | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        where_clauses: list[str] = []
        params: list[Any] = []

        if customer_id is not None:
            params.append(customer_id)
            where_clauses.append(f"customer_id = ${len(params)}")
        if agent_id is not None:
            params.append(agent_id)
            where_clauses.append(f"agent_id = ${len(params)}")
        if decision is not None:
            params.append(str(decision))
            where_clauses.append(f"decision = ${len(params)}")

        where = f"WHERE {' AND '.join(where_clauses)} " if where_clauses else ""
        page = f"LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id, customer_id, agent_id, policy_id, timestamp, input_hash, "
                f"decision, latency_ms FROM audit_logs {where}"
                f"ORDER BY timestamp DESC {page}",
                *params,
                limit,
                offset,
            )
            total = await conn.fetchval(
                f"SELECT count(*) FROM audit_logs {where}", *params
            )

        return [AuditLogEntry.model_validate(dict(r)) for r in rows], total or 0
