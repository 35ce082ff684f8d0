"""Core domain types for the guardrails evaluation engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ──────────────────────────────────────────────────────────


class PolicyType(StrEnum):
    PII = "pii"
    CONTENT_SAFETY = "content_safety"
    PROMPT_INJECTION = "prompt_injection"
    CUSTOM = "custom"


# Fixed resolution priority; lower runs (and wins ties) first.
POLICY_TYPE_PRIORITY: dict[PolicyType, int] = {
    PolicyType.PII: 0,
    PolicyType.PROMPT_INJECTION: 1,
    PolicyType.CONTENT_SAFETY: 2,
    PolicyType.CUSTOM: 3,
}


class CheckVerdict(StrEnum):
    """Outcome of a single check."""

    NONE = "NONE"
    WARN = "WARN"
    DENY = "DENY"

    @property
    def rank(self) -> int:
        return _VERDICT_RANK[self]


_VERDICT_RANK: dict[CheckVerdict, int] = {
    CheckVerdict.NONE: 0,
    CheckVerdict.WARN: 1,
    CheckVerdict.DENY: 2,
}


class Decision(StrEnum):
    """Aggregated decision returned to the caller."""

    ALLOWED = "ALLOWED"
    WARN = "WARN"
    DENIED = "DENIED"

    @classmethod
    def from_verdict(cls, verdict: CheckVerdict) -> Decision:
        if verdict == CheckVerdict.DENY:
            return cls.DENIED
        if verdict == CheckVerdict.WARN:
            return cls.WARN
        return cls.ALLOWED


# ── Policy ─────────────────────────────────────────────────────────


class Policy(BaseModel):
    """A stored, customer-authored guardrail policy."""

    id: UUID = Field(default_factory=uuid4)
    customer_id: UUID
    agent_id: str | None = None
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    policy_type: PolicyType
    rule_json: dict[str, Any] | None = None
    enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def applies_to(self, agent_id: str) -> bool:
        """Global policies (no agent scope) apply to every agent."""
        return self.agent_id is None or self.agent_id == agent_id


class PolicyCreate(BaseModel):
    """Request body for creating a policy."""

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    agent_id: str | None = None
    policy_type: PolicyType
    rule_json: dict[str, Any] | None = None
    enabled: bool = True


class PolicyUpdate(BaseModel):
    """Request body for updating a policy; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    agent_id: str | None = None
    rule_json: dict[str, Any] | None = None
    enabled: bool | None = None


# ── Evaluation ────────────────────────────────────────────────────


class EvaluationRequest(BaseModel):
    """A single request to evaluate agent input."""

    agent_id: str
    input_text: str
    context: dict[str, Any] = Field(default_factory=dict)


class CheckResult(BaseModel):
    """Outcome of one compiled check."""

    model_config = ConfigDict(frozen=True)

    policy_id: UUID
    label: str
    verdict: CheckVerdict = CheckVerdict.NONE
    reason: str = ""
    unavailable: bool = False

    @property
    def triggered(self) -> bool:
        return self.verdict != CheckVerdict.NONE


class EvaluationVerdict(BaseModel):
    """Aggregated result of evaluating one request."""

    decision: Decision
    reason: str
    checks_run: list[str] = []
    latency_ms: float = 0.0
    policy_id: UUID | None = None
    results: list[CheckResult] = []


class EvaluateResponse(BaseModel):
    """Wire shape of the evaluate endpoint."""

    decision: Decision
    reason: str
    checks_run: list[str]
    latency_ms: float | None = None


# ── Audit ─────────────────────────────────────────────────────────


class AuditLogEntry(BaseModel):
    """Append-only record of one evaluation. Never holds the raw input."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    customer_id: UUID | None = None
    agent_id: str
    policy_id: UUID | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    input_hash: str
    decision: Decision
    latency_ms: float
