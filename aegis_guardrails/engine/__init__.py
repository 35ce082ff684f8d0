"""Guardrails policy evaluation engine."""

from aegis_guardrails.engine.audit import AuditEmitter, hash_input
from aegis_guardrails.engine.cache import PolicyCache, PolicySnapshot
from aegis_guardrails.engine.classifier import (
    ClassifierError,
    ContentClassifier,
    HttpContentClassifier,
    KeywordContentClassifier,
)
from aegis_guardrails.engine.compiler import (
    CompiledCheck,
    PolicyConfigError,
    compile_policy,
)
from aegis_guardrails.engine.orchestrator import (
    GuardrailsOrchestrator,
    InvalidInputError,
    aggregate,
)
from aegis_guardrails.engine.store import (
    AuditStore,
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyStore,
)

__all__ = [
    "AuditEmitter",
    "AuditStore",
    "ClassifierError",
    "CompiledCheck",
    "ContentClassifier",
    "GuardrailsOrchestrator",
    "HttpContentClassifier",
    "InMemoryAuditStore",
    "InMemoryPolicyStore",
    "InvalidInputError",
    "KeywordContentClassifier",
    "PolicyCache",
    "PolicyConfigError",
    "PolicySnapshot",
    "PolicyStore",
    "aggregate",
    "compile_policy",
    "hash_input",
]
