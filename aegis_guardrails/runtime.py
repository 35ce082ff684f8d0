"""Engine wiring for the API process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import HTTPException, status

from aegis_guardrails.config import Settings, settings
from aegis_guardrails.db import get_pg_pool
from aegis_guardrails.engine.audit import AuditEmitter
from aegis_guardrails.engine.cache import PolicyCache
from aegis_guardrails.engine.classifier import (
    ContentClassifier,
    HttpContentClassifier,
    KeywordContentClassifier,
)
from aegis_guardrails.engine.orchestrator import GuardrailsOrchestrator
from aegis_guardrails.engine.store import (
    AuditStore,
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyStore,
    PostgresAuditStore,
    PostgresPolicyStore,
)

logger = logging.getLogger(__name__)


@dataclass
class GuardrailsEngine:
    """Everything a request handler needs, built once per process."""

    policy_store: PolicyStore
    audit_store: AuditStore
    classifier: ContentClassifier
    cache: PolicyCache
    emitter: AuditEmitter
    orchestrator: GuardrailsOrchestrator
    backend: str = "memory"

    async def close(self, flush_timeout: float = 5.0) -> None:
        await self.emitter.stop(flush_timeout)
        await self.classifier.close()


def build_classifier(config: Settings = settings) -> ContentClassifier:
    if config.classifier_url:
        return HttpContentClassifier(
            base_url=config.classifier_url,
            api_key=config.classifier_api_key,
            timeout=config.classifier_timeout,
            model=config.classifier_model,
        )
    return KeywordContentClassifier()


def build_engine(
    policy_store: PolicyStore,
    audit_store: AuditStore,
    *,
    classifier: ContentClassifier | None = None,
    config: Settings = settings,
    backend: str = "memory",
) -> GuardrailsEngine:
    """Assemble an engine around the given stores. Does not start the emitter."""
    classifier = classifier or build_classifier(config)
    cache = PolicyCache(
        policy_store,
        classifier=classifier,
        fallback=config.unavailable_verdict,
    )
    emitter = AuditEmitter(
        audit_store,
        max_queue=config.audit_queue_size,
        max_attempts=config.audit_max_attempts,
        base_delay=config.audit_retry_base_delay,
        max_delay=config.audit_retry_max_delay,
    )
    orchestrator = GuardrailsOrchestrator(
        cache,
        emitter,
        input_hash_salt=config.input_hash_salt,
        max_input_length=config.max_input_length,
        check_timeout=config.check_timeout,
        evaluation_timeout=config.evaluation_timeout,
    )
    return GuardrailsEngine(
        policy_store=policy_store,
        audit_store=audit_store,
        classifier=classifier,
        cache=cache,
        emitter=emitter,
        orchestrator=orchestrator,
        backend=backend,
    )


# ── Process-wide engine ──────────────────────────────────────────

_engine: GuardrailsEngine | None = None


async def init_engine() -> GuardrailsEngine:
    """Build the engine on the best available stores. Called on app startup."""
    global _engine  # noqa: PLW0603

    pool = get_pg_pool()
    if pool is not None:
        engine = build_engine(
            PostgresPolicyStore(pool), PostgresAuditStore(pool), backend="postgres"
        )
    else:
        engine = build_engine(InMemoryPolicyStore(), InMemoryAuditStore())
    engine.emitter.start()
    _engine = engine
    logger.info("Guardrails engine ready (backend=%s)", engine.backend)
    return engine


async def close_engine() -> None:
    """Flush the audit queue and release collaborators. Called on shutdown."""
    global _engine  # noqa: PLW0603

    if _engine is not None:
        await _engine.close(settings.audit_flush_timeout)
        _engine = None


def get_engine() -> GuardrailsEngine | None:
    return _engine


def require_engine() -> GuardrailsEngine:
    """FastAPI dependency: the running engine, or 503."""
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Guardrails engine is not initialized",
        )
    return _engine
