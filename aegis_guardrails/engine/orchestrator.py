"""Evaluation orchestrator: resolves, runs and aggregates checks per request."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from aegis_guardrails.engine.audit import hash_input
from aegis_guardrails.models.core import (
    AuditLogEntry,
    CheckResult,
    Decision,
    EvaluationVerdict,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from aegis_guardrails.engine.audit import AuditEmitter
    from aegis_guardrails.engine.cache import PolicyCache
    from aegis_guardrails.engine.compiler import CompiledCheck
    from aegis_guardrails.models.core import EvaluationRequest

logger = logging.getLogger(__name__)

NO_ISSUES = "No issues detected."


class InvalidInputError(ValueError):
    """The request input is empty or too long to evaluate."""


def aggregate(results: Sequence[CheckResult]) -> tuple[Decision, str, UUID | None]:
    """Combine per-check results given in resolution order.

    DENY beats WARN beats NONE. The reason and deciding policy come from the
    first result, in resolution order, carrying the winning verdict.
    """
    winner: CheckResult | None = None
    for result in results:
        if not result.triggered:
            continue
        if winner is None or result.verdict.rank > winner.verdict.rank:
            winner = result

    if winner is None:
        return Decision.ALLOWED, NO_ISSUES, None
    return Decision.from_verdict(winner.verdict), winner.reason, winner.policy_id


class GuardrailsOrchestrator:
    """Evaluates agent input against every applicable compiled check."""

    def __init__(
        self,
        cache: PolicyCache,
        emitter: AuditEmitter,
        *,
        input_hash_salt: str,
        max_input_length: int = 10_000,
        check_timeout: float = 0.5,
        evaluation_timeout: float = 2.0,
    ) -> None:
        self._cache = cache
        self._emitter = emitter
        self._salt = input_hash_salt
        self._max_input_length = max_input_length
        self._check_timeout = check_timeout
        self._evaluation_timeout = evaluation_timeout

    async def evaluate(
        self,
        request: EvaluationRequest,
        *,
        customer_id: UUID,
    ) -> EvaluationVerdict:
        """Evaluate one request and record it in the audit trail.

        Raises:
            InvalidInputError: If the input is empty or longer than the
                configured maximum. No policy work is done in that case.
        """
        self._validate(request)
        started = time.perf_counter()

        checks = await self._cache.resolve(customer_id, request.agent_id)
        results = await self._run_checks(checks, request)
        decision, reason, policy_id = aggregate(results)
        latency_ms = round((time.perf_counter() - started) * 1000, 3)

        verdict = EvaluationVerdict(
            decision=decision,
            reason=reason,
            checks_run=[c.label for c in checks],
            latency_ms=latency_ms,
            policy_id=policy_id,
            results=results,
        )
        self._emitter.record(
            AuditLogEntry(
                customer_id=customer_id,
                agent_id=request.agent_id,
                policy_id=policy_id,
                input_hash=hash_input(request.input_text, self._salt),
                decision=decision,
                latency_ms=latency_ms,
            )
        )
        if decision != Decision.ALLOWED:
            logger.info(
                "Agent %s input %s by policy %s (%.1f ms)",
                request.agent_id,
                decision,
                policy_id,
                latency_ms,
            )
        return verdict

    def _validate(self, request: EvaluationRequest) -> None:
        if not request.input_text.strip():
            raise InvalidInputError("input_text must not be empty")
        if len(request.input_text) > self._max_input_length:
            raise InvalidInputError(
                f"input_text exceeds maximum length of {self._max_input_length} characters"
            )

    async def _run_checks(
        self,
        checks: Sequence[CompiledCheck],
        request: EvaluationRequest,
    ) -> list[CheckResult]:
        if not checks:
            return []

        loop = asyncio.get_running_loop()
        overall_deadline = loop.time() + self._evaluation_timeout
        check_deadline = min(overall_deadline, loop.time() + self._check_timeout)

        tasks = [
            asyncio.create_task(
                check.evaluate(request.input_text, request.context, check_deadline)
            )
            for check in checks
        ]
        _, pending = await asyncio.wait(
            tasks, timeout=max(0.0, overall_deadline - loop.time())
        )
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                "Evaluation deadline exceeded with %d of %d checks outstanding",
                len(pending),
                len(tasks),
            )

        results: list[CheckResult] = []
        for check, task in zip(checks, tasks, strict=True):
            if task in pending or task.cancelled() or task.exception() is not None:
                results.append(check.unavailable())
            else:
                results.append(task.result())
        return results

