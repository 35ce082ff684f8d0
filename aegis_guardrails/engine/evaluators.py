"""Check implementations produced by the rule compiler.

Every evaluator exposes ``evaluate(text, context, deadline)`` where
``deadline`` is an absolute time on the running event loop's clock
(``loop.time()``). Evaluators hold only immutable, pre-compiled
configuration and never raise: timeouts, classifier failures and
unexpected errors all surface as an unavailable ``CheckResult``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NamedTuple

from aegis_guardrails.engine.classifier import ClassifierError, validate_scores
from aegis_guardrails.models.core import CheckResult, CheckVerdict

if TYPE_CHECKING:
    from uuid import UUID

    from aegis_guardrails.engine.classifier import ContentClassifier
    from aegis_guardrails.models.rules import SafetyCategory

logger = logging.getLogger(__name__)

UNAVAILABLE_REASON = "check unavailable"


@dataclass(frozen=True, kw_only=True)
class Evaluator(ABC):
    """Base class for all checks: deadline handling and result stamping."""

    policy_id: UUID
    label: str
    fallback: CheckVerdict = CheckVerdict.WARN

    async def evaluate(
        self,
        text: str,
        context: dict[str, Any],
        deadline: float,
    ) -> CheckResult:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return self.unavailable()

        try:
            verdict, reason = await asyncio.wait_for(
                self._check(text, context), timeout=remaining
            )
        except asyncio.TimeoutError:
            logger.warning("Check %s (%s) timed out", self.label, self.policy_id)
            return self.unavailable()
        except ClassifierError as exc:
            logger.warning(
                "Check %s (%s) classifier failed: %s", self.label, self.policy_id, exc
            )
            return self.unavailable()
        except Exception:
            logger.exception("Check %s (%s) failed", self.label, self.policy_id)
            return self.unavailable()

        return CheckResult(
            policy_id=self.policy_id,
            label=self.label,
            verdict=verdict,
            reason=reason,
        )

    def unavailable(self) -> CheckResult:
        """Result reported when this check could not run to completion."""
        return CheckResult(
            policy_id=self.policy_id,
            label=self.label,
            verdict=self.fallback,
            reason=UNAVAILABLE_REASON,
            unavailable=True,
        )

    @abstractmethod
    async def _check(
        self, text: str, context: dict[str, Any]
    ) -> tuple[CheckVerdict, str]:
        """Return the verdict and reason for ``text``."""


# ── PII ────────────────────────────────────────────────────────────


class CompiledPattern(NamedTuple):
    type: str
    regex: re.Pattern[str]
    severity: str


@dataclass(frozen=True, kw_only=True)
class PiiEvaluator(Evaluator):
    """First matching pattern, in declared order, applies the policy action."""

    action: CheckVerdict
    patterns: tuple[CompiledPattern, ...]

    async def _check(
        self, text: str, context: dict[str, Any]
    ) -> tuple[CheckVerdict, str]:
        for pattern in self.patterns:
            if pattern.regex.search(text):
                return self.action, (
                    f"PII detected: {pattern.type} pattern matched "
                    f"(severity: {pattern.severity})"
                )
        return CheckVerdict.NONE, ""


# ── Content safety ─────────────────────────────────────────────────


@dataclass(frozen=True, kw_only=True)
class ContentSafetyEvaluator(Evaluator):
    """Compares classifier scores against per-category thresholds."""

    classifier: ContentClassifier
    categories: tuple[SafetyCategory, ...]

    async def _check(
        self, text: str, context: dict[str, Any]
    ) -> tuple[CheckVerdict, str]:
        names = [c.name for c in self.categories]
        scores = validate_scores(await self.classifier.classify(text, names), names)

        best: tuple[CheckVerdict, str] = (CheckVerdict.NONE, "")
        for category in self.categories:
            score = scores[category.name]
            if score < category.threshold:
                continue
            verdict = category.action.verdict
            if verdict.rank > best[0].rank:
                best = (
                    verdict,
                    f"Content safety violation: {category.name} scored "
                    f"{score:.2f} (threshold {category.threshold:.2f})",
                )
        return best


# ── Prompt injection ───────────────────────────────────────────────


@dataclass(frozen=True, kw_only=True)
class PromptInjectionEvaluator(Evaluator):
    """Case-insensitive keyword containment or any pattern match."""

    action: CheckVerdict
    keywords: tuple[str, ...]
    patterns: tuple[re.Pattern[str], ...]

    async def _check(
        self, text: str, context: dict[str, Any]
    ) -> tuple[CheckVerdict, str]:
        lowered = text.lower()
        for keyword in self.keywords:
            if keyword in lowered:
                return self.action, (
                    f"Potential prompt injection detected: keyword '{keyword}'"
                )
        for index, pattern in enumerate(self.patterns, start=1):
            if pattern.search(text):
                return self.action, (
                    f"Potential prompt injection detected: pattern {index} matched"
                )
        return CheckVerdict.NONE, ""


# ── Custom ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Condition(ABC):
    name: str
    action: CheckVerdict

    @abstractmethod
    def match(self, text: str, context: dict[str, Any]) -> str | None:
        """Describe why the condition triggered, or None."""


@dataclass(frozen=True)
class KeywordCondition(Condition):
    keywords: tuple[str, ...]

    def match(self, text: str, context: dict[str, Any]) -> str | None:
        lowered = text.lower()
        for keyword in self.keywords:
            if keyword in lowered:
                return f"keyword '{keyword}'"
        return None


@dataclass(frozen=True)
class PatternCondition(Condition):
    regex: re.Pattern[str]

    def match(self, text: str, context: dict[str, Any]) -> str | None:
        if self.regex.search(text):
            return "pattern matched"
        return None


@dataclass(frozen=True)
class LengthCondition(Condition):
    limit: int

    def match(self, text: str, context: dict[str, Any]) -> str | None:
        if len(text) > self.limit:
            return f"input longer than {self.limit} characters"
        return None


@dataclass(frozen=True)
class ContextCondition(Condition):
    key: str
    value: Any

    def match(self, text: str, context: dict[str, Any]) -> str | None:
        if self.key in context and context[self.key] == self.value:
            return f"context '{self.key}' is {self.value!r}"
        return None


@dataclass(frozen=True, kw_only=True)
class CustomEvaluator(Evaluator):
    """Highest-precedence verdict across an ordered condition list.

    The reason names the first condition that produced that verdict.
    """

    policy_name: str
    conditions: tuple[Condition, ...]

    async def _check(
        self, text: str, context: dict[str, Any]
    ) -> tuple[CheckVerdict, str]:
        best: tuple[CheckVerdict, str] = (CheckVerdict.NONE, "")
        for condition in self.conditions:
            if condition.action.rank <= best[0].rank:
                continue
            detail = condition.match(text, context)
            if detail is not None:
                best = (
                    condition.action,
                    f"Custom policy '{self.policy_name}' triggered by rule "
                    f"'{condition.name}': {detail}",
                )
        return best
