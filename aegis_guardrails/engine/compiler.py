"""Rule compiler: turns a stored policy into an immutable executable check.

``compile_policy`` is a pure function of the policy's type, name and rule
configuration: the same inputs always yield checks that agree on every
input text. A configuration that fails validation raises
``PolicyConfigError`` and is never scheduled.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from aegis_guardrails.engine.classifier import KeywordContentClassifier
from aegis_guardrails.engine.evaluators import (
    CompiledPattern,
    Condition,
    ContentSafetyEvaluator,
    ContextCondition,
    CustomEvaluator,
    Evaluator,
    KeywordCondition,
    LengthCondition,
    PatternCondition,
    PiiEvaluator,
    PromptInjectionEvaluator,
)
from aegis_guardrails.models.core import CheckVerdict, PolicyType
from aegis_guardrails.models.rules import (
    RULE_SCHEMAS,
    ContainsKeyword,
    ContentSafetyRules,
    ContextEquals,
    CustomRules,
    MaxLength,
    PiiRules,
    PromptInjectionRules,
    RegexMatch,
    RuleConfig,
    condition_label,
)

if TYPE_CHECKING:
    from uuid import UUID

    from aegis_guardrails.engine.classifier import ContentClassifier
    from aegis_guardrails.models.core import CheckResult, Policy

CHECK_LABELS: dict[PolicyType, str] = {
    PolicyType.PII: "PII_Detection",
    PolicyType.CONTENT_SAFETY: "Content_Safety",
    PolicyType.PROMPT_INJECTION: "Prompt_Injection",
}


class PolicyConfigError(Exception):
    """A policy's rule configuration failed validation."""

    def __init__(self, policy_id: UUID, problems: list[str]) -> None:
        self.policy_id = policy_id
        self.problems = problems
        super().__init__(
            f"Invalid configuration for policy {policy_id}: {'; '.join(problems)}"
        )


@dataclass(frozen=True)
class CompiledCheck:
    """Executable form of one policy plus the hash of its source config."""

    policy_id: UUID
    policy_type: PolicyType
    name: str
    label: str
    source_hash: str
    evaluator: Evaluator

    async def evaluate(
        self, text: str, context: dict[str, Any], deadline: float
    ) -> CheckResult:
        return await self.evaluator.evaluate(text, context, deadline)

    def unavailable(self) -> CheckResult:
        return self.evaluator.unavailable()


def check_label(policy_type: PolicyType, name: str) -> str:
    """Label reported in ``checks_run`` for a policy."""
    if policy_type == PolicyType.CUSTOM:
        return f"Custom_{name}"
    return CHECK_LABELS[policy_type]


def source_hash(policy: Policy) -> str:
    """Content hash over everything a compiled check is derived from."""
    source = {
        "policy_type": str(policy.policy_type),
        "name": policy.name,
        "rule_json": policy.rule_json,
    }
    data = json.dumps(source, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(data.encode()).hexdigest()


def compile_policy(
    policy: Policy,
    *,
    classifier: ContentClassifier | None = None,
    fallback: CheckVerdict = CheckVerdict.WARN,
) -> CompiledCheck:
    """Validate and compile a policy.

    Args:
        policy: The stored policy.
        classifier: Scoring collaborator for content-safety checks. Defaults
            to the local keyword classifier.
        fallback: Verdict reported when the check is unavailable, unless the
            rule configuration overrides it with ``on_unavailable``.

    Raises:
        PolicyConfigError: If the configuration does not match the schema
            for the policy type or any pattern fails to compile.
    """
    if policy.rule_json is None:
        raise PolicyConfigError(policy.id, ["rule configuration is missing"])

    schema = RULE_SCHEMAS[policy.policy_type]
    try:
        rules = schema.model_validate(policy.rule_json)
    except ValidationError as exc:
        raise PolicyConfigError(policy.id, _describe(exc)) from exc

    problems: list[str] = []
    builder = _BUILDERS[policy.policy_type]
    evaluator = builder(
        _Context(
            policy=policy,
            fallback=rules.on_unavailable or fallback,
            classifier=classifier,
            problems=problems,
        ),
        rules,
    )
    if problems:
        raise PolicyConfigError(policy.id, problems)

    return CompiledCheck(
        policy_id=policy.id,
        policy_type=policy.policy_type,
        name=policy.name,
        label=evaluator.label,
        source_hash=source_hash(policy),
        evaluator=evaluator,
    )


def validate_policy(policy: Policy) -> list[str]:
    """Problems that would stop ``policy`` from compiling; empty if none."""
    try:
        compile_policy(policy)
    except PolicyConfigError as exc:
        return exc.problems
    return []


# ── Builders ─────────────────────────────────────────────────────


@dataclass
class _Context:
    policy: Policy
    fallback: CheckVerdict
    classifier: ContentClassifier | None
    problems: list[str]

    @property
    def label(self) -> str:
        return check_label(self.policy.policy_type, self.policy.name)

    def regex(self, pattern: str, where: str, flags: int = 0) -> re.Pattern[str]:
        try:
            return re.compile(pattern, flags)
        except re.error as exc:
            self.problems.append(f"{where}: invalid pattern {pattern!r} ({exc})")
            return re.compile(re.escape(pattern))


def _build_pii(ctx: _Context, rules: RuleConfig) -> Evaluator:
    assert isinstance(rules, PiiRules)
    patterns = []
    for index, item in enumerate(rules.patterns):
        if item.kind == "literal":
            regex = re.compile(re.escape(item.pattern), re.IGNORECASE)
        else:
            regex = ctx.regex(item.pattern, f"patterns.{index}")
        patterns.append(CompiledPattern(item.type, regex, str(item.severity)))
    return PiiEvaluator(
        policy_id=ctx.policy.id,
        label=ctx.label,
        fallback=ctx.fallback,
        action=rules.action.verdict,
        patterns=tuple(patterns),
    )


def _build_content_safety(ctx: _Context, rules: RuleConfig) -> Evaluator:
    assert isinstance(rules, ContentSafetyRules)
    return ContentSafetyEvaluator(
        policy_id=ctx.policy.id,
        label=ctx.label,
        fallback=ctx.fallback,
        classifier=ctx.classifier or KeywordContentClassifier(),
        categories=tuple(rules.categories),
    )


def _build_prompt_injection(ctx: _Context, rules: RuleConfig) -> Evaluator:
    assert isinstance(rules, PromptInjectionRules)
    return PromptInjectionEvaluator(
        policy_id=ctx.policy.id,
        label=ctx.label,
        fallback=ctx.fallback,
        action=rules.action.verdict,
        keywords=tuple(k.lower() for k in rules.keywords),
        patterns=tuple(
            ctx.regex(p, f"patterns.{i}") for i, p in enumerate(rules.patterns)
        ),
    )


def _build_custom(ctx: _Context, rules: RuleConfig) -> Evaluator:
    assert isinstance(rules, CustomRules)
    conditions: list[Condition] = []
    for index, rule in enumerate(rules.rules):
        name = condition_label(rule)
        action = rule.action.verdict
        match rule:
            case ContainsKeyword():
                conditions.append(
                    KeywordCondition(name, action, tuple(k.lower() for k in rule.keywords))
                )
            case RegexMatch():
                conditions.append(
                    PatternCondition(name, action, ctx.regex(rule.pattern, f"rules.{index}.pattern"))
                )
            case MaxLength():
                conditions.append(LengthCondition(name, action, rule.limit))
            case ContextEquals():
                conditions.append(ContextCondition(name, action, rule.key, rule.value))
    return CustomEvaluator(
        policy_id=ctx.policy.id,
        label=ctx.label,
        fallback=ctx.fallback,
        policy_name=ctx.policy.name,
        conditions=tuple(conditions),
    )


_BUILDERS: dict[PolicyType, Callable[[_Context, RuleConfig], Evaluator]] = {
    PolicyType.PII: _build_pii,
    PolicyType.CONTENT_SAFETY: _build_content_safety,
    PolicyType.PROMPT_INJECTION: _build_prompt_injection,
    PolicyType.CUSTOM: _build_custom,
}


def _describe(exc: ValidationError) -> list[str]:
    problems = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"])
        problems.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return problems
