"""Typed rule configurations, one schema per policy type.

A policy's ``rule_json`` is validated against the schema selected by its
``policy_type`` exactly once, at compile time. Evaluators only ever see the
validated models defined here.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from aegis_guardrails.models.core import CheckVerdict, PolicyType

_CATEGORY_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


class RuleAction(StrEnum):
    """Verdict a rule produces when it triggers."""

    WARN = "WARN"
    DENY = "DENY"

    @property
    def verdict(self) -> CheckVerdict:
        return CheckVerdict(self.value)


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _RuleModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    @field_validator("action", "on_unavailable", mode="before", check_fields=False)
    @classmethod
    def _uppercase_verdicts(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class _PolicyRules(_RuleModel):
    on_unavailable: CheckVerdict | None = None


# ── PII ────────────────────────────────────────────────────────────


class PiiPattern(_RuleModel):
    type: str = Field(min_length=1)
    pattern: str = Field(min_length=1)
    severity: Severity = Severity.MEDIUM
    kind: Literal["regex", "literal"] = "regex"

    @field_validator("severity", mode="before")
    @classmethod
    def _lowercase_severity(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class PiiRules(_PolicyRules):
    patterns: list[PiiPattern] = Field(min_length=1)
    action: RuleAction = RuleAction.DENY


# ── Content safety ─────────────────────────────────────────────────


class SafetyCategory(_RuleModel):
    name: str
    threshold: float = Field(ge=0.0, le=1.0)
    action: RuleAction

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _CATEGORY_NAME.match(value):
            raise ValueError(
                f"invalid category name '{value}'; "
                "use lowercase letters, digits and underscores"
            )
        return value


class ContentSafetyRules(_PolicyRules):
    categories: list[SafetyCategory] = Field(min_length=1)
    model: str | None = None

    @model_validator(mode="after")
    def _unique_categories(self) -> ContentSafetyRules:
        names = [c.name for c in self.categories]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate categories: {', '.join(duplicates)}")
        return self


# ── Prompt injection ───────────────────────────────────────────────


class PromptInjectionRules(_PolicyRules):
    keywords: list[Annotated[str, Field(min_length=1)]] = []
    patterns: list[Annotated[str, Field(min_length=1)]] = []
    action: RuleAction = RuleAction.WARN

    @model_validator(mode="after")
    def _require_matchers(self) -> PromptInjectionRules:
        if not self.keywords and not self.patterns:
            raise ValueError("at least one keyword or pattern is required")
        return self


# ── Custom ─────────────────────────────────────────────────────────


class _Condition(_RuleModel):
    id: str | None = None
    name: str | None = None
    action: RuleAction


class ContainsKeyword(_Condition):
    condition: Literal["contains_keyword"]
    keywords: list[Annotated[str, Field(min_length=1)]] = Field(min_length=1)


class RegexMatch(_Condition):
    condition: Literal["regex_match"]
    pattern: str = Field(min_length=1)


class MaxLength(_Condition):
    condition: Literal["max_length"]
    limit: int = Field(gt=0)


class ContextEquals(_Condition):
    condition: Literal["context_equals"]
    key: str = Field(min_length=1)
    value: Any = None


CustomCondition = Annotated[
    ContainsKeyword | RegexMatch | MaxLength | ContextEquals,
    Field(discriminator="condition"),
]


class CustomRules(_PolicyRules):
    rules: list[CustomCondition] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _legacy_deny_keywords(cls, data: Any) -> Any:
        # Early custom policies stored a bare "deny_keywords" list.
        if isinstance(data, dict) and "deny_keywords" in data and "rules" not in data:
            data = dict(data)
            keywords = data.pop("deny_keywords")
            data["rules"] = [
                {
                    "id": "deny_keywords",
                    "condition": "contains_keyword",
                    "keywords": keywords,
                    "action": "DENY",
                }
            ]
        return data


RuleConfig = PiiRules | ContentSafetyRules | PromptInjectionRules | CustomRules

RULE_SCHEMAS: dict[PolicyType, type[_PolicyRules]] = {
    PolicyType.PII: PiiRules,
    PolicyType.CONTENT_SAFETY: ContentSafetyRules,
    PolicyType.PROMPT_INJECTION: PromptInjectionRules,
    PolicyType.CUSTOM: CustomRules,
}


def condition_label(condition: ContainsKeyword | RegexMatch | MaxLength | ContextEquals) -> str:
    """Human-facing name for a custom condition."""
    return condition.name or condition.id or condition.condition
