"""Built-in policy templates offered to customers when creating policies."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from aegis_guardrails.models.core import Policy, PolicyType

if TYPE_CHECKING:
    from uuid import UUID


class PolicyTemplate(BaseModel):
    key: str
    name: str
    description: str
    policy_type: PolicyType
    rule_json: dict[str, Any]


DEFAULT_TEMPLATES: dict[str, PolicyTemplate] = {
    t.key: t
    for t in (
        PolicyTemplate(
            key="pii_detection",
            name="PII Detection Policy",
            description="Detects personally identifiable information in agent inputs",
            policy_type=PolicyType.PII,
            rule_json={
                "patterns": [
                    {"type": "ssn", "pattern": r"\d{3}-\d{2}-\d{4}", "severity": "high"},
                    {
                        "type": "credit_card",
                        "pattern": r"\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}",
                        "severity": "high",
                    },
                    {
                        "type": "email",
                        "pattern": r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}",
                        "severity": "medium",
                    },
                    {
                        "type": "phone",
                        "pattern": r"\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}",
                        "severity": "medium",
                    },
                ],
                "action": "DENY",
            },
        ),
        PolicyTemplate(
            key="content_safety",
            name="Content Safety Policy",
            description="Detects harmful, violent, or inappropriate content",
            policy_type=PolicyType.CONTENT_SAFETY,
            rule_json={
                "categories": [
                    {"name": "violence", "threshold": 0.7, "action": "DENY"},
                    {"name": "hate_speech", "threshold": 0.8, "action": "DENY"},
                    {"name": "sexual_content", "threshold": 0.6, "action": "WARN"},
                ],
                "model": "openai-moderation",
            },
        ),
        PolicyTemplate(
            key="prompt_injection",
            name="Prompt Injection Detection",
            description=(
                "Detects attempts to manipulate agent behavior through prompt injection"
            ),
            policy_type=PolicyType.PROMPT_INJECTION,
            rule_json={
                "keywords": [
                    "ignore previous",
                    "forget instructions",
                    "system prompt",
                    "jailbreak",
                ],
                "patterns": [
                    r"(?i)(ignore|disregard|forget).{0,20}(previous|prior|earlier|above)"
                    r".{0,20}(instruction|prompt|rule)",
                    r"(?i)(system|admin).{0,20}(prompt|instruction|mode)",
                    r"(?i)(jailbreak|bypass|override).{0,20}(filter|restriction|rule)",
                ],
                "action": "WARN",
            },
        ),
        PolicyTemplate(
            key="custom_rules",
            name="Custom Rules Policy",
            description="Define custom rules for specific use cases",
            policy_type=PolicyType.CUSTOM,
            rule_json={
                "rules": [
                    {
                        "id": "rule_1",
                        "name": "Example Rule",
                        "condition": "contains_keyword",
                        "keywords": ["example"],
                        "action": "WARN",
                    }
                ]
            },
        ),
    )
}


def policy_from_template(
    key: str,
    customer_id: UUID,
    agent_id: str | None = None,
    **overrides: Any,
) -> Policy:
    """Instantiate a policy from a built-in template.

    Raises:
        KeyError: If ``key`` is not a known template.
    """
    template = DEFAULT_TEMPLATES.get(key)
    if template is None:
        available = ", ".join(sorted(DEFAULT_TEMPLATES))
        raise KeyError(f"Unknown template '{key}'. Available: {available}")

    fields: dict[str, Any] = {
        "customer_id": customer_id,
        "agent_id": agent_id,
        "name": template.name,
        "description": template.description,
        "policy_type": template.policy_type,
        "rule_json": copy.deepcopy(template.rule_json),
    }
    fields.update(overrides)
    return Policy(**fields)
