"""Content classification collaborators.

The content-safety evaluator asks a classifier for one score per configured
category. ``HttpContentClassifier`` talks to an external moderation service;
``KeywordContentClassifier`` is a pure-Python lexicon scorer used when no
service is configured and in tests.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ClassifierError(Exception):
    """The classifier could not produce usable scores."""


class ContentClassifier(ABC):
    """Scores text against named content categories."""

    @abstractmethod
    async def classify(self, text: str, categories: Sequence[str]) -> dict[str, float]:
        """Return a score in [0, 1] for every requested category."""

    async def close(self) -> None:  # noqa: B027
        """Release any held resources."""


def validate_scores(raw: dict[str, Any], categories: Sequence[str]) -> dict[str, float]:
    """Check that every requested category has a numeric score in [0, 1]."""
    scores: dict[str, float] = {}
    for name in categories:
        value = raw.get(name)
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ClassifierError(f"missing score for category '{name}'")
        if not 0.0 <= value <= 1.0:
            raise ClassifierError(f"score for '{name}' out of range: {value}")
        scores[name] = float(value)
    return scores


class HttpContentClassifier(ContentClassifier):
    """Client for an external moderation service.

    Accepts either ``{"scores": {category: score}}`` or the moderation
    shape ``{"results": [{"category_scores": {...}}]}``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 2.0,
        model: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._model = model
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url, timeout=timeout, headers=headers
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def classify(self, text: str, categories: Sequence[str]) -> dict[str, float]:
        payload: dict[str, Any] = {"input": text, "categories": list(categories)}
        if self._model:
            payload["model"] = self._model

        try:
            resp = await self._client.post("/v1/classify", json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Classifier returned %s", exc.response.status_code)
            raise ClassifierError(
                f"classifier error: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Classifier not reachable at %s", self._base_url)
            raise ClassifierError("classifier unavailable") from exc
        except ValueError as exc:
            raise ClassifierError("classifier returned invalid JSON") from exc

        return validate_scores(self._parse_scores(body), categories)

    @staticmethod
    def _parse_scores(body: Any) -> dict[str, Any]:
        if not isinstance(body, dict):
            raise ClassifierError("unexpected classifier response")
        if isinstance(body.get("scores"), dict):
            return body["scores"]
        results = body.get("results")
        if isinstance(results, list) and results and isinstance(results[0], dict):
            scores = results[0].get("category_scores")
            if isinstance(scores, dict):
                return scores
        raise ClassifierError("unexpected classifier response")


# ── Local lexicon scorer ─────────────────────────────────────────

# Terms are matched as whole words. Everyday verbs with a technical sense
# ("kill a process", "shoot an email") only count inside a threat phrase.
LEXICON: dict[str, tuple[str, ...]] = {
    "violence": (
        "murder",
        "massacre",
        "behead",
        "assault",
        "kill you",
        "kill him",
        "kill her",
        "kill them",
        "shoot you",
        "bomb threat",
    ),
    "hate_speech": ("hate speech", "subhuman", "exterminate", "racial slur", "ethnic cleansing"),
    "sexual_content": ("porn", "pornography", "nsfw", "sexually explicit", "nudes"),
    "self_harm": ("self harm", "self-harm", "suicide", "hurt myself", "kill myself"),
    "harassment": ("harass", "harassment", "stalking", "bully", "bullying"),
}

# A single hit stays under every default template threshold (0.6 and up);
# it takes repeated evidence to reach a verdict.
_FIRST_HIT_SCORE = 0.5
_EXTRA_HIT_SCORE = 0.15


class KeywordContentClassifier(ContentClassifier):
    """Scores categories by counting whole-word lexicon hits.

    No hit scores 0.0; the first hit scores 0.5 and every further hit adds
    0.15, capped at 1.0. Categories without a lexicon always score 0.0.
    """

    def __init__(self, lexicon: dict[str, tuple[str, ...]] | None = None) -> None:
        source = lexicon if lexicon is not None else LEXICON
        self._patterns = {
            name: [re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE) for term in terms]
            for name, terms in source.items()
        }

    async def classify(self, text: str, categories: Sequence[str]) -> dict[str, float]:
        scores: dict[str, float] = {}
        for name in categories:
            hits = sum(len(p.findall(text)) for p in self._patterns.get(name, ()))
            if hits == 0:
                scores[name] = 0.0
            else:
                scores[name] = min(1.0, _FIRST_HIT_SCORE + _EXTRA_HIT_SCORE * (hits - 1))
        return scores
