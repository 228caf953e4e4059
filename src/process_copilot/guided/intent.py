"""Detects requests to be walked through a documented process."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from process_copilot.agent.prompts import classification_system_prompt
from process_copilot.agent.providers import CompletionProvider
from process_copilot.config import CacheConfig, GuidedConfig
from process_copilot.errors import ProviderError
from process_copilot.obs.tracing import profile
from process_copilot.store.cache import TTLCache
from process_copilot.store.documents import DocumentQuery, DocumentStore
from process_copilot.types import ChatTurn, Document

logger = logging.getLogger(__name__)

PROCESS_KEYWORDS = (
    "how to",
    "guide me",
    "help me",
    "steps for",
    "process for",
    "walk me through",
    "show me how",
    "explain how",
    "comment faire",
    "guide-moi",
    "aide-moi",
    "étapes pour",
    "processus pour",
    "guide",
    "help",
    "assist",
    "support",
    "tutorial",
    "procedure",
    "process",
    "workflow",
    "steps",
    "instructions",
    "manual",
    "aide",
    "assistance",
    "tutoriel",
    "procédure",
    "processus",
    "étapes",
    "manuel",
    "can you",
    "could you",
    "would you",
    "peux-tu",
    "pourrais-tu",
    "i need",
    "i want",
    "j'ai besoin",
    "je veux",
    "je souhaite",
)

_GUIDED_EXCLUDED_TYPES = ("flow",)


@dataclass(slots=True)
class IntentResult:
    is_process_request: bool
    document: Document | None = None
    confidence: float = 0.0


NO_INTENT = IntentResult(is_process_request=False)


def has_process_keywords(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in PROCESS_KEYWORDS)


class IntentDetector:
    """Decides whether a message asks for guided execution, and of what.

    A vocabulary screen runs first so ordinary questions never cost a model
    call. Screened-in messages are classified by the completion provider
    against the tenant's guidable documents. Results are cached per message
    and tenant; a failed classification is reported as no intent and is not
    cached, so the next attempt asks the provider again.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: CompletionProvider,
        config: GuidedConfig | None = None,
        cache_config: CacheConfig | None = None,
        *,
        cache: TTLCache[IntentResult] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self.config = config or GuidedConfig()
        cache_config = cache_config or CacheConfig()
        self.cache = cache or TTLCache(ttl_seconds=cache_config.intent_ttl_seconds)

    def detect(self, message: str, tenant_id: str) -> IntentResult:
        key = f"{message.lower().strip()}_{tenant_id}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Intent cache hit for {message[:50]!r}")
            return cached

        if not has_process_keywords(message):
            self.cache.set(key, NO_INTENT)
            return NO_INTENT

        candidates = self._store.find(
            DocumentQuery(
                tenant_id=tenant_id,
                is_chunk=False,
                exclude_content_types=_GUIDED_EXCLUDED_TYPES,
            )
        )
        if not candidates:
            self.cache.set(key, NO_INTENT)
            return NO_INTENT

        with profile("detect_intent"):
            try:
                raw = self._provider.complete(
                    classification_system_prompt([doc.title for doc in candidates]),
                    [ChatTurn(role="user", content=message)],
                )
                payload = _extract_json(raw)
            except (ProviderError, ValueError) as exc:
                logger.warning(f"Intent classification failed: {exc}")
                return NO_INTENT

        result = self._match(payload, candidates)
        self.cache.set(key, result)
        if result.is_process_request and result.document is not None:
            logger.info(
                f"Detected process request for {result.document.title!r} "
                f"(confidence={result.confidence:.2f})"
            )
        return result

    def _match(self, payload: dict[str, Any], candidates: list[Document]) -> IntentResult:
        try:
            confidence = float(payload.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        if not payload.get("isProcessRequest") or confidence <= self.config.detection_confidence:
            return NO_INTENT

        named = str(payload.get("sopTitle") or "").lower().strip()
        if named:
            for document in candidates:
                title = document.title.lower()
                if named in title or title in named:
                    return IntentResult(True, document, confidence)

        if confidence > self.config.fallback_confidence:
            return IntentResult(True, candidates[0], confidence)
        return NO_INTENT


def _extract_json(raw: str) -> dict[str, Any]:
    content = re.sub(r"```(?:json)?", "", raw, flags=re.IGNORECASE).strip()
    first, last = content.find("{"), content.rfind("}")
    if first == -1 or last < first:
        raise ValueError("no JSON object in classification reply")
    payload = json.loads(content[first : last + 1])
    if not isinstance(payload, dict):
        raise ValueError("classification reply is not a JSON object")
    return payload
