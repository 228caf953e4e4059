"""Turns a process document into an ordered list of guided steps."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from process_copilot.agent.prompts import decomposition_system_prompt
from process_copilot.agent.providers import CompletionProvider
from process_copilot.config import GuidedConfig
from process_copilot.errors import DecompositionParseError, ProviderError
from process_copilot.ingest.parser import strip_markup
from process_copilot.obs.tracing import profile
from process_copilot.types import ChatTurn, ProcessDefinition, ProcessStep

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(slots=True)
class ParseOk:
    definition: ProcessDefinition


@dataclass(slots=True)
class ParseErr:
    reason: str


ParseResult = ParseOk | ParseErr


def parse_process_definition(raw: str) -> ParseResult:
    """Parse a model reply into a process definition without raising.

    Code fences and chatter around the outermost JSON object are ignored.
    Steps missing an id get `step_N` by position.
    """

    try:
        return ParseOk(_parse(raw))
    except DecompositionParseError as exc:
        return ParseErr(exc.message)


def _parse(raw: str) -> ProcessDefinition:
    content = _CODE_FENCE.sub("", raw).replace("`", "").strip()
    first, last = content.find("{"), content.rfind("}")
    if first == -1 or last < first:
        raise DecompositionParseError("no JSON object in reply")
    try:
        payload = json.loads(content[first : last + 1])
    except json.JSONDecodeError as exc:
        raise DecompositionParseError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise DecompositionParseError("reply is not a JSON object")

    raw_steps = payload.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise DecompositionParseError("reply has no steps")

    steps = [_parse_step(item, index) for index, item in enumerate(raw_steps, start=1)]
    return ProcessDefinition(
        title=_text(payload.get("title")) or "Guided process",
        description=_text(payload.get("description")),
        estimated_duration=_text(payload.get("estimatedDuration")) or "Variable",
        steps=steps,
    )


def _parse_step(item: Any, index: int) -> ProcessStep:
    if not isinstance(item, dict):
        raise DecompositionParseError(f"step {index} is not an object")
    title = _text(item.get("title"))
    description = _text(item.get("description"))
    if not title or not description:
        raise DecompositionParseError(f"step {index} lacks a title or description")
    return ProcessStep(
        id=_text(item.get("id")) or f"step_{index}",
        title=title,
        description=description,
        estimated_time=_text(item.get("estimatedTime")) or None,
        checkpoints=_text_list(item.get("checkpoints")),
        tools=_text_list(item.get("tools")),
        tips=_text(item.get("tips")) or None,
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def skeleton_definition(content: str, title_length: int = 50) -> ProcessDefinition:
    """Generic three-step process titled from the document's first line."""

    lines = [line.strip() for line in strip_markup(content).splitlines() if line.strip()]
    title = lines[0].lstrip("#").strip()[:title_length] if lines else ""
    return ProcessDefinition(
        title=title or "Guided process",
        description="Automatically extracted process",
        estimated_duration="Variable",
        steps=[
            ProcessStep(
                id="step_1",
                title="Step 1 - Preparation",
                description="Prepare the necessary items for this process",
                estimated_time="10 minutes",
            ),
            ProcessStep(
                id="step_2",
                title="Step 2 - Execution",
                description="Execute the main actions of the process",
                estimated_time="20 minutes",
            ),
            ProcessStep(
                id="step_3",
                title="Step 3 - Verification",
                description="Check that everything has been done correctly",
                estimated_time="5 minutes",
            ),
        ],
    )


class ProcessDecomposer:
    """Asks the completion provider to split a document into steps.

    Never raises: an unusable reply or a provider failure yields the generic
    skeleton so a guided session can always start.
    """

    def __init__(self, provider: CompletionProvider, config: GuidedConfig | None = None) -> None:
        self._provider = provider
        self.config = config or GuidedConfig()

    def decompose(self, content: str) -> ProcessDefinition:
        with profile("decompose"):
            try:
                raw = self._provider.complete(
                    decomposition_system_prompt(),
                    [ChatTurn(role="user", content=strip_markup(content))],
                )
            except ProviderError as exc:
                logger.warning(f"Decomposition request failed, using skeleton: {exc.message}")
                return skeleton_definition(content, self.config.fallback_title_length)

        result = parse_process_definition(raw)
        if isinstance(result, ParseErr):
            logger.warning(f"Decomposition reply unusable ({result.reason}), using skeleton")
            return skeleton_definition(content, self.config.fallback_title_length)
        logger.info(
            f"Decomposed {result.definition.title!r} into {len(result.definition.steps)} steps"
        )
        return result.definition
