"""Deterministic completion provider used when no external LLM is configured."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator

from process_copilot.agent.prompts import OUT_OF_SCOPE_MESSAGE
from process_copilot.agent.providers import CompletionProvider
from process_copilot.retrieval.fusion import query_keywords
from process_copilot.types import ChatTurn

_CONTEXT_BLOCK = re.compile(r"^Title: (?P<title>.+)\nContent: (?P<body>.*?)(?=\n\nTitle: |\Z)", re.M | re.S)
_STEP_LINE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(?P<text>.+)$")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class ExtractiveCompletionProvider(CompletionProvider):
    """Answers from the prompt's own material without calling a model.

    Keeps the `CompletionProvider` contract so the whole service runs offline
    where `OPENAI_API_KEY` is not configured. The provider recognises which
    prompt it was given and responds in kind: extracted sentences for grounded
    answers, JSON for classification and decomposition, and a restatement of
    the step for guided questions.
    """

    name = "extractive"

    def __init__(self, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    def complete(self, system_prompt: str, messages: list[ChatTurn]) -> str:
        question = messages[-1].content if messages else ""
        if '"isProcessRequest"' in system_prompt:
            return _classify(system_prompt, question)
        if '"estimatedDuration"' in system_prompt:
            return _decompose(question)
        if "# Active guided session" in system_prompt:
            return _restate_step(system_prompt)
        return self._answer(system_prompt, question)

    def stream(self, system_prompt: str, messages: list[ChatTurn]) -> Iterator[str]:
        text = self.complete(system_prompt, messages)
        for index, word in enumerate(text.split(" ")):
            yield word if index == 0 else f" {word}"

    def _answer(self, system_prompt: str, question: str) -> str:
        _, _, context = system_prompt.partition("# Context documents\n")
        keywords = query_keywords(question)
        picked: list[str] = []
        for block in _CONTEXT_BLOCK.finditer(context):
            for sentence in _SENTENCE_SPLIT.split(block.group("body").strip()):
                lowered = sentence.lower()
                if sentence and any(word in lowered for word in keywords):
                    picked.append(sentence.strip())
        if not picked:
            return OUT_OF_SCOPE_MESSAGE
        return "\n".join(picked[: self.max_sentences])


def _classify(system_prompt: str, message: str) -> str:
    _, _, listing = system_prompt.partition("Available processes:\n")
    titles = [line[2:].strip() for line in listing.splitlines() if line.startswith("- ")]
    lowered = message.lower()
    for title in titles:
        if title.lower() in lowered:
            return json.dumps({"isProcessRequest": True, "sopTitle": title, "confidence": 0.9})
    return json.dumps({"isProcessRequest": False, "sopTitle": None, "confidence": 0.1})


def _decompose(content: str) -> str:
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    title = lines[0].lstrip("# ").strip() if lines else "Guided process"
    items = [match.group("text").strip() for line in lines if (match := _STEP_LINE.match(line))]
    if not items:
        items = [line for line in lines[1:] if not line.startswith("#")]
    steps = [
        {
            "id": f"step_{index}",
            "title": item.split(".")[0][:60],
            "description": item,
            "checkpoints": [],
            "tools": [],
        }
        for index, item in enumerate(items, start=1)
    ]
    return json.dumps(
        {
            "title": title,
            "description": f"Steps extracted from {title}",
            "estimatedDuration": "Variable",
            "steps": steps,
        }
    )


def _restate_step(system_prompt: str) -> str:
    _, _, rest = system_prompt.partition("# Step description\n")
    description = rest.partition("\n\n#")[0].strip()
    return f"{description}\n\nSay \"done\" when you have finished this step."
