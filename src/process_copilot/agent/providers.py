"""Completion providers: the LangChain chat model adapter and its contract."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from process_copilot.agent.retry import RetryPolicy
from process_copilot.errors import ProviderError
from process_copilot.types import ChatTurn

logger = logging.getLogger(__name__)


class CompletionProvider(ABC):
    """External chat model producing text for a system prompt and messages."""

    name: str = "completion"

    @abstractmethod
    def complete(self, system_prompt: str, messages: list[ChatTurn]) -> str:
        """Return the whole completion."""

    @abstractmethod
    def stream(self, system_prompt: str, messages: list[ChatTurn]) -> Iterator[str]:
        """Yield the completion as incremental text tokens."""


def to_langchain_messages(messages: list[ChatTurn]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


class LangChainCompletionProvider(CompletionProvider):
    """Runs prompts through a LangChain chat model such as `ChatOpenAI`.

    The system prompt is passed as a template variable, never formatted into
    the template itself, so braces in retrieved documents are left alone.
    Model failures surface as `ProviderError`; `complete` and the opening of a
    stream are retried by the injected policy. A stream that fails after
    tokens were delivered is not retried.
    """

    name = "langchain"

    def __init__(self, llm: Any, retry: RetryPolicy | None = None) -> None:
        self.llm = llm
        self._retry = retry or RetryPolicy()
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", "{system_prompt}"),
                MessagesPlaceholder(variable_name="messages"),
            ]
        )
        self._chain = prompt | llm | StrOutputParser()

    def complete(self, system_prompt: str, messages: list[ChatTurn]) -> str:
        payload = self._payload(system_prompt, messages)
        return self._retry.call(lambda: self._invoke(payload), description="completion")

    def stream(self, system_prompt: str, messages: list[ChatTurn]) -> Iterator[str]:
        payload = self._payload(system_prompt, messages)
        tokens, first = self._retry.call(lambda: self._open_stream(payload), description="stream")
        return self._relay(tokens, first)

    def _invoke(self, payload: dict[str, Any]) -> str:
        try:
            return self._chain.invoke(payload)
        except Exception as exc:
            raise ProviderError(f"completion request failed: {exc}", provider=self.name) from exc

    def _open_stream(self, payload: dict[str, Any]) -> tuple[Iterator[str], str | None]:
        # The request is only sent on the first pull, so read one token here
        # to make connection failures retryable.
        tokens: Iterator[str] | None = None
        try:
            tokens = iter(self._chain.stream(payload))
            first = next(tokens, None)
        except Exception as exc:
            if tokens is not None:
                _close(tokens)
            raise ProviderError(f"stream request failed: {exc}", provider=self.name) from exc
        return tokens, first

    def _relay(self, tokens: Iterator[str], first: str | None) -> Iterator[str]:
        try:
            if first is None:
                return
            yield first
            for token in tokens:
                yield token
        except Exception as exc:
            raise ProviderError(f"stream interrupted: {exc}", provider=self.name) from exc
        finally:
            _close(tokens)

    @staticmethod
    def _payload(system_prompt: str, messages: list[ChatTurn]) -> dict[str, Any]:
        return {"system_prompt": system_prompt, "messages": to_langchain_messages(messages)}


def _close(iterator: Iterator[str]) -> None:
    close = getattr(iterator, "close", None)
    if callable(close):
        close()
