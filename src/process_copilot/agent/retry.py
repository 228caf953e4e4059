"""Bounded retry with exponential backoff for provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from process_copilot.config import RetryConfig
from process_copilot.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retries a callable on `ProviderError` with exponential backoff.

    `sleep` is injected so tests can run the policy without waiting. The last
    error is re-raised once `max_attempts` is exhausted.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    @classmethod
    def single_attempt(cls) -> "RetryPolicy":
        return cls(RetryConfig(max_attempts=1))

    def call(self, operation: Callable[[], T], *, description: str = "provider call") -> T:
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except ProviderError as exc:
                if attempt >= attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} attempt {attempt}/{attempts} failed "
                    f"({exc.message}), retrying in {delay:.2f}s"
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    def delay_for(self, attempt: int) -> float:
        delay = self.config.initial_delay_seconds * (self.config.backoff_factor ** (attempt - 1))
        return min(delay, self.config.max_delay_seconds)
