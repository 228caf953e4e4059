"""Step timing used to profile retrieval, generation and guidance."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger("process_copilot.profiling")


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


@contextmanager
def profile(step: str) -> Iterator[Timer]:
    """Time a block and log its duration at debug level, even when it raises."""
    timer = Timer()
    try:
        with timer:
            yield timer
    finally:
        logger.debug(
            f"{step} - {timer.elapsed_ms:.2f}ms",
            extra={"extra_data": {"step": step, "elapsed_ms": round(timer.elapsed_ms, 2)}},
        )
