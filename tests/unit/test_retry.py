import pytest

from process_copilot.agent.retry import RetryPolicy
from process_copilot.config import RetryConfig
from process_copilot.errors import ProviderError


def test_backoff_grows_and_is_capped() -> None:
    policy = RetryPolicy(
        RetryConfig(initial_delay_seconds=0.5, backoff_factor=2.0, max_delay_seconds=1.5)
    )

    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


def test_last_provider_error_is_reraised_after_max_attempts() -> None:
    slept: list[float] = []
    policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=slept.append)
    attempts = []

    def failing() -> str:
        attempts.append(1)
        raise ProviderError(f"attempt {len(attempts)}")

    with pytest.raises(ProviderError, match="attempt 3"):
        policy.call(failing)
    assert len(attempts) == 3
    assert slept == [0.5, 1.0]


def test_other_errors_are_not_retried() -> None:
    policy = RetryPolicy(sleep=lambda _: None)
    attempts = []

    def broken() -> str:
        attempts.append(1)
        raise KeyError("bug")

    with pytest.raises(KeyError):
        policy.call(broken)
    assert len(attempts) == 1
