"""Exception hierarchy for the process copilot."""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for all copilot errors."""

    code: str = "copilot_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(CopilotError):
    """A request is missing required fields; rejected before any provider call."""

    code = "invalid_request"


class ProviderError(CopilotError):
    """The embedding or completion provider failed."""

    code = "provider_error"

    def __init__(self, message: str, *, provider: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider


class RetrievalTierError(CopilotError):
    """One retrieval tier failed; the tier is skipped."""

    code = "retrieval_tier_error"

    def __init__(self, tier: str, cause: Exception) -> None:
        super().__init__(f"{tier} tier failed: {cause}")
        self.tier = tier
        self.cause = cause


class DecompositionParseError(CopilotError):
    """The completion provider returned an unusable process decomposition."""

    code = "decomposition_parse_error"


class StoreError(CopilotError):
    """The document store is unavailable."""

    code = "store_error"
