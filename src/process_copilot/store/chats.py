"""Conversation log storage."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


@dataclass(slots=True)
class ChatRecord:
    """One persisted chat message, user or AI."""

    type: str  # "user" or "ai"
    message: str
    tenant_id: str
    user_id: str | None
    sources: list[dict[str, Any]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ChatStore(Protocol):
    def append(self, records: list[ChatRecord]) -> None:
        """Persist records in order."""

    def list_for_user(self, tenant_id: str, user_id: str) -> list[ChatRecord]:
        """Return a user's records, oldest first."""


class InMemoryChatStore:
    """Chat log kept in process memory."""

    def __init__(self) -> None:
        self._records: list[ChatRecord] = []

    def append(self, records: list[ChatRecord]) -> None:
        self._records.extend(records)

    def list_for_user(self, tenant_id: str, user_id: str) -> list[ChatRecord]:
        return [
            record
            for record in self._records
            if record.tenant_id == tenant_id and record.user_id == user_id
        ]

    def clear(self) -> None:
        self._records.clear()
