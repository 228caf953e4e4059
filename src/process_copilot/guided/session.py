"""Guided session state, command parsing and the per-user session registry."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from math import floor

from process_copilot.types import ProcessStep

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionCommand(str, Enum):
    """What a user message asks of an active session, in precedence order."""

    NEXT = "next"
    PREVIOUS = "previous"
    STOP = "stop"
    COMPLETE_STEP = "complete_step"
    ASK = "ask"


COMPLETION_WORDS = (
    "done",
    "finished",
    "completed",
    "ok",
    "good",
    "validated",
    "sent",
    "created",
    "configured",
)

_COMMAND_PATTERNS: list[tuple[SessionCommand, re.Pattern[str]]] = [
    (SessionCommand.NEXT, re.compile(r"\bnext\b")),
    (SessionCommand.PREVIOUS, re.compile(r"\bprevious\b")),
    (SessionCommand.STOP, re.compile(r"\b(?:stop|quit)\b")),
    (
        SessionCommand.COMPLETE_STEP,
        re.compile(r"\b(?:" + "|".join(COMPLETION_WORDS) + r")\b"),
    ),
]


def parse_command(message: str) -> SessionCommand:
    """Classify a message; matching is on whole words, first match wins."""
    lowered = message.lower()
    for command, pattern in _COMMAND_PATTERNS:
        if pattern.search(lowered):
            return command
    return SessionCommand.ASK


@dataclass(slots=True)
class Progress:
    current_step: int
    total_steps: int
    completed_steps: int
    progress_percentage: int


@dataclass(slots=True)
class GuidedSession:
    """One user's walk through a decomposed process.

    `current_step_index` always points at an existing step and
    `completed_steps` only holds valid indices.
    """

    user_id: str
    tenant_id: str
    source_document_id: str
    process_title: str
    process_description: str
    estimated_duration: str
    steps: list[ProcessStep]
    current_step_index: int = 0
    completed_steps: set[int] = field(default_factory=set)
    state: SessionState = SessionState.ACTIVE
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("a guided session needs at least one step")

    @property
    def current_step(self) -> ProcessStep:
        return self.steps[self.current_step_index]

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1

    def progress(self) -> Progress:
        total = len(self.steps)
        completed = len(self.completed_steps)
        return Progress(
            current_step=self.current_step_index + 1,
            total_steps=total,
            completed_steps=completed,
            progress_percentage=floor(completed / total * 100 + 0.5),
        )

    def touch(self, now: datetime | None = None) -> None:
        self.last_activity_at = now or datetime.now(timezone.utc)


class Outcome(str, Enum):
    """Result of applying a command to a session."""

    ADVANCED = "advanced"
    ALREADY_LAST = "already_last"
    WENT_BACK = "went_back"
    ALREADY_FIRST = "already_first"
    STOPPED = "stopped"
    STEP_COMPLETED = "step_completed"
    PROCESS_COMPLETED = "process_completed"
    QUESTION = "question"


def transition(session: GuidedSession, command: SessionCommand) -> Outcome:
    """Apply `command` to `session` in place; defined for every command and state."""

    if command is SessionCommand.NEXT:
        if session.is_last_step:
            session.state = SessionState.COMPLETED
            return Outcome.ALREADY_LAST
        session.current_step_index += 1
        return Outcome.ADVANCED
    if command is SessionCommand.PREVIOUS:
        if session.current_step_index == 0:
            return Outcome.ALREADY_FIRST
        session.current_step_index -= 1
        return Outcome.WENT_BACK
    if command is SessionCommand.STOP:
        return Outcome.STOPPED
    if command is SessionCommand.COMPLETE_STEP:
        session.completed_steps.add(session.current_step_index)
        if session.is_last_step:
            session.state = SessionState.COMPLETED
            return Outcome.PROCESS_COMPLETED
        return Outcome.STEP_COMPLETED
    return Outcome.QUESTION


class SessionRegistry:
    """In-process store of at most one guided session per user.

    `lock(user_id)` serializes the read-modify-write of one user's session
    across concurrent requests. Sessions are lost on restart and are not
    shared between service instances.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, GuidedSession] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock(self, user_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(user_id, threading.Lock())

    def get(self, user_id: str) -> GuidedSession | None:
        return self._sessions.get(user_id)

    def put(self, session: GuidedSession) -> None:
        with self._guard:
            self._sessions[session.user_id] = session

    def delete(self, user_id: str) -> bool:
        with self._guard:
            return self._sessions.pop(user_id, None) is not None

    def sweep(self, timeout: timedelta, now: datetime | None = None) -> int:
        """Remove sessions started more than `timeout` ago.

        Age is measured from `started_at`, so a session still in active use is
        removed once it is old enough.
        """

        now = now or datetime.now(timezone.utc)
        with self._guard:
            expired = [
                user_id
                for user_id, session in self._sessions.items()
                if now - session.started_at > timeout
            ]
            for user_id in expired:
                del self._sessions[user_id]
        if expired:
            logger.info(f"Removed {len(expired)} expired guided sessions")
        return len(expired)

    def clear(self) -> None:
        with self._guard:
            self._sessions.clear()
            self._locks.clear()

    def __len__(self) -> int:
        return len(self._sessions)
