import threading
from datetime import datetime, timedelta, timezone

import pytest

from process_copilot.guided.session import (
    GuidedSession,
    Outcome,
    SessionCommand,
    SessionRegistry,
    SessionState,
    parse_command,
    transition,
)
from process_copilot.types import ProcessStep


def _session(user_id: str = "ana", steps: int = 3, started_at: datetime | None = None) -> GuidedSession:
    session = GuidedSession(
        user_id=user_id,
        tenant_id="t1",
        source_document_id="doc-1",
        process_title="Onboarding",
        process_description="",
        estimated_duration="1 hour",
        steps=[ProcessStep(id=f"step_{n}", title=f"Step {n}", description="Do it.") for n in range(1, steps + 1)],
    )
    if started_at is not None:
        session.started_at = started_at
    return session


@pytest.mark.parametrize(
    "message, command",
    [
        ("next please", SessionCommand.NEXT),
        ("Go to the NEXT step, it is done", SessionCommand.NEXT),
        ("previous", SessionCommand.PREVIOUS),
        ("I want to quit", SessionCommand.STOP),
        ("stop", SessionCommand.STOP),
        ("Done!", SessionCommand.COMPLETE_STEP),
        ("email sent", SessionCommand.COMPLETE_STEP),
        ("Which book should I use?", SessionCommand.ASK),
        ("where is the admin console?", SessionCommand.ASK),
    ],
)
def test_parse_command_precedence_and_word_matching(message: str, command: SessionCommand) -> None:
    assert parse_command(message) is command


def test_next_advances_until_last_step_then_reports_already_last() -> None:
    session = _session()

    assert transition(session, SessionCommand.NEXT) is Outcome.ADVANCED
    assert transition(session, SessionCommand.NEXT) is Outcome.ADVANCED
    assert session.current_step_index == 2
    assert transition(session, SessionCommand.NEXT) is Outcome.ALREADY_LAST
    assert session.current_step_index == 2
    assert session.state is SessionState.COMPLETED


def test_previous_at_first_step_keeps_position() -> None:
    session = _session()

    assert transition(session, SessionCommand.PREVIOUS) is Outcome.ALREADY_FIRST
    transition(session, SessionCommand.NEXT)
    assert transition(session, SessionCommand.PREVIOUS) is Outcome.WENT_BACK
    assert session.current_step_index == 0


def test_completing_steps_updates_progress() -> None:
    session = _session()

    assert transition(session, SessionCommand.COMPLETE_STEP) is Outcome.STEP_COMPLETED
    progress = session.progress()
    assert (progress.current_step, progress.total_steps, progress.completed_steps) == (1, 3, 1)
    assert progress.progress_percentage == 33

    transition(session, SessionCommand.NEXT)
    transition(session, SessionCommand.COMPLETE_STEP)
    transition(session, SessionCommand.NEXT)
    assert transition(session, SessionCommand.COMPLETE_STEP) is Outcome.PROCESS_COMPLETED
    assert session.progress().progress_percentage == 100
    assert session.state is SessionState.COMPLETED


def test_progress_rounds_half_up() -> None:
    session = _session(steps=8)
    session.completed_steps.update({0, 1, 2})

    assert session.progress().progress_percentage == 38


def test_session_requires_steps() -> None:
    with pytest.raises(ValueError):
        _session(steps=0)


def test_sweep_removes_sessions_by_start_time() -> None:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    registry = SessionRegistry()
    old = _session("old", started_at=now - timedelta(minutes=31))
    old.touch(now)
    registry.put(old)
    registry.put(_session("fresh", started_at=now - timedelta(minutes=5)))

    removed = registry.sweep(timedelta(minutes=30), now)

    assert removed == 1
    assert registry.get("old") is None
    assert registry.get("fresh") is not None


def test_lock_is_stable_per_user() -> None:
    registry = SessionRegistry()

    assert registry.lock("ana") is registry.lock("ana")
    assert registry.lock("ana") is not registry.lock("bob")


def test_writes_wait_for_a_running_sweep() -> None:
    registry = SessionRegistry()
    writer = threading.Thread(target=registry.put, args=(_session("ana"),))

    with registry._guard:
        writer.start()
        writer.join(timeout=0.1)
        assert writer.is_alive()
        assert registry.get("ana") is None

    writer.join(timeout=1)
    assert registry.get("ana") is not None
