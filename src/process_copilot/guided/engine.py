"""Routes chat messages through guided sessions or grounded answers."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from process_copilot.agent.answer import AnswerGenerator
from process_copilot.agent.prompts import guided_step_system_prompt
from process_copilot.agent.providers import CompletionProvider
from process_copilot.config import GuidedConfig, RetrievalConfig
from process_copilot.errors import ProviderError
from process_copilot.guided.decomposer import ProcessDecomposer
from process_copilot.guided.intent import IntentDetector
from process_copilot.guided.session import (
    GuidedSession,
    Outcome,
    Progress,
    SessionRegistry,
    parse_command,
    transition,
)
from process_copilot.obs.tracing import profile
from process_copilot.retrieval.retriever import validate_request
from process_copilot.types import ChatTurn, Document, ProcessStep, Source

logger = logging.getLogger(__name__)

STOP_MESSAGE = "Guided session stopped. You can resume the process at any time by asking me for help!"
ALREADY_FIRST_MESSAGE = "You are already at the first step!"
ALL_STEPS_DONE_MESSAGE = "Congratulations! You have completed all the steps of this process! Great job!"
LAST_STEP_DONE_MESSAGE = (
    "Congratulations! You have successfully completed all the steps of this process!"
)


@dataclass(slots=True)
class ChatReply:
    """Response to one chat message, guided or not."""

    response: str
    sources: list[Source] = field(default_factory=list)
    guided_mode: bool = False
    progress: Progress | None = None
    current_step: ProcessStep | None = None
    process_title: str | None = None
    step_completed: bool | None = None
    completed: bool | None = None


class GuidedEngine:
    """Drives per-user guided sessions and falls back to grounded answers.

    A user with an active session has every message interpreted as a session
    command. Otherwise the message goes through intent detection: a detected
    process request starts a new session, anything else is answered by the
    answer generator.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        detector: IntentDetector,
        decomposer: ProcessDecomposer,
        provider: CompletionProvider,
        answers: AnswerGenerator,
        config: GuidedConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
    ) -> None:
        self.registry = registry
        self._detector = detector
        self._decomposer = decomposer
        self._provider = provider
        self._answers = answers
        self.config = config or GuidedConfig()
        self._retrieval_config = retrieval_config or RetrievalConfig()

    def route(
        self,
        query: str,
        tenant_id: str,
        user_id: str,
        role: str | None,
        history: Sequence[ChatTurn] = (),
    ) -> ChatReply:
        reply = self.try_guided(query, tenant_id, user_id)
        if reply is not None:
            return reply
        answer = self._answers.answer(query, tenant_id, user_id, role, history)
        return ChatReply(response=answer.text, sources=answer.sources)

    def try_guided(self, query: str, tenant_id: str, user_id: str) -> ChatReply | None:
        """Handle `query` in guided mode, or return None when it is not guided."""

        validate_request(query, tenant_id)
        with self.registry.lock(user_id):
            session = self.registry.get(user_id)
            if session is not None:
                logger.debug(f"Active guided session for {user_id}: {session.process_title!r}")
                return self.handle(query, session)

            intent = self._detector.detect(query, tenant_id)
            if intent.is_process_request and intent.document is not None:
                return self._start(user_id, intent.document)
        return None

    def start_session(self, user_id: str, document: Document) -> ChatReply:
        """Start guiding `user_id` through `document`, replacing any current session."""

        with self.registry.lock(user_id):
            return self._start(user_id, document)

    def handle(self, query: str, session: GuidedSession) -> ChatReply:
        command = parse_command(query)
        outcome = transition(session, command)
        session.touch()
        logger.debug(f"Guided command {command.value} -> {outcome.value}")

        if outcome is Outcome.STOPPED:
            self.registry.delete(session.user_id)
            return ChatReply(response=STOP_MESSAGE, guided_mode=False)

        step = session.current_step
        progress = session.progress()
        total = progress.total_steps

        if outcome is Outcome.ADVANCED:
            text = f"Moving to step {progress.current_step}/{total}:\n\n{_describe_step(step)}"
            return self._reply(session, text)
        if outcome is Outcome.ALREADY_LAST:
            return self._reply(session, ALL_STEPS_DONE_MESSAGE, completed=True, with_step=False)
        if outcome is Outcome.WENT_BACK:
            text = f"Back to step {progress.current_step}/{total}:\n\n{step.title}\n\n{step.description}"
            return self._reply(session, text)
        if outcome is Outcome.ALREADY_FIRST:
            return self._reply(session, ALREADY_FIRST_MESSAGE)
        if outcome is Outcome.STEP_COMPLETED:
            text = (
                f'Great! Step "{step.title}" completed.\n\n'
                'Would you like to move to the next step? '
                '(say "next" or ask me a question about the current step)'
            )
            return self._reply(session, text, step_completed=True)
        if outcome is Outcome.PROCESS_COMPLETED:
            return self._reply(session, LAST_STEP_DONE_MESSAGE, completed=True, with_step=False)
        return self._reply(session, self._answer_step_question(query, session))

    def sweep(self, now: datetime | None = None) -> int:
        timeout = timedelta(seconds=self.config.session_timeout_seconds)
        return self.registry.sweep(timeout, now or datetime.now(timezone.utc))

    def _start(self, user_id: str, document: Document) -> ChatReply:
        definition = self._decomposer.decompose(document.content)
        session = GuidedSession(
            user_id=user_id,
            tenant_id=document.tenant_id,
            source_document_id=document.id or "",
            process_title=definition.title,
            process_description=definition.description,
            estimated_duration=definition.estimated_duration,
            steps=definition.steps,
        )
        self.registry.put(session)
        logger.info(f"Started guided session for {user_id}: {session.process_title!r}")

        source = Source(
            id=document.id or "",
            title=document.title,
            content=document.content[: self._retrieval_config.preview_length],
            tags=list(document.tags),
            relevance_score=1.0,
        )
        reply = self._reply(session, _welcome_message(session))
        reply.sources = [source]
        reply.process_title = session.process_title
        return reply

    def _answer_step_question(self, query: str, session: GuidedSession) -> str:
        step = session.current_step
        progress = session.progress()
        system_prompt = guided_step_system_prompt(
            session.process_title, step, progress.current_step, progress.total_steps
        )
        with profile("guided_step_answer"):
            try:
                return self._provider.complete(system_prompt, [ChatTurn(role="user", content=query)])
            except ProviderError as exc:
                logger.warning(f"Guided step answer failed, restating step: {exc.message}")
        return (
            f'For this step "{step.title}", {step.description}\n\n'
            'Do you have any specific questions? Say "done" when you are finished.'
        )

    @staticmethod
    def _reply(
        session: GuidedSession,
        text: str,
        *,
        step_completed: bool | None = None,
        completed: bool | None = None,
        with_step: bool = True,
    ) -> ChatReply:
        return ChatReply(
            response=text,
            guided_mode=True,
            progress=session.progress(),
            current_step=session.current_step if with_step else None,
            step_completed=step_completed,
            completed=completed,
        )


def _describe_step(step: ProcessStep) -> str:
    parts = [step.title, step.description]
    if step.checkpoints:
        parts.append("Checkpoints:\n- " + "\n- ".join(step.checkpoints))
    return "\n\n".join(parts)


def _welcome_message(session: GuidedSession) -> str:
    first = session.steps[0]
    total = len(session.steps)
    lines = [
        f'Perfect! I will guide you step by step for: "{session.process_title}"',
        "",
        f"Overview: {session.process_description}",
        f"Estimated time: {session.estimated_duration}",
        f"Number of steps: {total}",
        "",
        "---",
        "",
        f"Step 1/{total}: {first.title}",
        "",
        first.description,
    ]
    if first.checkpoints:
        lines += ["", "Checkpoints:\n- " + "\n- ".join(first.checkpoints)]
    if first.tips:
        lines += ["", f"Tip: {first.tips}"]
    lines += [
        "",
        "---",
        "",
        "Useful commands:",
        '- Say "next" to go to the next step',
        '- Say "previous" to go back',
        '- Say "stop" to stop the guidance',
        "- Ask me questions about the current step",
        "",
        "Ready to start?",
    ]
    return "\n".join(lines)
