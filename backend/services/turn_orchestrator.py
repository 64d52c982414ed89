"""
Turn orchestrator: the per-message state machine.

Drives one user submission through
IDLE -> OPTIMISTIC -> PERSISTING -> STREAMING -> FINALIZING -> IDLE,
with ERROR reachable from PERSISTING, STREAMING and FINALIZING.
"""
import base64
import itertools
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from config import METADATA_SENTINEL
from models.actions import PlanUpdate
from models.message import Message, MessageDraft, SENDER_USER, SENDER_AI, IMAGE_GENERATING
from models.profile import Profile
from models.turn import Attachment, Turn
from services.action_dispatcher import ActionDispatcher, TurnContext
from services.background import spawn_background
from services.conversation_view import ConversationView, TOAST, TURN_STATE
from services.llm_client import LLMClient, LLMClientError
from services.memory_hook import MemoryExtractionHook
from services.stream_parser import StreamParser, parse_control_event, IMAGE_GENERATION_START

logger = logging.getLogger(__name__)

ATTACHMENT_READ_ERROR = "Failed to read the attached file(s)."
UNKNOWN_ERROR = "An unknown error occurred."

_temp_ids = itertools.count(1)


class TurnState(str, Enum):
    IDLE = "idle"
    OPTIMISTIC = "optimistic"
    PERSISTING = "persisting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    TurnState.IDLE: {TurnState.OPTIMISTIC},
    TurnState.OPTIMISTIC: {TurnState.PERSISTING},
    TurnState.PERSISTING: {TurnState.STREAMING, TurnState.ERROR},
    TurnState.STREAMING: {TurnState.FINALIZING, TurnState.ERROR},
    TurnState.FINALIZING: {TurnState.IDLE, TurnState.ERROR},
    TurnState.ERROR: {TurnState.IDLE},
}


@dataclass
class TurnResult:
    """Outcome of one turn."""
    state: TurnState
    messages: List[Message] = field(default_factory=list)
    user_message: Optional[Message] = None
    error: Optional[str] = None
    states: List[TurnState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state != TurnState.ERROR and bool(self.messages)


def make_temp_id(kind: str) -> str:
    """Client-side id for an optimistic message, unique within the process."""
    return f"temp-{kind}-{time.time_ns()}-{next(_temp_ids)}"


class TurnOrchestrator:
    """Runs user turns against a conversation view."""

    def __init__(
        self,
        store,
        llm_client: LLMClient,
        dispatcher: ActionDispatcher,
        memory_hook: MemoryExtractionHook,
        sentinel: str = METADATA_SENTINEL,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Storage collaborator (persist_message, fetch_profile,
                fetch_memory_context, update_message_plan)
            llm_client: Client streaming model responses
            dispatcher: Action dispatcher for finished responses
            memory_hook: Background memory extraction hook
            sentinel: Token delimiting the hidden metadata block
        """
        self.store = store
        self.llm_client = llm_client
        self.dispatcher = dispatcher
        self.memory_hook = memory_hook
        self.sentinel = sentinel

    async def handle_turn(self, turn: Turn, view: ConversationView) -> TurnResult:
        """
        Run one turn end to end.

        The caller must not start a second turn on the same view while
        ``view.busy`` is set. Failures never raise: they move the turn to
        ERROR, remove the placeholders from the view and publish a toast.

        Args:
            turn: The user submission
            view: Live view of the target conversation

        Returns:
            TurnResult with the persisted AI message(s) on success
        """
        if turn.is_empty:
            return TurnResult(state=TurnState.IDLE)

        try:
            image_payload = self._encode_attachments(turn.attachments)
        except (TypeError, ValueError) as e:
            logger.error(f"Attachment read error: {e}", exc_info=True)
            view.publish(TOAST, level="error", message=ATTACHMENT_READ_ERROR)
            return TurnResult(state=TurnState.IDLE, error=ATTACHMENT_READ_ERROR)

        result = TurnResult(state=TurnState.IDLE, states=[TurnState.IDLE])
        turn_id = make_temp_id("turn")

        temp_user = Message(
            id=make_temp_id("user"),
            chat_id=turn.chat_id,
            project_id=turn.project.id,
            user_id=turn.user_id,
            sender=SENDER_USER,
            text=turn.text,
            image_base64=image_payload,
        )
        temp_ai = Message(
            id=make_temp_id("ai"),
            chat_id=turn.chat_id,
            project_id=turn.project.id,
            sender=SENDER_AI,
        )

        view.busy = True
        try:
            self._transition(result, TurnState.OPTIMISTIC, view, turn_id)
            view.append(temp_user, temp_ai)

            self._transition(result, TurnState.PERSISTING, view, turn_id)
            saved_user = await self.store.persist_message(MessageDraft(
                chat_id=turn.chat_id,
                project_id=turn.project.id,
                user_id=turn.user_id,
                sender=SENDER_USER,
                text=turn.text,
                image_base64=image_payload,
            ))
            view.replace(temp_user.id, saved_user)
            result.user_message = saved_user

            profile = await self._fetch_requester_profile(turn.user_id)
            memory_context = await self.store.fetch_memory_context(turn.user_id)
            history = [
                m for m in view.messages
                if m.id not in (temp_ai.id, saved_user.id)
            ]

            self._transition(result, TurnState.STREAMING, view, turn_id)
            parser = StreamParser(self.sentinel)
            fragments = self.llm_client.stream_response(
                model=turn.project.default_model,
                history=history,
                new_message=saved_user,
                attachments=turn.attachments,
                memory_context=memory_context,
            )
            async for fragment in fragments:
                self._apply_fragment(view, temp_ai.id, parser, fragment)

            self._transition(result, TurnState.FINALIZING, view, turn_id)
            parsed = parser.finalize()
            context = TurnContext(
                chat_id=turn.chat_id,
                project_id=turn.project.id,
                user_id=turn.user_id,
                profile=profile,
            )
            dispatched = await self.dispatcher.dispatch(
                parsed,
                context,
                on_event=lambda event: self._apply_fragment(view, temp_ai.id, parser, event),
            )

            saved_ai: List[Message] = []
            for draft in dispatched.drafts:
                saved_ai.append(await self.store.persist_message(draft))

            if saved_ai:
                self.memory_hook.trigger(turn.user_id, saved_user.text, saved_ai[0].text, turn.project.id)

            view.replace(temp_ai.id, *saved_ai)
            if dispatched.plan_update:
                self._apply_plan_update(view, dispatched.plan_update)

            result.messages = saved_ai
            self._transition(result, TurnState.IDLE, view, turn_id)
            logger.info(
                f"Turn completed in chat {turn.chat_id} with {len(saved_ai)} AI message(s)",
                extra={"turn_id": turn_id},
            )

        except Exception as e:
            message = self._user_friendly_error(e)
            logger.error(
                f"Turn failed in state {result.state.value}: {e}",
                exc_info=True,
                extra={"turn_id": turn_id, "state": result.state.value},
            )
            self._transition(result, TurnState.ERROR, view, turn_id)
            view.remove(temp_user.id, temp_ai.id)
            view.publish(TOAST, level="error", message=message)
            result.error = message
            result.messages = []
            self._transition(result, TurnState.IDLE, view, turn_id)
            result.state = TurnState.ERROR

        finally:
            view.busy = False

        return result

    def _apply_fragment(self, view: ConversationView, ai_id: str, parser: StreamParser, fragment: str) -> None:
        event = parse_control_event(fragment)
        if event is not None:
            if event.type == IMAGE_GENERATION_START:
                view.update(ai_id, text=event.data.get("text", ""), image_status=IMAGE_GENERATING)
            return

        delta = parser.feed(fragment)
        if delta:
            view.append_text(ai_id, delta)

    async def _fetch_requester_profile(self, user_id: str) -> Profile:
        """Profile used for the audit field; a lookup failure means non-privileged."""
        try:
            return await self.store.fetch_profile(user_id)
        except Exception as e:
            logger.warning(f"Could not fetch profile for {user_id}, treating as non-privileged: {e}")
            return Profile(user_id=user_id, balance=0)

    def _apply_plan_update(self, view: ConversationView, plan_update: PlanUpdate) -> None:
        if not view.update(plan_update.message_id, plan=plan_update.plan):
            logger.warning(f"Plan update for unknown message {plan_update.message_id}")
        spawn_background(
            self.store.update_message_plan(plan_update.message_id, plan_update.plan),
            name=f"plan-update:{plan_update.message_id}",
        )

    def _transition(self, result: TurnResult, new_state: TurnState, view: ConversationView, turn_id: str) -> None:
        if new_state not in ALLOWED_TRANSITIONS[result.state]:
            raise RuntimeError(f"Invalid turn transition {result.state.value} -> {new_state.value}")

        logger.debug(
            f"Turn {turn_id}: {result.state.value} -> {new_state.value}",
            extra={"turn_id": turn_id, "state": new_state.value},
        )
        result.state = new_state
        result.states.append(new_state)
        view.publish(TURN_STATE, state=new_state.value)

    @staticmethod
    def _encode_attachments(attachments: List[Attachment]) -> Optional[str]:
        """Base64 payload stored with the user message (JSON list when several)."""
        if not attachments:
            return None
        encoded = [base64.b64encode(a.data).decode("ascii") for a in attachments]
        return encoded[0] if len(encoded) == 1 else json.dumps(encoded)

    @staticmethod
    def _user_friendly_error(error: Exception) -> str:
        if isinstance(error, LLMClientError):
            return error.error.message
        return str(error) or UNKNOWN_ERROR
