"""Turns a parsed model response into outbound message drafts."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from models.actions import ActionPayload, CodeResponse, ImageResponse, MemoryFact, PlanUpdate
from models.message import MessageDraft, SENDER_AI, IMAGE_COMPLETE
from models.profile import Profile
from services.background import spawn_background
from services.credit_gate import CreditGate
from services.image_generator import ImageFallbackGenerator, FALLBACK_NOTE
from services.stream_parser import ParsedResponse, encode_control_event, IMAGE_GENERATION_START

logger = logging.getLogger(__name__)

EventCallback = Callable[[str], Any]


class EmptyResponseError(Exception):
    """Raised when a response has neither visible text nor an action."""

    def __init__(self, message: str = "The AI returned an empty response."):
        super().__init__(message)


@dataclass
class TurnContext:
    """Who and where a response is for."""
    chat_id: str
    project_id: str
    user_id: str
    profile: Profile


@dataclass
class DispatchResult:
    """Drafts to persist, in order, plus an optional plan update."""
    drafts: List[MessageDraft] = field(default_factory=list)
    plan_update: Optional[PlanUpdate] = None


class ActionDispatcher:
    """Chooses the response shape of a turn and runs its side effects."""

    def __init__(self, store, credit_gate: CreditGate, image_generator: ImageFallbackGenerator):
        """
        Initialize the dispatcher.

        Args:
            store: Storage collaborator providing persist_memory_fact
            credit_gate: Gate consulted before image generation
            image_generator: Image generator with model fallback
        """
        self.store = store
        self.credit_gate = credit_gate
        self.image_generator = image_generator

    async def dispatch(
        self,
        parsed: ParsedResponse,
        context: TurnContext,
        on_event: Optional[EventCallback] = None,
    ) -> DispatchResult:
        """
        Produce the message draft(s) for a parsed response.

        Priority of the primary action is code, then image, then plain
        text. Memory facts are saved in the background whichever branch runs.

        Args:
            parsed: Result of StreamParser.finalize
            context: Chat, project and requester of the turn
            on_event: Receives encoded control events (image generation start)

        Returns:
            DispatchResult with exactly one draft

        Raises:
            EmptyResponseError: If there is no visible text and no action
        """
        action = parsed.action or ActionPayload()

        if action.memories:
            self._save_memories(context.user_id, action.memories)

        response = action.response
        if isinstance(response, CodeResponse):
            logger.info(f"Dispatching code response ({response.language})")
            draft = self._draft(
                context, parsed, parsed.visible_text,
                code=response.code, language=response.language,
            )
        elif isinstance(response, ImageResponse):
            draft = await self._dispatch_image(response, parsed, context, on_event)
        elif parsed.visible_text:
            draft = self._draft(context, parsed, parsed.visible_text)
        else:
            raise EmptyResponseError()

        return DispatchResult(drafts=[draft], plan_update=action.plan_update)

    async def _dispatch_image(
        self,
        response: ImageResponse,
        parsed: ParsedResponse,
        context: TurnContext,
        on_event: Optional[EventCallback],
    ) -> MessageDraft:
        if on_event is not None:
            on_event(encode_control_event(IMAGE_GENERATION_START, text=parsed.visible_text))

        decision = await self.credit_gate.authorize(context.user_id)
        if not decision.proceed:
            return MessageDraft(
                chat_id=context.chat_id,
                project_id=context.project_id,
                sender=SENDER_AI,
                text=decision.message,
            )

        logger.info(f"Generating image with model {decision.model}")
        result = await self.image_generator.generate(response.prompt, decision.model)

        text = parsed.visible_text
        if result.used_fallback:
            text = f"{text}\n\n{FALLBACK_NOTE}"

        return self._draft(
            context, parsed, text,
            image_base64=result.image_base64, image_status=IMAGE_COMPLETE,
        )

    def _draft(self, context: TurnContext, parsed: ParsedResponse, text: str, **fields: Any) -> MessageDraft:
        draft = MessageDraft(
            chat_id=context.chat_id,
            project_id=context.project_id,
            sender=SENDER_AI,
            text=text,
            **fields,
        )
        if context.profile.is_privileged:
            draft.raw_ai_response = parsed.raw_text
        return draft

    def _save_memories(self, user_id: str, memories: List[MemoryFact]) -> None:
        for fact in memories:
            spawn_background(
                self.store.persist_memory_fact(user_id, fact.layer, fact.key, fact.value),
                name=f"save-memory:{fact.layer}/{fact.key}",
            )
