"""
Action payload models.

The hidden metadata block at the end of a model response is resolved into an
``ActionPayload``: exactly one response shape (text, code or image) plus an
optional list of memory facts and an optional plan update.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_CODE_LANGUAGE = "plaintext"


@dataclass
class TextResponse:
    """Plain text reply; nothing beyond the visible text."""


@dataclass
class CodeResponse:
    """Reply carrying a code block."""
    code: str
    language: str = DEFAULT_CODE_LANGUAGE


@dataclass
class ImageResponse:
    """Reply that requests an image to be generated."""
    prompt: str


ResponseShape = Union[TextResponse, CodeResponse, ImageResponse]


@dataclass
class MemoryFact:
    """A long-term fact to remember about the user."""
    layer: str
    key: str
    value: str


@dataclass
class PlanUpdate:
    """A new plan for an existing message."""
    message_id: str
    plan: Dict[str, Any]


@dataclass
class ActionPayload:
    """Resolved hidden metadata of one model response."""
    response: ResponseShape = field(default_factory=TextResponse)
    memories: List[MemoryFact] = field(default_factory=list)
    plan_update: Optional[PlanUpdate] = None

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any]) -> "ActionPayload":
        """
        Build a payload from the decoded metadata object.

        Code wins over an image prompt; fields with the wrong type or blank
        strings are treated as absent.

        Args:
            metadata: Decoded JSON object from the metadata block

        Returns:
            ActionPayload with the selected response shape
        """
        code = _non_blank(metadata.get("code"))
        image_prompt = _non_blank(metadata.get("imagePrompt"))

        response: ResponseShape
        if code:
            language = _non_blank(metadata.get("language")) or DEFAULT_CODE_LANGUAGE
            response = CodeResponse(code=code.strip(), language=language)
        elif image_prompt:
            response = ImageResponse(prompt=image_prompt.strip())
        else:
            response = TextResponse()

        return cls(
            response=response,
            memories=parse_memory_facts(metadata.get("memoryToCreate")),
            plan_update=_parse_plan_update(metadata.get("planUpdate")),
        )


def _non_blank(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_memory_facts(raw: Any) -> List[MemoryFact]:
    """Keep the well-formed ``{layer, key, value}`` entries of a raw list."""
    if not isinstance(raw, list):
        return []

    memories = []
    for item in raw:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed memory entry: {item!r}")
            continue
        layer, key, value = item.get("layer"), item.get("key"), item.get("value")
        if not all(isinstance(part, str) and part for part in (layer, key, value)):
            logger.warning(f"Skipping incomplete memory entry: {item!r}")
            continue
        memories.append(MemoryFact(layer=layer, key=key, value=value))
    return memories


def _parse_plan_update(raw: Any) -> Optional[PlanUpdate]:
    if not isinstance(raw, dict):
        return None
    message_id = raw.get("messageId")
    plan = raw.get("plan")
    if not isinstance(message_id, str) or not message_id or not isinstance(plan, dict):
        logger.warning("Ignoring malformed plan update in metadata")
        return None
    return PlanUpdate(message_id=message_id, plan=plan)
