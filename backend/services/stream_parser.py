"""
Stream parser for model responses with a hidden metadata block.

A response is streamed as::

    <visible text>[--METADATA--]{...json...}[--METADATA--]

The parser forwards visible text as soon as it is safe to do so and keeps the
metadata block hidden, no matter how the raw text is split into fragments.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config import METADATA_SENTINEL, EVENT_SENTINEL
from models.actions import ActionPayload

logger = logging.getLogger(__name__)

IMAGE_GENERATION_START = "image_generation_start"
CONTROL_EVENT_TYPES = {IMAGE_GENERATION_START}


@dataclass
class ParsedResponse:
    """Final result of a parsed stream."""
    visible_text: str
    action: Optional[ActionPayload]
    raw_text: str


@dataclass
class ControlEvent:
    """Out-of-band UI signal carried on the fragment channel."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


class StreamParser:
    """Incrementally separates visible text from the hidden metadata block."""

    def __init__(self, sentinel: str = METADATA_SENTINEL):
        """
        Initialize the parser for one stream.

        Args:
            sentinel: Token delimiting the hidden metadata block
        """
        if not sentinel:
            raise ValueError("sentinel must be a non-empty string")
        self.sentinel = sentinel
        self._buffer = ""
        self._emitted = ""

    @property
    def raw_text(self) -> str:
        """All raw text received so far."""
        return self._buffer

    @property
    def emitted_text(self) -> str:
        """Visible text returned by ``feed`` so far."""
        return self._emitted

    def feed(self, fragment: str) -> str:
        """
        Add a raw fragment and return the newly visible text.

        Detection runs on the cumulative buffer, so a sentinel split across
        fragments is still found. A trailing partial sentinel and trailing
        whitespace are held back until the next fragment disambiguates them.

        Args:
            fragment: Next piece of raw model output

        Returns:
            Visible text not returned before (may be empty)
        """
        if not fragment:
            return ""

        self._buffer += fragment
        visible = self._safe_visible(self._buffer)

        if len(visible) <= len(self._emitted):
            return ""
        if not visible.startswith(self._emitted):
            # Emitted text can only ever be extended
            logger.error("Visible text diverged from emitted prefix; holding output")
            return ""

        delta = visible[len(self._emitted):]
        self._emitted = visible
        return delta

    def finalize(self, raw_text: Optional[str] = None) -> ParsedResponse:
        """
        Resolve the visible text and the action payload of a full response.

        A malformed or unterminated metadata block never raises: the visible
        text stands and the action is None.

        Args:
            raw_text: Full raw response (defaults to everything fed so far)

        Returns:
            ParsedResponse with visible text and optional action payload
        """
        text = self._buffer if raw_text is None else raw_text

        start = text.find(self.sentinel)
        if start == -1:
            return ParsedResponse(visible_text=text.strip(), action=None, raw_text=text)

        visible_text = text[:start].strip()
        block_start = start + len(self.sentinel)
        end = text.find(self.sentinel, block_start)
        if end == -1:
            logger.warning("Metadata block is missing its closing sentinel; ignoring actions")
            return ParsedResponse(visible_text=visible_text, action=None, raw_text=text)

        block = text[block_start:end].strip()
        try:
            metadata = json.loads(block)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse metadata block: {e}")
            return ParsedResponse(visible_text=visible_text, action=None, raw_text=text)

        if not isinstance(metadata, dict):
            logger.warning(f"Metadata block is not an object: {type(metadata).__name__}")
            return ParsedResponse(visible_text=visible_text, action=None, raw_text=text)

        return ParsedResponse(
            visible_text=visible_text,
            action=ActionPayload.from_metadata(metadata),
            raw_text=text,
        )

    def _safe_visible(self, text: str) -> str:
        index = text.find(self.sentinel)
        if index != -1:
            candidate = text[:index]
        else:
            candidate = text[:len(text) - self._partial_sentinel_length(text)]
        return candidate.strip()

    def _partial_sentinel_length(self, text: str) -> int:
        """Length of the longest suffix of text that starts the sentinel."""
        for length in range(min(len(self.sentinel) - 1, len(text)), 0, -1):
            if text.endswith(self.sentinel[:length]):
                return length
        return 0


def encode_control_event(event_type: str, **data: Any) -> str:
    """Wrap a control event so it can travel on the fragment channel."""
    body = json.dumps({"type": event_type, **data})
    return f"{EVENT_SENTINEL}{body}{EVENT_SENTINEL}"


def parse_control_event(fragment: str) -> Optional[ControlEvent]:
    """
    Recognise a control event fragment.

    A fragment is an event when it parses as a JSON object carrying a known
    ``type``, either bare or wrapped in the event sentinel. Everything else
    is ordinary visible text.

    Args:
        fragment: A fragment from the stream channel

    Returns:
        ControlEvent, or None for visible text
    """
    body = fragment.strip()
    if (
        body.startswith(EVENT_SENTINEL)
        and body.endswith(EVENT_SENTINEL)
        and len(body) >= 2 * len(EVENT_SENTINEL)
    ):
        body = body[len(EVENT_SENTINEL):len(body) - len(EVENT_SENTINEL)]

    if not body.startswith("{"):
        return None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None

    if not isinstance(payload, dict) or payload.get("type") not in CONTROL_EVENT_TYPES:
        return None

    event_type = payload.pop("type")
    return ControlEvent(type=event_type, data=payload)
