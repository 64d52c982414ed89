"""Data models for the Bubble chat backend."""
from .message import Message, MessageDraft
from .turn import Attachment, Project, Turn, make_default_project
from .profile import Profile
from .actions import (
    ActionPayload,
    CodeResponse,
    ImageResponse,
    MemoryFact,
    PlanUpdate,
    TextResponse,
)
from .api import AttachmentPayload, ChatRequest, MessageList

__all__ = [
    "Message",
    "MessageDraft",
    "Attachment",
    "Project",
    "Turn",
    "make_default_project",
    "Profile",
    "ActionPayload",
    "CodeResponse",
    "ImageResponse",
    "MemoryFact",
    "PlanUpdate",
    "TextResponse",
    "AttachmentPayload",
    "ChatRequest",
    "MessageList",
]
