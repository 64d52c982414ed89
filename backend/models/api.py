"""API request/response models."""
from typing import List, Optional
from pydantic import BaseModel, Field


class AttachmentPayload(BaseModel):
    """A file attached to a chat request, base64 encoded."""
    filename: str
    mime_type: str
    data_base64: str


class ChatRequest(BaseModel):
    """Request body for a streamed chat turn."""
    user_id: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)
    text: str = ""
    project_id: Optional[str] = None
    attachments: List[AttachmentPayload] = Field(default_factory=list)


class MessageList(BaseModel):
    """Snapshot of a conversation view."""
    chat_id: str
    messages: List[dict]
