"""Message data models."""
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from typing import Any, Dict, Optional

SENDER_USER = "user"
SENDER_AI = "ai"

IMAGE_GENERATING = "generating"
IMAGE_COMPLETE = "complete"

TEMP_ID_PREFIX = "temp-"


@dataclass
class MessageDraft:
    """A message that has not been persisted yet (no backend identity)."""
    chat_id: str
    project_id: str
    sender: str
    text: str = ""
    user_id: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = None
    image_base64: Optional[str] = None
    image_status: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    raw_ai_response: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        """Columns to insert into the messages table, skipping unset fields."""
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class Message:
    """Represents a message in the conversation view.

    The id is either a temporary client-side id (``temp-user-…`` /
    ``temp-ai-…``) or the id assigned by the backend once persisted.
    """
    id: str
    chat_id: str
    project_id: str
    sender: str
    text: str = ""
    user_id: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = None
    image_base64: Optional[str] = None
    image_status: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    raw_ai_response: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    @classmethod
    def from_draft(cls, draft: MessageDraft, message_id: str) -> "Message":
        return cls(id=message_id, **asdict(draft))

    def with_changes(self, **changes: Any) -> "Message":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data
