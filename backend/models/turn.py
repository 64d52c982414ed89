"""Turn and project data models."""
from dataclasses import dataclass, field
from typing import List

from config import CHAT_MODEL


@dataclass
class Attachment:
    """A file the user attached to a turn."""
    filename: str
    mime_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class Project:
    """Project context a conversation belongs to."""
    id: str
    user_id: str
    name: str
    description: str = ""
    default_model: str = CHAT_MODEL


def make_default_project(user_id: str) -> Project:
    """Build the stand-in project used for chats outside any real project."""
    return Project(
        id="autonomous-project",
        user_id=user_id,
        name="Autonomous Chat",
        description="A personal chat with the AI.",
    )


@dataclass
class Turn:
    """One user submission, consumed by the turn orchestrator."""
    text: str
    chat_id: str
    user_id: str
    project: Project
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.attachments
