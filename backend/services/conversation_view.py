"""Live, ordered view of one conversation's messages."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from models.message import Message

logger = logging.getLogger(__name__)

MESSAGES_ADDED = "messages_added"
MESSAGES_REPLACED = "messages_replaced"
MESSAGE_UPDATED = "message_updated"
TEXT_DELTA = "text_delta"
MESSAGES_REMOVED = "messages_removed"
TOAST = "toast"
TURN_STATE = "turn_state"


@dataclass
class ViewEvent:
    """A change published to view subscribers."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.data}


Listener = Callable[[ViewEvent], None]


class ConversationView:
    """
    Ordered message list with change notification.

    Identity substitution (temporary id to persisted id) replaces an entry
    at its position; it never removes and re-appends.
    """

    def __init__(self, chat_id: str, messages: Optional[List[Message]] = None):
        self.chat_id = chat_id
        self._messages: List[Message] = list(messages or [])
        self._listeners: List[Listener] = []
        self.busy = False

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def find(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def append(self, *messages: Message) -> None:
        self._messages.extend(messages)
        self.publish(MESSAGES_ADDED, messages=[m.to_dict() for m in messages])

    def replace(self, message_id: str, *replacements: Message) -> bool:
        """
        Substitute one entry with zero or more messages at the same position.

        Returns:
            False if no entry has the given id
        """
        index = self._index_of(message_id)
        if index is None:
            logger.warning(f"Cannot replace unknown message {message_id} in chat {self.chat_id}")
            return False

        self._messages[index:index + 1] = list(replacements)
        self.publish(MESSAGES_REPLACED, id=message_id, messages=[m.to_dict() for m in replacements])
        return True

    def update(self, message_id: str, **changes: Any) -> bool:
        """Change fields of one entry in place."""
        index = self._index_of(message_id)
        if index is None:
            return False

        self._messages[index] = self._messages[index].with_changes(**changes)
        self.publish(MESSAGE_UPDATED, id=message_id, changes=changes)
        return True

    def append_text(self, message_id: str, delta: str) -> bool:
        """Append streamed text to one entry."""
        index = self._index_of(message_id)
        if index is None:
            return False

        message = self._messages[index]
        self._messages[index] = message.with_changes(text=message.text + delta)
        self.publish(TEXT_DELTA, id=message_id, delta=delta)
        return True

    def remove(self, *message_ids: str) -> int:
        """Drop every entry whose id is given; returns how many were removed."""
        ids = set(message_ids)
        before = len(self._messages)
        self._messages = [m for m in self._messages if m.id not in ids]
        removed = before - len(self._messages)
        if removed:
            self.publish(MESSAGES_REMOVED, ids=sorted(ids))
        return removed

    def publish(self, event_type: str, **data: Any) -> None:
        event = ViewEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"View listener failed on {event_type}: {e}", exc_info=True)

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None
