"""Supabase-backed storage for messages, profiles, credits and memories."""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from supabase import acreate_client, AsyncClient

from config import SUPABASE_URL, SUPABASE_KEY
from models.message import Message, MessageDraft
from models.profile import Profile
from models.turn import Project

logger = logging.getLogger(__name__)

COST_SETTING_PREFIX = "cost_image_"
MESSAGE_COLUMNS = (
    "chat_id", "project_id", "user_id", "sender", "text", "code", "language",
    "image_base64", "image_status", "plan", "raw_ai_response",
)
_FRACTION_RE = re.compile(r"\.(\d+)")


class StoreError(Exception):
    """Raised when a storage call fails or returns nothing usable."""


class SupabaseStore:
    """Implements the storage collaborators of the chat core on Supabase."""

    def __init__(self, client: AsyncClient):
        """
        Initialize the store with an async Supabase client.

        Args:
            client: Connected Supabase AsyncClient
        """
        self.client = client

    @classmethod
    async def create(cls, url: Optional[str] = None, key: Optional[str] = None) -> "SupabaseStore":
        """Connect to Supabase using the configured credentials."""
        url = url or SUPABASE_URL
        key = key or SUPABASE_KEY
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

        client = await acreate_client(url, key)
        logger.info("SupabaseStore initialized")
        return cls(client)

    async def persist_message(self, draft: MessageDraft) -> Message:
        """
        Insert a message and return it with its backend identity.

        Args:
            draft: Message content without an id

        Returns:
            Persisted Message

        Raises:
            StoreError: If the insert fails or returns no row
        """
        try:
            result = await self.client.table("messages").insert(draft.to_row()).execute()
        except Exception as e:
            logger.error(f"Error persisting message for chat {draft.chat_id}: {e}")
            raise StoreError(f"Could not save message: {e}") from e

        if not result.data:
            raise StoreError("Could not save message: no row returned")

        message = self._row_to_message(result.data[0])
        logger.info(f"Persisted {message.sender} message {message.id} in chat {message.chat_id}")
        return message

    async def fetch_history(self, chat_id: str) -> List[Message]:
        """
        Retrieve all messages of a chat ordered by creation time.

        Args:
            chat_id: ID of the chat

        Returns:
            Ordered list of messages
        """
        try:
            result = await (
                self.client.table("messages")
                .select("*")
                .eq("chat_id", chat_id)
                .order("created_at", desc=False)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error retrieving messages for chat {chat_id}: {e}")
            raise StoreError(f"Could not load messages: {e}") from e

        messages = [self._row_to_message(row) for row in result.data or []]
        logger.debug(f"Retrieved {len(messages)} messages for chat {chat_id}")
        return messages

    async def fetch_profile(self, user_id: str) -> Profile:
        """
        Fetch the current balance, role and image model preference of a user.

        Raises:
            StoreError: If the profile cannot be loaded
        """
        try:
            result = await self.client.table("profiles").select("*").eq("id", user_id).single().execute()
        except Exception as e:
            logger.error(f"Error fetching profile {user_id}: {e}")
            raise StoreError("Could not re-fetch user profile for image generation.") from e

        row = result.data
        if not row:
            raise StoreError("Could not re-fetch user profile for image generation.")

        return Profile(
            user_id=row["id"],
            balance=int(row.get("credits") or 0),
            role=row.get("membership") or row.get("role") or "user",
            model_preference=row.get("preferred_image_model"),
        )

    async def fetch_cost_settings(self) -> Dict[str, int]:
        """
        Fetch per-model image costs from the app settings row.

        Returns:
            Mapping of image model name to credit cost

        Raises:
            StoreError: If the settings cannot be loaded
        """
        try:
            result = await self.client.table("app_settings").select("*").single().execute()
        except Exception as e:
            logger.error(f"Error fetching app settings: {e}")
            raise StoreError("Could not load credit cost settings.") from e

        if not result.data:
            raise StoreError("Could not load credit cost settings.")

        return {
            column[len(COST_SETTING_PREFIX):]: int(value)
            for column, value in result.data.items()
            if column.startswith(COST_SETTING_PREFIX) and value is not None
        }

    async def deduct_credits(self, user_id: str, amount: int) -> None:
        """Debit credits through the ``deduct_credits`` database function."""
        try:
            await self.client.rpc("deduct_credits", {"p_user_id": user_id, "p_amount": amount}).execute()
        except Exception as e:
            logger.error(f"Error deducting {amount} credits from {user_id}: {e}")
            raise StoreError(f"Could not deduct credits: {e}") from e
        logger.info(f"Deducted {amount} credits from user {user_id}")

    async def persist_memory_fact(self, user_id: str, layer: str, key: str, value: str) -> None:
        """Store or overwrite one long-term memory fact."""
        await self.client.table("memories").upsert(
            {"user_id": user_id, "layer": layer, "key": key, "value": value},
            on_conflict="user_id,layer,key",
        ).execute()
        logger.info(f"Saved memory {layer}/{key} for user {user_id}")

    async def fetch_memory_context(self, user_id: str) -> str:
        """
        Format the user's stored memories for the system instruction.

        Returns:
            One ``[layer] key: value`` line per fact, or an empty string
        """
        try:
            result = await (
                self.client.table("memories")
                .select("layer,key,value")
                .eq("user_id", user_id)
                .order("layer", desc=False)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Could not load memories for user {user_id}: {e}")
            return ""

        return "\n".join(
            f"[{row['layer']}] {row['key']}: {row['value']}" for row in result.data or []
        )

    async def update_message_plan(self, message_id: str, plan: Dict[str, Any]) -> None:
        """Replace the plan attached to a persisted message."""
        await self.client.table("messages").update({"plan": plan}).eq("id", message_id).execute()
        logger.info(f"Updated plan for message {message_id}")

    async def fetch_project(self, project_id: str) -> Optional[Project]:
        """Look up a project, returning None when it does not exist."""
        result = await self.client.table("projects").select("*").eq("id", project_id).execute()
        if not result.data:
            return None
        row = result.data[0]
        project = Project(
            id=row["id"],
            user_id=row["user_id"],
            name=row.get("name") or "",
            description=row.get("description") or "",
        )
        if row.get("default_model"):
            project.default_model = row["default_model"]
        return project

    def _row_to_message(self, row: Dict[str, Any]) -> Message:
        fields = {column: row.get(column) for column in MESSAGE_COLUMNS}
        fields["text"] = fields["text"] or ""
        created_at = row.get("created_at")
        return Message(
            id=str(row["id"]),
            created_at=self._parse_timestamp(created_at) if created_at else datetime.now(),
            **fields,
        )

    def _parse_timestamp(self, timestamp_str: str) -> datetime:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return fractional seconds with fewer or more than six
        digits, which fromisoformat() on older interpreters rejects.
        """
        timestamp_str = timestamp_str.replace("Z", "+00:00")
        timestamp_str = _FRACTION_RE.sub(
            lambda match: "." + match.group(1)[:6].ljust(6, "0"),
            timestamp_str,
            count=1,
        )
        return datetime.fromisoformat(timestamp_str)
