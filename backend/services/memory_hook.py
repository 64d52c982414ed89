"""Background extraction of long-term memories after a turn."""
import asyncio
import json
import logging
from typing import Optional

from config import MEMORY_MODEL
from models.actions import parse_memory_facts
from services.background import spawn_background
from services.prompts import MEMORY_EXTRACTION_PROMPT

logger = logging.getLogger(__name__)


class MemoryExtractionHook:
    """Derives memory facts from a finished exchange and stores them."""

    def __init__(self, llm_client, store, model: str = MEMORY_MODEL):
        """
        Args:
            llm_client: LLMClient used for extraction
            store: Storage collaborator providing persist_memory_fact
            model: Model used for extraction
        """
        self.llm_client = llm_client
        self.store = store
        self.model = model

    def trigger(self, user_id: str, user_text: str, ai_text: str, project_id: str) -> Optional[asyncio.Task]:
        """Start extraction as a detached task; failures are only logged."""
        return spawn_background(
            self.extract_and_save(user_id, user_text, ai_text, project_id),
            name=f"memory-extraction:{user_id}",
        )

    async def extract_and_save(self, user_id: str, user_text: str, ai_text: str, project_id: str) -> int:
        """
        Ask the model for memory facts and persist each of them.

        Returns:
            Number of facts saved
        """
        if not user_text.strip() or not ai_text.strip():
            return 0

        prompt = MEMORY_EXTRACTION_PROMPT.format(
            project_id=project_id,
            user_text=user_text,
            ai_text=ai_text,
        )
        response = await self.llm_client.generate(
            model=self.model,
            prompt=prompt,
            max_tokens=400,
            json_mode=True,
        )

        try:
            data = json.loads(response.text)
        except json.JSONDecodeError:
            logger.warning("Memory extraction returned invalid JSON; nothing saved")
            return 0

        raw = data.get("memories") if isinstance(data, dict) else None
        facts = parse_memory_facts(raw)
        for fact in facts:
            await self.store.persist_memory_fact(user_id, fact.layer, fact.key, fact.value)

        logger.info(f"Extracted {len(facts)} memories for user {user_id}")
        return len(facts)
