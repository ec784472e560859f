"""Kiné assistant chat service."""

import logging
from datetime import timedelta

from openai import OpenAIError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clients.openai_client import OpenAIClient, openai_client
from core.config import settings
from core.exceptions import ExternalAPIError
from database.models import ChatMessage
from utils.log_sanitizer import sanitize_id
from utils.timestamps import utc_now

logger = logging.getLogger(__name__)


class KineChatService:
    """Service for the kiné assistant conversation."""

    def __init__(self, client: OpenAIClient) -> None:
        """Initialize chat service."""
        self.client = client

    async def recent_history(
        self, db: AsyncSession, kine_id: int, limit: int | None = None
    ) -> list[ChatMessage]:
        """The last ``limit`` messages of a kiné, oldest first."""
        result = await db.execute(
            select(ChatMessage)
            .where(ChatMessage.kine_id == kine_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit or settings.chat_history_limit)
        )
        return list(reversed(result.scalars().all()))

    async def send_message(
        self, db: AsyncSession, kine_id: int, message: str
    ) -> ChatMessage:
        """
        Ask the assistant and persist both turns.

        Args:
            db: Database session
            kine_id: Kiné sending the message
            message: User message

        Returns:
            ChatMessage: The stored assistant reply

        Raises:
            ExternalAPIError: If OpenAI fails; nothing is stored in that case
        """
        history = await self.recent_history(db, kine_id)
        conversation = [{"role": m.role, "content": m.content} for m in history]

        try:
            reply = await self.client.generate_response(message, conversation)
        except OpenAIError as e:
            logger.error(f"OpenAI call failed for kiné {sanitize_id(kine_id)}: {e}")
            raise ExternalAPIError("OpenAI", "Assistant unavailable") from e

        db.add(ChatMessage(kine_id=kine_id, role="user", content=message))
        assistant_message = ChatMessage(kine_id=kine_id, role="assistant", content=reply)
        db.add(assistant_message)
        await db.commit()
        await db.refresh(assistant_message)

        return assistant_message

    async def history(
        self, db: AsyncSession, kine_id: int, days: int | None = None, limit: int = 100
    ) -> list[ChatMessage]:
        query = select(ChatMessage).where(ChatMessage.kine_id == kine_id)
        if days:
            query = query.where(ChatMessage.created_at >= utc_now() - timedelta(days=days))
        result = await db.execute(
            query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def clear_history(self, db: AsyncSession, kine_id: int) -> int:
        result = await db.execute(
            delete(ChatMessage).where(ChatMessage.kine_id == kine_id)
        )
        await db.commit()
        return int(result.rowcount or 0)


def get_chat_service() -> KineChatService:
    """Dependency returning the chat service bound to the global client."""
    return KineChatService(openai_client)
