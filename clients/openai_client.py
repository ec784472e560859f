"""OpenAI client for the kiné assistant."""

from typing import Any

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from core.config import settings

DEFAULT_SYSTEM_PROMPT = (
    "Tu es l'assistant de KineAI, destiné aux kinésithérapeutes. "
    "Réponds de façon concise et professionnelle aux questions cliniques, "
    "administratives et pratiques. Tu ne poses pas de diagnostic à la place "
    "du praticien."
)


class OpenAIClient:
    """Client for OpenAI chat completions."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        """Initialize OpenAI client."""
        self.client = AsyncOpenAI(api_key=api_key or settings.openai_api_key)
        self.model = model or settings.openai_chat_model

    async def generate_response(
        self,
        text: str,
        conversation_history: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
    ) -> str:
        """
        Generate an assistant reply.

        Args:
            text: User input text
            conversation_history: Previous turns, oldest first
            system_prompt: Overrides the default system prompt

        Returns:
            Generated response text
        """
        messages: list[ChatCompletionMessageParam] = [
            {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT}
        ]
        for turn in conversation_history or []:
            messages.append({"role": turn["role"], "content": turn["content"]})  # type: ignore[misc]
        messages.append({"role": "user", "content": text})

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
        )

        return response.choices[0].message.content or ""


# Global client instance
openai_client = OpenAIClient()
