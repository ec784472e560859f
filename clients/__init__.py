"""Clients package for external API integrations."""

from .openai_client import OpenAIClient, openai_client
from .whatsapp_client import WhatsAppClient, whatsapp_client

__all__ = ["OpenAIClient", "openai_client", "WhatsAppClient", "whatsapp_client"]
