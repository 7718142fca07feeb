"""
SDK for AI Request Guard.

Provides executable-call builders and the role-aware completion service.
"""

from .completion import CompletionService, ConversationHistory, ModelRole
from .openai_client import OpenAIChatClient

__all__ = ["CompletionService", "ConversationHistory", "ModelRole", "OpenAIChatClient"]
