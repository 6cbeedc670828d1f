"""Embeddable chat widget engine for OpenAI-compatible streaming endpoints.

This package keeps a conversation transcript, queues typed attachments (code,
charts, tables) delivered by a host application, and streams assistant replies
from a chat-completions endpoint into the transcript with support for
cancellation. The primary entry points are ``chat_widget.api.create_app`` for
running the HTTP service and ``chat_widget.service.ChatSession`` for embedding
the engine directly into Python code.
"""

from .config import ModelConfig, WidgetConfig
from .registry import ModelRegistry
from .service import ChatSession, SessionOutcome

__all__ = ["ChatSession", "ModelConfig", "ModelRegistry", "SessionOutcome", "WidgetConfig"]
