"""Live model tasks and the public sync facade."""

from .model_task import ModelTask
from .conversation_sync import ConversationSync

__all__ = ["ModelTask", "ConversationSync"]
