from .memory import InMemoryMessageStore, InMemoryCache
from .openai_api import OpenAITurnSource

__all__ = ["InMemoryMessageStore", "InMemoryCache", "OpenAITurnSource"]
