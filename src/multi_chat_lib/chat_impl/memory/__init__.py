from .store import InMemoryMessageStore, InMemoryCache

__all__ = ["InMemoryMessageStore", "InMemoryCache"]
