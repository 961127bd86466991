from .stream_source import OpenAITurnSource

__all__ = ["OpenAITurnSource"]
