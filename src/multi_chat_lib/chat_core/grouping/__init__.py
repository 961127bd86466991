"""Multi-model turn grouping."""

from .aggregator import (
    GroupAggregator,
    GroupKeyStrategy,
    ContentGroupKey,
    ModelChatSnapshot,
    LOADING_ID_PREFIX,
)

__all__ = [
    "GroupAggregator",
    "GroupKeyStrategy",
    "ContentGroupKey",
    "ModelChatSnapshot",
    "LOADING_ID_PREFIX",
]
