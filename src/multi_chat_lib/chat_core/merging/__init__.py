"""Turn-part merging."""

from .part_merger import PartMerger, MergedParts, TEXT_SEPARATOR

__all__ = ["PartMerger", "MergedParts", "TEXT_SEPARATOR"]
