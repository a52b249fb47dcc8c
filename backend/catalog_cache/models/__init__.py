"""
Data models: the ContentItem schema, warming run state and API responses.
"""
from .content import ALL_CATEGORIES, Category, ContentItem
from .warming import WarmingRun, WarmingState, WarmingTrigger

__all__ = [
    "ALL_CATEGORIES",
    "Category",
    "ContentItem",
    "WarmingRun",
    "WarmingState",
    "WarmingTrigger",
]
