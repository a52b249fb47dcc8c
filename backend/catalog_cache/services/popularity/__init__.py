"""
View and copy tracking and popularity rankings.
"""
from catalog_cache.services.popularity.tracker import (
    PopularityTracker,
    generate_copy_count_key,
    generate_daily_views_key,
    generate_most_copied_key,
    generate_popular_key,
    generate_total_views_key,
    generate_trending_key,
    get_popularity_tracker,
    view_count_map_key,
)

__all__ = [
    "PopularityTracker",
    "generate_copy_count_key",
    "generate_daily_views_key",
    "generate_most_copied_key",
    "generate_popular_key",
    "generate_total_views_key",
    "generate_trending_key",
    "get_popularity_tracker",
    "view_count_map_key",
]
