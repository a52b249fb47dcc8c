"""
Database origin: the `content` table in Supabase.

Columns are snake_case (category, slug, title, description, tags, author,
date_added, full_content). The Supabase client is synchronous, so queries
run in a worker thread to keep the event loop free.
"""
import asyncio
from typing import Any, Dict, List, Optional

from catalog_cache.core.database import get_supabase_client
from catalog_cache.core.errors import OriginUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import Category
from catalog_cache.services.origin.base import OriginLoader

logger = get_logger(__name__)

CONTENT_TABLE = "content"
METADATA_COLUMNS = "category, slug, title, description, tags, author, date_added"
FULL_COLUMNS = METADATA_COLUMNS + ", full_content"


class DatabaseOriginLoader(OriginLoader):
    backend = "database"

    def __init__(self, client=None, timeout_seconds: Optional[float] = None):
        super().__init__(timeout_seconds=timeout_seconds)
        self._client = client

    def _get_client(self, operation: str, category: Category):
        client = self._client or get_supabase_client()
        if client is None:
            raise OriginUnavailableError(
                "database client not available", operation=operation, category=category.value
            )
        return client

    async def _fetch_category(self, category: Category) -> List[Dict[str, Any]]:
        client = self._get_client("load_category", category)

        def query():
            return (
                client.table(CONTENT_TABLE)
                .select(METADATA_COLUMNS)
                .eq("category", category.value)
                .order("slug")
                .execute()
            )

        try:
            response = await asyncio.to_thread(query)
        except Exception as e:
            logger.error(
                "origin_database_query_failed",
                operation="load_category",
                category=category.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OriginUnavailableError(
                f"database query failed: {e}", operation="load_category", category=category.value
            ) from e

        return response.data or []

    async def _fetch_item(self, category: Category, slug: str) -> Optional[Dict[str, Any]]:
        client = self._get_client("load_item", category)

        def query():
            return (
                client.table(CONTENT_TABLE)
                .select(FULL_COLUMNS)
                .eq("category", category.value)
                .eq("slug", slug)
                .limit(1)
                .execute()
            )

        try:
            response = await asyncio.to_thread(query)
        except Exception as e:
            logger.error(
                "origin_database_query_failed",
                operation="load_item",
                category=category.value,
                slug=slug,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OriginUnavailableError(
                f"database query failed: {e}", operation="load_item", category=category.value, slug=slug
            ) from e

        rows = response.data or []
        return rows[0] if rows else None
