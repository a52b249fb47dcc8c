"""
Versioned content store origin, read over HTTP.

Layout under CONTENT_REPOSITORY_URL:
- `{base}/{category}/index.json`: list of item metadata (or `{"items": [...]}`)
- `{base}/{category}/{slug}.json`: one full item

Records use the camelCase field names of the content store.
"""
from typing import Any, Dict, List, Optional

import httpx

from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import OriginNotFoundError, OriginUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import Category
from catalog_cache.services.origin.base import OriginLoader

logger = get_logger(__name__)


class RepositoryOriginLoader(OriginLoader):
    backend = "repository"

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        settings = get_settings()
        base_url = base_url or settings.content_repository_url
        if not base_url:
            raise ValueError("CONTENT_REPOSITORY_URL is required for the repository origin")
        token = token or settings.content_repository_token

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, operation: str, category: Category, slug: Optional[str] = None) -> Any:
        try:
            response = await self._client.get(path)
        except httpx.TimeoutException as e:
            raise OriginUnavailableError(
                "content store timed out", operation=operation, category=category.value, slug=slug
            ) from e
        except httpx.HTTPError as e:
            logger.warning(
                "origin_repository_request_failed",
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OriginUnavailableError(
                f"content store request failed: {e}", operation=operation, category=category.value, slug=slug
            ) from e

        if response.status_code == 404:
            raise OriginNotFoundError(
                f"{path} not found", operation=operation, category=category.value, slug=slug
            )
        if response.status_code >= 400:
            raise OriginUnavailableError(
                f"content store returned HTTP {response.status_code}",
                operation=operation,
                category=category.value,
                slug=slug,
            )

        try:
            return response.json()
        except ValueError as e:
            raise OriginUnavailableError(
                "content store returned malformed JSON", operation=operation, category=category.value, slug=slug
            ) from e

    async def _fetch_category(self, category: Category) -> List[Dict[str, Any]]:
        try:
            payload = await self._get_json(f"/{category.value}/index.json", "load_category", category)
        except OriginNotFoundError:
            # No index yet means an empty category
            return []
        if isinstance(payload, dict):
            payload = payload.get("items")
        if not isinstance(payload, list):
            raise OriginUnavailableError(
                "malformed category index", operation="load_category", category=category.value
            )
        return payload

    async def _fetch_item(self, category: Category, slug: str) -> Optional[Dict[str, Any]]:
        payload = await self._get_json(f"/{category.value}/{slug}.json", "load_item", category, slug=slug)
        if not isinstance(payload, dict):
            raise OriginUnavailableError(
                "malformed item payload", operation="load_item", category=category.value, slug=slug
            )
        return payload
