"""
Response models for API endpoints.

These models define the structure of API responses.
"""
from typing import List, Optional
from pydantic import BaseModel, Field

from catalog_cache.models.content import Category


class WarmRequest(BaseModel):
    """Optional body of POST /cache/warm."""
    categories: Optional[List[Category]] = Field(
        None, description="Categories to warm (omit for all categories)"
    )
    force: bool = Field(False, description="Refresh entries even if they are still fresh")


class WarmResponse(BaseModel):
    success: bool
    message: str
    timestamp: str
    run: Optional[dict] = None


class ViewCountResponse(BaseModel):
    category: Category
    slug: str
    views: int
    daily_views: int


class PopularItem(BaseModel):
    slug: str
    views: int


class PopularResponse(BaseModel):
    category: Category
    items: List[PopularItem]


class TrendingResponse(BaseModel):
    category: Category
    days: int
    items: List[PopularItem]


class InvalidationResponse(BaseModel):
    pattern: str
    keys_deleted: int


class CopyCountResponse(BaseModel):
    category: Category
    slug: str
    copies: int


class CopiedItem(BaseModel):
    slug: str
    copies: int


class MostCopiedResponse(BaseModel):
    category: Category
    items: List[CopiedItem]
