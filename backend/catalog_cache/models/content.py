"""
Content catalog models.

ContentItem is the single normalized shape every origin is converted to.
Field names are snake_case in Python and camelCase on the wire (the shape
the content store and the web frontend use); both are accepted on input.
"""
import re
from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
MAX_SLUG_LENGTH = 200

_slug_re = re.compile(SLUG_PATTERN)


class Category(str, Enum):
    """Closed set of content categories."""
    AGENTS = "agents"
    MCP = "mcp"
    RULES = "rules"
    COMMANDS = "commands"
    HOOKS = "hooks"
    STATUSLINES = "statuslines"
    COLLECTIONS = "collections"


ALL_CATEGORIES: List[Category] = list(Category)


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and len(slug) <= MAX_SLUG_LENGTH and bool(_slug_re.match(slug))


def validate_slug(slug: str) -> str:
    """Return slug unchanged or raise ValueError."""
    if not is_valid_slug(slug):
        raise ValueError(f"invalid slug: {slug!r}")
    return slug


def parse_category(value) -> Category:
    """Coerce a string to Category or raise ValueError."""
    if isinstance(value, Category):
        return value
    try:
        return Category(value)
    except ValueError:
        raise ValueError(f"unknown category: {value!r}")


class ContentItem(BaseModel):
    """A category-tagged catalog record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    category: Category
    slug: str = Field(..., min_length=1, max_length=MAX_SLUG_LENGTH)
    title: str = Field(..., min_length=1)
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    author: str = ""
    date_added: Optional[date] = None
    full_content: Optional[str] = None

    @field_validator("slug")
    @classmethod
    def slug_must_be_url_safe(cls, v: str) -> str:
        return validate_slug(v)

    @field_validator("tags", mode="before")
    @classmethod
    def tags_default_when_null(cls, v):
        return [] if v is None else v

    @field_validator("description", "author", mode="before")
    @classmethod
    def text_default_when_null(cls, v):
        return "" if v is None else v

    def metadata_only(self) -> "ContentItem":
        """Copy without the (large) full content body."""
        return self.model_copy(update={"full_content": None})

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
