"""
Unit tests for origin loaders: shared validation policy, the database
loader (mocked Supabase client) and the repository loader (mocked HTTP).
"""
from unittest.mock import MagicMock, patch

import httpx
import pytest

from catalog_cache.core.config import Settings
from catalog_cache.core.errors import OriginUnavailableError, ValidationFailedError
from catalog_cache.models.content import Category
from catalog_cache.services.origin import (
    DatabaseOriginLoader,
    RepositoryOriginLoader,
    create_origin_loader,
    validate_record,
    validate_records,
)

from conftest import FakeOriginLoader, make_record


def test_validate_record_fills_missing_category():
    item = validate_record({"slug": "a", "title": "A"}, Category.AGENTS)
    assert item.category == Category.AGENTS


def test_validate_record_rejects_other_category():
    with pytest.raises(ValidationFailedError):
        validate_record(make_record("mcp", "a"), Category.AGENTS)


def test_validate_records_drops_invalid():
    records = [
        make_record("agents", "good"),
        make_record("agents", "Bad Slug"),
        {"slug": "no-title"},
        "not-an-object",
        make_record("agents", "also-good", tags=None, description=None),
    ]

    items = validate_records(records, Category.AGENTS)

    assert [item.slug for item in items] == ["good", "also-good"]
    assert items[1].tags == []
    assert items[1].description == ""


@pytest.mark.asyncio
async def test_invalid_full_record_is_treated_as_missing():
    origin = FakeOriginLoader({"agents": [{"category": "agents", "slug": "a", "title": ""}]})
    assert await origin.load_full_content(Category.AGENTS, "a") is None


@pytest.mark.asyncio
async def test_load_full_content_rejects_bad_slug():
    origin = FakeOriginLoader({})
    with pytest.raises(ValueError):
        await origin.load_full_content(Category.AGENTS, "../etc")


@pytest.mark.asyncio
async def test_timeout_is_origin_unavailable():
    origin = FakeOriginLoader({"agents": [make_record("agents", "a")]}, timeout_seconds=0.01)
    origin.delay = 0.5

    with pytest.raises(OriginUnavailableError) as exc_info:
        await origin.load_category_metadata(Category.AGENTS)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_seo_bundle_is_partial_when_a_category_fails(origin):
    origin.failing_categories.add("mcp")

    bundle = await origin.load_seo_bundle()

    assert Category.MCP not in bundle
    assert [item.slug for item in bundle[Category.AGENTS]] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_seo_bundle_fails_when_every_category_fails(origin):
    origin.failing_categories.update(c.value for c in Category)
    with pytest.raises(OriginUnavailableError):
        await origin.load_seo_bundle()


# ---- database origin ----

def make_supabase_client(rows):
    client = MagicMock()
    response = MagicMock(data=rows)
    query = client.table.return_value.select.return_value
    query.eq.return_value.order.return_value.execute.return_value = response
    query.eq.return_value.eq.return_value.limit.return_value.execute.return_value = response
    return client


@pytest.mark.asyncio
async def test_database_loader_category():
    rows = [
        {"category": "agents", "slug": "a", "title": "A", "tags": ["x"], "date_added": "2024-05-01"},
        {"category": "agents", "slug": "b", "title": None},
    ]
    client = make_supabase_client(rows)
    loader = DatabaseOriginLoader(client=client, timeout_seconds=5)

    items = await loader.load_category_metadata(Category.AGENTS)

    assert [item.slug for item in items] == ["a"]
    assert items[0].date_added.isoformat() == "2024-05-01"
    client.table.assert_called_with("content")


@pytest.mark.asyncio
async def test_database_loader_item():
    rows = [{"category": "agents", "slug": "a", "title": "A", "full_content": "body"}]
    loader = DatabaseOriginLoader(client=make_supabase_client(rows), timeout_seconds=5)

    item = await loader.load_full_content(Category.AGENTS, "a")
    assert item.full_content == "body"


@pytest.mark.asyncio
async def test_database_loader_item_not_found():
    loader = DatabaseOriginLoader(client=make_supabase_client([]), timeout_seconds=5)
    assert await loader.load_full_content(Category.AGENTS, "a") is None


@pytest.mark.asyncio
async def test_database_loader_query_error_is_unavailable():
    client = MagicMock()
    client.table.side_effect = RuntimeError("connection reset")
    loader = DatabaseOriginLoader(client=client, timeout_seconds=5)

    with pytest.raises(OriginUnavailableError):
        await loader.load_category_metadata(Category.AGENTS)


@pytest.mark.asyncio
async def test_database_loader_without_client_is_unavailable():
    with patch("catalog_cache.services.origin.database.get_supabase_client", return_value=None):
        loader = DatabaseOriginLoader(timeout_seconds=5)
        with pytest.raises(OriginUnavailableError):
            await loader.load_full_content(Category.AGENTS, "a")


# ---- repository origin ----

def make_repository(handler, token=None):
    return RepositoryOriginLoader(
        base_url="https://content.example/data",
        token=token,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_repository_loader_category_index():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"items": [make_record("mcp", "github"), {"slug": "BAD"}]})

    loader = make_repository(handler, token="secret")
    items = await loader.load_category_metadata(Category.MCP)
    await loader.close()

    assert seen == {"path": "/data/mcp/index.json", "auth": "Bearer secret"}
    assert [item.slug for item in items] == ["github"]
    assert items[0].full_content is None


@pytest.mark.asyncio
async def test_repository_loader_item():
    def handler(request):
        assert request.url.path == "/data/rules/x.json"
        return httpx.Response(200, json={"category": "rules", "slug": "x", "title": "X", "fullContent": "body"})

    loader = make_repository(handler)
    item = await loader.load_full_content(Category.RULES, "x")

    assert item.title == "X"
    assert item.full_content == "body"


@pytest.mark.asyncio
async def test_repository_loader_404_is_not_found():
    loader = make_repository(lambda request: httpx.Response(404))

    assert await loader.load_full_content(Category.RULES, "missing") is None
    assert await loader.load_category_metadata(Category.RULES) == []


@pytest.mark.asyncio
async def test_repository_loader_5xx_is_unavailable():
    loader = make_repository(lambda request: httpx.Response(502))
    with pytest.raises(OriginUnavailableError):
        await loader.load_full_content(Category.RULES, "x")


@pytest.mark.asyncio
async def test_repository_loader_malformed_json_is_unavailable():
    loader = make_repository(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(OriginUnavailableError):
        await loader.load_category_metadata(Category.RULES)


@pytest.mark.asyncio
async def test_repository_loader_transport_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    loader = make_repository(handler)
    with pytest.raises(OriginUnavailableError):
        await loader.load_full_content(Category.RULES, "x")


def test_factory_selects_backend():
    settings = Settings(origin_backend="repository", content_repository_url="https://content.example")
    with patch("catalog_cache.services.origin.get_settings", return_value=settings), \
            patch("catalog_cache.services.origin.repository.get_settings", return_value=settings):
        assert isinstance(create_origin_loader(), RepositoryOriginLoader)
    assert isinstance(create_origin_loader("database"), DatabaseOriginLoader)
    with pytest.raises(ValueError):
        create_origin_loader("ftp")


def test_repository_loader_requires_url():
    with patch("catalog_cache.services.origin.repository.get_settings", return_value=Settings()):
        with pytest.raises(ValueError):
            RepositoryOriginLoader(timeout_seconds=5)
