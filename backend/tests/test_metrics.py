"""
Unit tests for Prometheus metrics collection.

Tests verify:
- Endpoint normalization keeps label cardinality bounded
- RED, cache, origin and warming metrics are incremented correctly
- Resource metrics are updated on scrape
- Metrics output is valid Prometheus text format
"""
from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from catalog_cache.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_cache_hit,
    record_cache_miss,
    record_cache_write_failure,
    record_content_copy,
    record_content_view,
    record_http_request,
    record_items_warmed,
    record_origin_request,
    record_warming_run,
    registry,
    set_warming_in_progress,
    update_resource_metrics,
)


def sample(name, **labels):
    return registry.get_sample_value(name, labels) or 0.0


class TestNormalizeEndpoint:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/content/agents/code-reviewer", "/content/agents/{slug}"),
            ("/views/mcp/github?ref=home", "/views/mcp/{slug}"),
            ("/cache/content/rules/no-tabs", "/cache/content/rules/{slug}"),
            ("/views/popular/agents", "/views/popular/agents"),
            ("/content/agents", "/content/agents"),
            ("/health/cache", "/health/cache"),
        ],
    )
    def test_normalize(self, path, expected):
        assert normalize_endpoint(path) == expected


class TestRecorders:
    def test_registry_exists(self):
        assert isinstance(registry, CollectorRegistry)

    def test_http_request_success(self):
        labels = {"method": "GET", "endpoint": "/content/mcp/{slug}", "status": "200"}
        before = sample("http_requests_total", **labels)

        record_http_request("GET", "/content/mcp/github", 200, 0.01)

        assert sample("http_requests_total", **labels) == before + 1

    def test_http_request_error_counts_error(self):
        labels = {"method": "GET", "endpoint": "/content/hooks", "status_code": "503"}
        before = sample("http_errors_total", **labels)

        record_http_request("GET", "/content/hooks", 503, 0.2)

        assert sample("http_errors_total", **labels) == before + 1

    def test_cache_hit_and_miss(self):
        hits = sample("cache_hits_total", cache_type="listing")
        misses = sample("cache_misses_total", cache_type="listing")
        failures = sample("cache_write_failures_total", cache_type="listing")

        record_cache_hit("listing")
        record_cache_miss("listing")
        record_cache_miss("listing")
        record_cache_write_failure("listing")

        assert sample("cache_hits_total", cache_type="listing") == hits + 1
        assert sample("cache_misses_total", cache_type="listing") == misses + 2
        assert sample("cache_write_failures_total", cache_type="listing") == failures + 1

    def test_origin_request(self):
        labels = {"backend": "repository", "operation": "load_item", "outcome": "timeout"}
        before = sample("origin_requests_total", **labels)

        record_origin_request("repository", "load_item", "timeout", 1.5)

        assert sample("origin_requests_total", **labels) == before + 1

    def test_views_and_warming(self):
        views = sample("content_views_recorded_total", category="commands")
        copies = sample("content_copies_recorded_total", category="commands")
        runs = sample("warming_runs_total", trigger="manual", outcome="completed")
        warmed = sample("warming_items_warmed_total", category="commands")

        record_content_view("commands")
        record_content_copy("commands")
        record_warming_run("manual", "completed")
        record_items_warmed("commands", 4)
        record_items_warmed("commands", 0)

        assert sample("content_views_recorded_total", category="commands") == views + 1
        assert sample("content_copies_recorded_total", category="commands") == copies + 1
        assert sample("warming_runs_total", trigger="manual", outcome="completed") == runs + 1
        assert sample("warming_items_warmed_total", category="commands") == warmed + 4

    def test_warming_in_progress_gauge(self):
        set_warming_in_progress(True)
        assert sample("warming_in_progress") == 1
        set_warming_in_progress(False)
        assert sample("warming_in_progress") == 0


class TestResourceMetrics:
    @patch("catalog_cache.core.metrics.psutil")
    def test_update_resource_metrics(self, mock_psutil):
        mock_psutil.cpu_percent.return_value = 42.0
        mock_psutil.virtual_memory.return_value.used = 1024

        update_resource_metrics()

        assert sample("system_cpu_usage_percent") == 42.0
        assert sample("system_memory_usage_bytes") == 1024

    @patch("catalog_cache.core.metrics.psutil")
    def test_update_resource_metrics_failure_is_logged_not_raised(self, mock_psutil):
        mock_psutil.cpu_percent.side_effect = RuntimeError("no /proc")
        update_resource_metrics()


class TestMetricsOutput:
    def test_get_metrics_is_prometheus_text(self):
        record_cache_hit("seo")

        output = get_metrics().decode("utf-8")

        assert "# HELP cache_hits_total" in output
        assert "# TYPE cache_hits_total counter" in output
        assert 'cache_hits_total{cache_type="seo"}' in output

    def test_content_type(self):
        assert get_metrics_content_type().startswith("text/plain")
