"""
Tests for the external warming trigger script.
"""
import json
from unittest.mock import patch

import httpx

from scripts.warm_cache import build_payload, main, trigger_warming


def test_build_payload():
    assert build_payload(None, False) == {"force": False}
    assert build_payload(["agents", "mcp"], True) == {"force": True, "categories": ["agents", "mcp"]}


def test_trigger_sends_bearer_and_body():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True})

    response = trigger_warming(
        "http://cache.local/",
        "cron-secret",
        categories=["hooks"],
        transport=httpx.MockTransport(handler),
    )

    assert response.status_code == 200
    assert seen == {"path": "/cache/warm", "auth": "Bearer cron-secret", "body": {"force": False, "categories": ["hooks"]}}


def test_trigger_without_token_sends_no_header():
    def handler(request):
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"success": True})

    trigger_warming("http://cache.local", None, transport=httpx.MockTransport(handler))


def test_main_exit_codes(capsys):
    with patch("scripts.warm_cache.trigger_warming", return_value=httpx.Response(200, json={"success": True})):
        assert main(["--url", "http://cache.local"]) == 0

    with patch("scripts.warm_cache.trigger_warming", return_value=httpx.Response(429, json={"success": False})):
        assert main(["--url", "http://cache.local"]) == 1

    with patch("scripts.warm_cache.trigger_warming", side_effect=httpx.ConnectError("refused")):
        assert main(["--url", "http://cache.local"]) == 2

    assert '"success": true' in capsys.readouterr().out
