"""
Trigger a cache warming run from an external scheduler (cron, CI, etc.).

Usage: python scripts/warm_cache.py [--url=http://localhost:8000] [--category=agents ...] [--force]

The cron secret is read from --token or WARMING_CRON_SECRET; with it the run
is recorded as scheduled. Exits 0 only when the service answers 200.
"""
import argparse
import json
import os
import sys
from typing import List, Optional

import httpx


def build_payload(categories: Optional[List[str]], force: bool) -> dict:
    payload = {"force": force}
    if categories:
        payload["categories"] = categories
    return payload


def trigger_warming(
    base_url: str,
    token: Optional[str],
    categories: Optional[List[str]] = None,
    force: bool = False,
    timeout: float = 600.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Response:
    """POST /cache/warm and return the response."""
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    with httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport) as client:
        return client.post("/cache/warm", json=build_payload(categories, force), headers=headers)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Trigger a cache warming run")
    parser.add_argument("--url", default=os.getenv("CATALOG_CACHE_URL", "http://localhost:8000"),
                        help="Service base URL (default: $CATALOG_CACHE_URL or http://localhost:8000)")
    parser.add_argument("--token", default=os.getenv("WARMING_CRON_SECRET"),
                        help="Cron bearer token (default: $WARMING_CRON_SECRET)")
    parser.add_argument("--category", action="append", dest="categories",
                        help="Category to warm; repeat for several (default: all)")
    parser.add_argument("--force", action="store_true", help="Refresh entries even if still fresh")
    parser.add_argument("--timeout", type=float, default=600.0, help="Request timeout in seconds (default: 600)")
    args = parser.parse_args(argv)

    try:
        response = trigger_warming(args.url, args.token, args.categories, args.force, args.timeout)
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 2

    try:
        body = response.json()
    except ValueError:
        body = {"status_code": response.status_code, "body": response.text}
    print(json.dumps(body, indent=2))

    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
