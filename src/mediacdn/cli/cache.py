"""Administrative commands against an edge node's cache."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

import httpx

from ..common.keys import encode_component


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or invalidate a mediacdn edge cache")
    parser.add_argument("--edge-url", default="http://127.0.0.1:8080", help="Edge node base URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    invalidate = subparsers.add_parser("invalidate", help="Drop one cached object")
    invalidate.add_argument("series")
    invalidate.add_argument("type")
    invalidate.add_argument("filename")

    status = subparsers.add_parser("status", help="Show cache totals and the most requested objects")
    status.add_argument("--json", action="store_true", help="Output raw JSON")
    return parser.parse_args(argv)


async def invalidate_object(
    base_url: str,
    series: str,
    type_: str,
    filename: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    path = "/".join(encode_component(part) for part in (series, type_, filename))
    async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
        return await client.post(f"{base_url.rstrip('/')}/cdn/invalidate/{path}")


async def fetch_status(base_url: str, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
        response = await client.get(f"{base_url.rstrip('/')}/status")
        response.raise_for_status()
        return response.json()


async def run(args: argparse.Namespace) -> int:
    try:
        return await _run(args)
    except httpx.HTTPError as exc:
        print(f"Request to edge failed: {exc}")
        return 1


async def _run(args: argparse.Namespace) -> int:
    if args.command == "invalidate":
        response = await invalidate_object(args.edge_url, args.series, args.type, args.filename)
        if response.status_code == 404:
            print(f"Not cached: {args.series}/{args.type}/{args.filename}")
            return 1
        if response.is_error:
            print(f"Invalidation failed ({response.status_code}): {response.text}")
            return 1
        print(f"Invalidated {args.series}/{args.type}/{args.filename}")
        return 0

    payload = await fetch_status(args.edge_url)
    if args.json:
        print(json.dumps(payload, indent=2))
        return 0
    print(f"backend={payload.get('backend')} path={payload.get('storage_path')} origin={payload.get('origin')}")
    print(f"entries={payload.get('total_entries')} bytes={payload.get('total_bytes')} limit={payload.get('max_storage_bytes')}")
    for entry in payload.get("top_entries", []):
        print(f"  {entry.get('cache_key')} hits={entry.get('total_hits')} misses={entry.get('total_misses')}")
    return 0


def main() -> None:
    sys.exit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
