"""Interactive client: pick a series, a type and a file, then download it through the edge node."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import httpx

from ..common.keys import encode_component


InputFn = Callable[[str], str]


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Browse and download media through a mediacdn edge node")
    parser.add_argument("--edge-url", default="http://127.0.0.1:8080/cdn", help="Edge node /cdn base URL")
    parser.add_argument("--output-dir", default="downloads", help="Directory downloaded files are written to")
    parser.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    return parser.parse_args(argv)


async def fetch_listing(client: httpx.AsyncClient, url: str) -> list[str]:
    response = await client.get(url)
    response.raise_for_status()
    payload = response.json()
    return [str(item) for item in payload or []]


def choose(options: list[str], heading: str, prompt: str, read: InputFn) -> Optional[str]:
    print(heading)
    for index, option in enumerate(options, start=1):
        print(f"{index}. {option}")
    answer = read(f"{prompt}\n").strip()
    try:
        selection = int(answer)
    except ValueError:
        selection = 0
    if 0 < selection <= len(options):
        return options[selection - 1]
    print("Invalid selection.")
    return None


async def download(client: httpx.AsyncClient, url: str, destination: Path) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    size = 0
    async with client.stream("GET", url) as response:
        response.raise_for_status()
        try:
            with destination.open("wb") as handle:
                async for chunk in response.aiter_bytes():
                    handle.write(chunk)
                    size += len(chunk)
        except (httpx.HTTPError, OSError):
            destination.unlink(missing_ok=True)
            raise
    return size


async def run(
    edge_url: str,
    output_dir: Path,
    *,
    timeout: float = 30.0,
    read: InputFn = input,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    base = edge_url.rstrip("/")
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            series_list = await fetch_listing(client, f"{base}/list-series")
        except httpx.HTTPError as exc:
            print(f"Failed to fetch series list: {exc}")
            return 1
        if not series_list:
            print("No series available.")
            return 0
        series = choose(series_list, "Available series:", "Enter the number of the series you want to choose:", read)
        if series is None:
            return 1

        try:
            types = await fetch_listing(client, f"{base}/list-types/{encode_component(series)}")
        except httpx.HTTPError as exc:
            print(f"Failed to fetch types list: {exc}")
            return 1
        if not types:
            print("No types available for the selected series.")
            return 0
        type_ = choose(types, "Available types:", "Enter the number of the type you want to choose:", read)
        if type_ is None:
            return 1

        try:
            files = await fetch_listing(
                client, f"{base}/list-files/{encode_component(series)}/{encode_component(type_)}"
            )
        except httpx.HTTPError as exc:
            print(f"Failed to fetch file list: {exc}")
            return 1
        if not files:
            print("No files available.")
            return 0
        filename = choose(files, "Files available:", "Enter the number of the file you want to download:", read)
        if filename is None:
            return 1

        url = "/".join([base, encode_component(series), encode_component(type_), encode_component(filename)])
        destination = output_dir / Path(filename).name
        try:
            size = await download(client, url, destination)
        except httpx.HTTPError as exc:
            print(f"Failed to fetch file: {exc}")
            return 1
        print(f"File fetched successfully: {filename} ({size} bytes)")
        print(f"File saved locally in '{output_dir}/' directory.")
        return 0


def main() -> None:
    args = parse_args()
    sys.exit(asyncio.run(run(args.edge_url, Path(args.output_dir), timeout=args.timeout)))


if __name__ == "__main__":
    main()
