"""Headless client: mirrors the household into a local cache and prints changes.

    klusjes-watch --api-url http://localhost:8000 --cache-dir ~/.cache/klusjes
    klusjes-watch --once        # load, print a summary, exit
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from klusjes_sync.api_client import KlusjesApi
from klusjes_sync.cache import ClientCache
from klusjes_sync.coordinator import SyncCoordinator
from klusjes_sync.feed_client import ChangeFeedClient
from klusjes_sync.pending import PendingOperationsLog
from klusjes_sync.storage import JsonFileStorage

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("KLUSJES_API_URL", "http://localhost:8000")
DEFAULT_CACHE_DIR = Path(os.getenv("KLUSJES_CACHE_DIR", str(Path.home() / ".cache" / "klusjes")))


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="klusjes-watch", description="Follow a Klusjes household from the terminal")
    p.add_argument("--api-url", default=DEFAULT_API_URL, help=f"API base url (default: {DEFAULT_API_URL})")
    p.add_argument("--cache-dir", type=Path, default=DEFAULT_CACHE_DIR, help=f"Local cache directory (default: {DEFAULT_CACHE_DIR})")
    p.add_argument("--refresh", type=float, default=3.0, help="Seconds between background refreshes")
    p.add_argument("--no-feed", action="store_true", help="Poll only, do not open the change feed")
    p.add_argument("--once", action="store_true", help="Load once, print a summary and exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def format_summary(cache: ClientCache) -> str:
    lines = []
    for room in cache.rooms():
        stats = cache.task_stats(room["id"])
        lines.append(
            f"{room['name']:<20} {stats['completed']}/{stats['total']} done"
            f"  ({stats['inProgress']} busy, {stats['waiting']} waiting, {stats['priority']} priority)"
        )
    overall = cache.task_stats()
    lines.append(f"{'Total':<20} {overall['completed']}/{overall['total']} done ({overall['completionRate']}%)")
    return "\n".join(lines)


async def watch(args: argparse.Namespace) -> None:
    storage = JsonFileStorage(args.cache_dir)
    cache = ClientCache(storage)
    pending = PendingOperationsLog(storage)
    feed = None if args.no_feed or args.once else ChangeFeedClient(f"{args.api_url.rstrip('/')}/api/feed")

    async with KlusjesApi(args.api_url) as api:
        coordinator = SyncCoordinator(api, cache, pending, feed=feed, refresh_interval=args.refresh)
        if args.once:
            await coordinator.load_initial()
            print(format_summary(cache))
            return

        def on_change(collection: str) -> None:
            print(format_summary(cache), end="\n\n", flush=True)

        unsubscribe = cache.subscribe(on_change)
        await coordinator.start()
        try:
            await asyncio.Event().wait()
        finally:
            unsubscribe()
            await coordinator.stop()
            logger.info("Stopped; %s", coordinator.diagnostics())


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    try:
        asyncio.run(watch(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
