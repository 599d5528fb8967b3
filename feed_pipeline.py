#!/usr/bin/env python3
"""
Feed pipeline: one scheduled fetch -> summarize -> cache -> mark-read loop per feed group
"""

import time
from dataclasses import dataclass
from threading import Event, Thread
from typing import Callable, Optional

from config_loader import FeedGroupConfig
from feed_client import FeedClient, num_entries
from scraper import Scraper, close_scraper, new_scraper


@dataclass(frozen=True)
class FeedGroup:
    """A feed group's config together with the client that owns its cache."""
    config: FeedGroupConfig
    client: FeedClient

    @property
    def name(self) -> str:
        return self.config.name


@dataclass
class CycleResult:
    fetched: int = 0
    delivered: int = 0
    marked: int = 0
    failed: bool = False


class FeedPipeline:
    """Runs fetch cycles for one feed group at a fixed interval."""

    def __init__(self, group: FeedGroup, interval_seconds: int,
                 scraper_factory: Callable[[], Optional[Scraper]] = new_scraper,
                 verbose: bool = False):
        self.group = group
        self.interval_seconds = interval_seconds
        self.scraper_factory = scraper_factory
        self.verbose = verbose

    def _enrich(self, documents) -> bool:
        """Summarize and cache `documents`; the scraper never outlives this call."""
        client = self.group.client
        scraper = self.scraper_factory()
        try:
            client.summarize_and_cache_feeds(documents, scraper)
            return True
        except Exception as e:
            mode = "with scraper" if scraper is not None else "without scraper"
            print(f"⚠️ [{self.group.name}] Summary {mode} failed: {e}")
            return False
        finally:
            close_scraper(scraper)

    def run_cycle(self) -> CycleResult:
        """Run one cycle; errors are reported, never raised."""
        client = self.group.client
        result = CycleResult()

        try:
            client.delete_old_cached_items()
        except Exception as e:
            print(f"⚠️ [{self.group.name}] Failed to delete old cached items: {e}")

        try:
            documents = client.fetch_feeds(include_seen=True)
        except Exception as e:
            print(f"❌ [{self.group.name}] Failed to fetch feeds: {e}")
            result.failed = True
            return result

        result.fetched = num_entries(documents)
        if result.fetched > 0:
            if not self._enrich(documents):
                result.failed = True

        try:
            items = client.list_cached_items(include_read=False)
            result.delivered = len(items)
            if self.verbose:
                print(f"📥 [{self.group.name}] {len(items)} new item(s)")

            result.marked = client.mark_cached_items_as_read(items)
            if self.verbose:
                print(f"📌 [{self.group.name}] Marked {result.marked} item(s) as read")
        except Exception as e:
            print(f"⚠️ [{self.group.name}] Failed to mark items as read: {e}")
            result.failed = True

        return result

    def run_forever(self, stop_event: Event):
        """
        Run a cycle every `interval_seconds` until `stop_event` is set.

        The first cycle runs one interval after start. Cycles run one at a time;
        when a cycle overruns the interval the next one starts right away and
        the missed ticks are dropped.
        """
        next_run = time.monotonic() + self.interval_seconds
        while not stop_event.wait(max(0.0, next_run - time.monotonic())):
            self.run_cycle()
            next_run += self.interval_seconds
            now = time.monotonic()
            if next_run < now:
                next_run = now

    def start(self, stop_event: Event) -> Thread:
        """Run this pipeline in a daemon thread."""
        if self.verbose:
            print(f"🔄 Periodically processing feeds from urls: {', '.join(self.group.config.feed_urls)}")

        thread = Thread(
            target=self.run_forever,
            args=(stop_event,),
            daemon=True,
            name=f"feed-pipeline-{self.group.name}",
        )
        thread.start()
        return thread
