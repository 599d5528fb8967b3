#!/usr/bin/env python3
"""
Feed client: fetches a group's source feeds, summarizes new items with Claude,
keeps them in a JSON cache file, and renders cached items as RSS XML
"""

import hashlib
import html
import json
import os
import random
import tempfile
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import anthropic
import feedparser
import requests
from bs4 import BeautifulSoup
from feedgen.feed import FeedGenerator
from fuzzywuzzy import fuzz

from config_loader import DEFAULT_ANTHROPIC_MODEL, DEFAULT_DESIRED_LANGUAGE
from scraper import USER_AGENT

DEFAULT_FETCH_TIMEOUT_SECONDS = 60
CACHE_RETENTION_DAYS = 7
TITLE_SIMILARITY_THRESHOLD = 85
MAX_CONTENT_CHARS = 30000
SUMMARY_MAX_TOKENS = 1024
CACHE_FORMAT_VERSION = 1

HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'application/rss+xml, application/xml, text/xml, */*'
}


class FeedClientError(Exception):
    """Base error for the feed client."""


class FeedFetchError(FeedClientError):
    """Raised when no source feed of a group could be fetched."""


class SummarizationError(FeedClientError):
    """Raised when one or more items could not be summarized."""


class PublishError(FeedClientError):
    """Raised when cached items can't be rendered as RSS."""


def url_hash(value: str) -> str:
    return hashlib.md5(value.encode()).hexdigest()


class FeedEntry:
    """A single entry of a fetched feed document"""
    def __init__(self, entry, feed_title: str, feed_url: str):
        self.title = entry.get('title', '').strip()
        self.link = entry.get('link', '').strip()
        self.description = self._extract_content(entry)
        self.guid = (entry.get('id') or self.link).strip()
        self.pub_date = self._parse_date(entry)
        self.feed_title = feed_title
        self.feed_url = feed_url

        self.url_hash = url_hash(self.guid)
        self.title_normalized = self.title.lower().strip()

    def _extract_content(self, entry) -> str:
        """Prefer full content over the summary/description"""
        content = entry.get('content')
        if content and isinstance(content, list) and content[0].get('value'):
            return content[0]['value']
        return entry.get('description', '') or entry.get('summary', '')

    def _parse_date(self, entry) -> datetime:
        """Parse publication date from entry"""
        if hasattr(entry, 'published_parsed') and entry.published_parsed:
            return datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)
        elif hasattr(entry, 'updated_parsed') and entry.updated_parsed:
            return datetime(*entry.updated_parsed[:6], tzinfo=timezone.utc)
        return datetime.now(timezone.utc)


@dataclass
class FeedDocument:
    """One fetched source feed"""
    url: str
    title: str
    entries: List[FeedEntry] = field(default_factory=list)


@dataclass
class CachedItem:
    """An item as stored in the cache file"""
    guid: str
    title: str
    link: str
    description: str = ''
    summary: str = ''
    summary_failed: bool = False
    read: bool = False
    published_at: str = ''
    cached_at: float = 0.0
    feed_title: str = ''
    feed_url: str = ''

    @property
    def key(self) -> str:
        return url_hash(self.guid)

    @classmethod
    def from_entry(cls, entry: FeedEntry, summary: str, failed: bool) -> 'CachedItem':
        return cls(
            guid=entry.guid,
            title=entry.title,
            link=entry.link,
            description=entry.description,
            summary=summary,
            summary_failed=failed,
            read=False,
            published_at=entry.pub_date.astimezone(timezone.utc).isoformat(),
            cached_at=datetime.now(timezone.utc).timestamp(),
            feed_title=entry.feed_title,
            feed_url=entry.feed_url,
        )


def num_entries(documents: Iterable[FeedDocument]) -> int:
    """Count entries across all `documents`."""
    return sum(len(document.entries) for document in documents)


def html_to_text(value: str) -> str:
    if not value:
        return ''
    return BeautifulSoup(value, 'html.parser').get_text(' ', strip=True)


class FeedClient:
    """Fetch, summarize, cache and publish the feeds of one feed group"""

    def __init__(self, api_keys: Sequence[str], feed_urls: Sequence[str], cache_path):
        self.api_keys = [key for key in api_keys if key]
        if not self.api_keys:
            raise FeedClientError("no Anthropic API key configured")

        self.feed_urls = list(feed_urls)
        if not self.feed_urls:
            raise FeedClientError("no feed urls given")

        self.cache_path = Path(cache_path)
        if not self.cache_path.parent.is_dir():
            raise FeedClientError(f"cache directory does not exist: {self.cache_path.parent}")

        self.models = [DEFAULT_ANTHROPIC_MODEL]
        self.desired_language = DEFAULT_DESIRED_LANGUAGE
        self.verbose = False
        self.drop_items_with_failed_summaries = False
        self.fetch_timeout = DEFAULT_FETCH_TIMEOUT_SECONDS
        self.retention_days = CACHE_RETENTION_DAYS

        # guards the cache for one writer (the pipeline) and many readers (requests)
        self._lock = threading.RLock()
        self._items = self._load_cache()

    # --- settings ---

    def set_models(self, models: Sequence[str]):
        if models:
            self.models = list(models)

    def set_desired_language(self, language: str):
        self.desired_language = language

    def set_verbose(self, verbose: bool):
        self.verbose = verbose

    def set_drop_items_with_failed_summaries(self, drop: bool):
        self.drop_items_with_failed_summaries = drop

    def set_fetch_timeout(self, seconds: int):
        self.fetch_timeout = seconds

    # --- cache file ---

    def _load_cache(self):
        """Load cached items, an absent file meaning an empty cache"""
        if not self.cache_path.exists():
            return {}

        try:
            with open(self.cache_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            items = {}
            for raw in data.get('items', []):
                item = CachedItem(**raw)
                items[item.key] = item
            return items
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
            raise FeedClientError(f"failed to load cache {self.cache_path}: {e}")

    def _save_cache(self):
        """Write the cache atomically; caller holds the lock"""
        data = {
            'version': CACHE_FORMAT_VERSION,
            'items': [asdict(item) for item in self._items.values()],
        }
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_path.parent, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.cache_path)
            except Exception:
                os.unlink(tmp_path)
                raise
        except Exception as e:
            print(f"⚠️ Failed to save cache {self.cache_path}: {e}")

    def is_cached(self, entry: FeedEntry) -> bool:
        with self._lock:
            return entry.url_hash in self._items

    # --- fetching ---

    def _fetch_feed(self, url: str) -> FeedDocument:
        try:
            response = requests.get(url, headers=HEADERS, timeout=self.fetch_timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise FeedFetchError(str(e))

        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries:
            raise FeedFetchError(f"unparsable feed: {parsed.get('bozo_exception')}")

        title = parsed.feed.get('title', '') or url
        entries = [FeedEntry(entry, title, url) for entry in parsed.entries]
        return FeedDocument(url=url, title=title, entries=[e for e in entries if e.guid])

    def fetch_feeds(self, include_seen: bool = True) -> List[FeedDocument]:
        """
        Fetch every source feed of this group.

        Entries duplicated across sources (same guid, or a near-identical title)
        are kept only once. With include_seen=False, entries already in the
        cache are dropped too.
        """
        documents = []
        failures = []
        seen_hashes = set()
        seen_titles = []

        for url in self.feed_urls:
            try:
                document = self._fetch_feed(url)
            except FeedFetchError as e:
                print(f"  ✗ {url}: {e}")
                failures.append(url)
                continue

            unique = []
            for entry in document.entries:
                if entry.url_hash in seen_hashes:
                    continue
                # fuzzy title match only against other sources' entries
                if entry.title_normalized and any(
                        fuzz.ratio(entry.title_normalized, seen) > TITLE_SIMILARITY_THRESHOLD
                        for seen in seen_titles):
                    continue
                if not include_seen and self.is_cached(entry):
                    continue

                seen_hashes.add(entry.url_hash)
                unique.append(entry)

            seen_titles.extend(e.title_normalized for e in unique if e.title_normalized)

            if self.verbose:
                print(f"  ✓ {document.title}: {len(unique)} of {len(document.entries)} entries")
            document.entries = unique
            documents.append(document)

        if failures and not documents:
            raise FeedFetchError(f"failed to fetch all {len(failures)} feed(s)")
        return documents

    # --- summarizing ---

    def _content_for(self, entry: FeedEntry, scraper=None) -> str:
        content = ''
        if scraper is not None and entry.link:
            try:
                content = scraper.scrape(entry.link)
            except Exception as e:
                print(f"  ⚠️ Scraping failed for {entry.link}: {e}")
        if not content:
            content = html_to_text(entry.description)
        return content[:MAX_CONTENT_CHARS]

    def _summarize(self, entry: FeedEntry, content: str) -> str:
        system_prompt = (
            "You summarize articles for an RSS reader. "
            "Respond only with the summary, no preamble."
        )
        prompt = f"""Summarize the following article in {self.desired_language}.
Keep it to a few short paragraphs and keep names, numbers and dates accurate.

Title: {entry.title}
URL: {entry.link}

Content:
{content or '(no content available, summarize from the title)'}"""

        last_error = None
        for model in self.models:
            try:
                client = anthropic.Anthropic(api_key=random.choice(self.api_keys))
                response = client.messages.create(
                    model=model,
                    max_tokens=SUMMARY_MAX_TOKENS,
                    system=system_prompt,
                    messages=[{"role": "user", "content": prompt}]
                )
                summary = response.content[0].text.strip()
                if summary:
                    return summary
                last_error = f"empty response from {model}"
            except Exception as e:
                last_error = f"{model}: {e}"
                if self.verbose:
                    print(f"  ⚠️ API error ({model}): {e}")

        raise SummarizationError(f"failed to summarize {entry.link}: {last_error}")

    def summarize_and_cache_feeds(self, documents: Sequence[FeedDocument], scraper=None):
        """
        Summarize entries that aren't cached yet and cache them as unread.

        With a scraper, the article page is scraped first and the summary is
        made from the page text; otherwise from the feed-provided content.
        Every item is cached even when its summary fails (marked as failed);
        SummarizationError is raised afterwards if any failed.
        """
        pending = []
        pending_hashes = set()
        for document in documents:
            for entry in document.entries:
                if entry.url_hash in pending_hashes or self.is_cached(entry):
                    continue
                pending_hashes.add(entry.url_hash)
                pending.append(entry)

        if not pending:
            return

        print(f"🤖 Summarizing {len(pending)} new item(s) with Claude...")

        failed = 0
        for entry in pending:
            content = self._content_for(entry, scraper)
            try:
                summary = self._summarize(entry, content)
                item = CachedItem.from_entry(entry, summary, failed=False)
            except SummarizationError as e:
                print(f"  ⚠️ {e}")
                failed += 1
                item = CachedItem.from_entry(entry, '', failed=True)

            with self._lock:
                self._items[item.key] = item
                self._save_cache()

        if failed:
            raise SummarizationError(f"{failed} of {len(pending)} item(s) failed to summarize")

    # --- cache queries ---

    def list_cached_items(self, include_read: bool) -> List[CachedItem]:
        """Cached items, newest first; unread only unless `include_read`."""
        with self._lock:
            items = [
                replace(item) for item in self._items.values()
                if (include_read or not item.read)
                and not (item.summary_failed and self.drop_items_with_failed_summaries)
            ]
        items.sort(key=lambda item: (item.published_at, item.cached_at), reverse=True)
        return items

    def mark_cached_items_as_read(self, items: Iterable[CachedItem]) -> int:
        """Mark `items` as read; returns how many changed."""
        marked = 0
        with self._lock:
            for item in items:
                cached = self._items.get(item.key)
                if cached is not None and not cached.read:
                    cached.read = True
                    marked += 1
            if marked:
                self._save_cache()
        return marked

    def delete_old_cached_items(self) -> int:
        """
        Evict items older than the retention window that will never be served
        again: read items, and failed items hidden by the drop setting.
        Unread items that can still be listed stay.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        with self._lock:
            old = [
                key for key, item in self._items.items()
                if item.cached_at < cutoff.timestamp()
                and (item.read or (item.summary_failed and self.drop_items_with_failed_summaries))
            ]
            for key in old:
                del self._items[key]
            if old:
                self._save_cache()

        if old and self.verbose:
            print(f"🧹 Cleaned cache {self.cache_path.name}: removed {len(old)} old item(s)")
        return len(old)

    # --- publishing ---

    def _item_description(self, item: CachedItem) -> str:
        if item.summary and not item.summary_failed:
            paragraphs = [p.strip() for p in item.summary.split('\n\n') if p.strip()]
            body = ''.join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
        else:
            body = item.description
        if item.feed_title:
            body += f"<br><br><em>Source: {html.escape(item.feed_title)}</em>"
        return body

    def publish_xml(self, title: str, link: str, description: str,
                    author: str, email: str, items: Sequence[CachedItem]) -> bytes:
        """Render `items` as an RSS 2.0 document."""
        try:
            fg = FeedGenerator()
            fg.title(title)
            fg.link(href=link, rel='alternate')
            fg.description(description)
            fg.author({'name': author, 'email': email})
            fg.lastBuildDate(datetime.now(timezone.utc))

            for item in items:
                fe = fg.add_entry(order='append')
                fe.guid(item.guid, permalink=False)
                fe.title(item.title or item.link)
                if item.link:
                    fe.link(href=item.link)
                fe.description(self._item_description(item) or item.title or item.link)
                if item.published_at:
                    fe.published(datetime.fromisoformat(item.published_at))

            return fg.rss_str(pretty=True)
        except Exception as e:
            raise PublishError(f"failed to render RSS: {e}")


def new_feed_client(api_keys: Sequence[str], feed_urls: Sequence[str], cache_path,
                    models: Optional[Sequence[str]] = None,
                    desired_language: str = DEFAULT_DESIRED_LANGUAGE,
                    verbose: bool = False,
                    drop_items_with_failed_summaries: bool = False,
                    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT_SECONDS) -> FeedClient:
    """Create and configure a FeedClient in one call."""
    client = FeedClient(api_keys, feed_urls, cache_path)
    client.set_models(models or [])
    client.set_desired_language(desired_language)
    client.set_verbose(verbose)
    client.set_drop_items_with_failed_summaries(drop_items_with_failed_summaries)
    client.set_fetch_timeout(fetch_timeout)
    return client
