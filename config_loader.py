#!/usr/bin/env python3
"""
Configuration loader for Summarized RSS Feeds
Loads the JSON config file, validates it, and resolves every default up front
"""

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import json5

DEFAULT_ANTHROPIC_MODEL = 'claude-haiku-4-5-20251001'
DEFAULT_DESIRED_LANGUAGE = 'English'

DEFAULT_FETCH_FEEDS_INTERVAL_SECONDS = 60 * 3
DEFAULT_FETCH_FEEDS_TIMEOUT_SECONDS = 60 * 1

DEFAULT_PUBLISH_TITLE = 'Published RSS Feeds'
DEFAULT_PUBLISH_LINK = 'https://github.com/summarized-rss-feeds'
DEFAULT_PUBLISH_DESCRIPTION = 'Published RSS Feeds, summarized with Claude'
DEFAULT_PUBLISH_AUTHOR = 'summarized-rss-feeds'
DEFAULT_PUBLISH_EMAIL = 'noreply@no-such-domain.com'


class ConfigError(Exception):
    """Raised when the config file is missing, malformed or invalid."""


@dataclass(frozen=True)
class FeedGroupConfig:
    """One configured group of source feeds, served from a single path."""
    name: str
    cache_filename: str
    serve_path: str
    feed_urls: Tuple[str, ...]
    publish_title: str = DEFAULT_PUBLISH_TITLE
    publish_link: str = DEFAULT_PUBLISH_LINK
    publish_description: str = DEFAULT_PUBLISH_DESCRIPTION
    publish_author: str = DEFAULT_PUBLISH_AUTHOR
    publish_email: str = DEFAULT_PUBLISH_EMAIL
    drop_items_with_failed_summaries: bool = False


@dataclass(frozen=True)
class Config:
    """Fully resolved system configuration."""
    anthropic_api_keys: Tuple[str, ...]
    anthropic_models: Tuple[str, ...]
    db_files_dir: str
    desired_language: str
    verbose: bool
    rss_feeds: Tuple[FeedGroupConfig, ...]
    fetch_feeds_interval_seconds: int
    fetch_feeds_timeout_seconds: int
    permitted_user_agents: Tuple[str, ...]
    rss_server_port: int


def read_config_file(filepath) -> Dict:
    """Read the raw config from `filepath`; comments and trailing commas are allowed."""
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            raw = json5.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {filepath}")
    except OSError as e:
        raise ConfigError(f"failed to read config file {filepath}: {e}")
    except ValueError as e:
        raise ConfigError(f"malformed config file {filepath}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"config file {filepath} must contain a JSON object")
    return raw


def _is_string_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(x, str) for x in value)


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_config(raw: Dict) -> Dict[str, List[str]]:
    """
    Validate a raw config dict.
    Returns dict of section -> errors found, empty dict if all valid.
    """
    errors = {}

    # System
    if 'anthropic_api_key' in raw and not isinstance(raw['anthropic_api_key'], str):
        errors.setdefault('system', []).append("anthropic_api_key must be string")
    if 'anthropic_api_keys' in raw and not _is_string_list(raw['anthropic_api_keys']):
        errors.setdefault('system', []).append("anthropic_api_keys must be list of strings")
    if 'anthropic_models' in raw and not _is_string_list(raw['anthropic_models']):
        errors.setdefault('system', []).append("anthropic_models must be list of strings")
    if not isinstance(raw.get('db_files_dir'), str) or not raw.get('db_files_dir'):
        errors.setdefault('system', []).append("db_files_dir is required")
    if 'desired_language' in raw and not isinstance(raw['desired_language'], str):
        errors.setdefault('system', []).append("desired_language must be string")
    if 'verbose' in raw and not isinstance(raw['verbose'], bool):
        errors.setdefault('system', []).append("verbose must be boolean")

    # RSS
    for key in ['fetch_feeds_interval_seconds', 'fetch_feeds_timeout_seconds']:
        # zero or unset means "use the default"
        if key in raw and raw[key] != 0 and not _is_positive_int(raw[key]):
            errors.setdefault('rss', []).append(f"{key} must be positive integer")
    if 'permitted_user_agents' in raw and not _is_string_list(raw['permitted_user_agents']):
        errors.setdefault('rss', []).append("permitted_user_agents must be list of strings")

    feeds = raw.get('rss_feeds')
    if not isinstance(feeds, list):
        errors.setdefault('rss_feeds', []).append("rss_feeds must be list")
        feeds = []

    seen_caches = set()
    seen_paths = set()
    for idx, feed in enumerate(feeds):
        if not isinstance(feed, dict):
            errors.setdefault('rss_feeds', []).append(f"Feed #{idx} must be object")
            continue

        label = feed.get('name') or f"#{idx}"
        required = ['name', 'cache_filename', 'serve_path']
        missing = [k for k in required if not isinstance(feed.get(k), str) or not feed.get(k)]
        if missing:
            errors.setdefault('rss_feeds', []).append(
                f"Feed {label} missing: {', '.join(missing)}"
            )

        urls = feed.get('feed_urls')
        if not _is_string_list(urls) or not urls:
            errors.setdefault('rss_feeds', []).append(
                f"Feed {label} feed_urls must be non-empty list of strings"
            )

        for key in ['publish_title', 'publish_link', 'publish_description',
                    'publish_author', 'publish_email']:
            if key in feed and feed[key] is not None and not isinstance(feed[key], str):
                errors.setdefault('rss_feeds', []).append(f"Feed {label} {key} must be string")

        if 'drop_items_with_failed_summaries' in feed and \
                not isinstance(feed['drop_items_with_failed_summaries'], bool):
            errors.setdefault('rss_feeds', []).append(
                f"Feed {label} drop_items_with_failed_summaries must be boolean"
            )

        # Sharing a cache would mix read/unread state across groups
        cache = feed.get('cache_filename')
        if isinstance(cache, str) and cache:
            if cache in seen_caches:
                errors.setdefault('rss_feeds', []).append(
                    f"Feed {label} reuses cache_filename '{cache}'"
                )
            seen_caches.add(cache)

        path = feed.get('serve_path')
        if isinstance(path, str) and path:
            # Flask would read these as URL variables
            if '<' in path or '>' in path:
                errors.setdefault('rss_feeds', []).append(
                    f"Feed {label} serve_path must not contain '<' or '>'"
                )
            normalized = normalize_serve_path(path)
            if normalized in seen_paths:
                errors.setdefault('rss_feeds', []).append(
                    f"Feed {label} reuses serve_path '{path}'"
                )
            seen_paths.add(normalized)

    # Server
    if not _is_positive_int(raw.get('rss_server_port')) or raw.get('rss_server_port') > 65535:
        errors.setdefault('server', []).append("rss_server_port must be a port number")

    return errors


def normalize_serve_path(serve_path: str) -> str:
    """Join `serve_path` under the root so relative and messy paths agree."""
    return posixpath.normpath(posixpath.join('/', serve_path)).replace('//', '/')


def _resolve_api_keys(raw: Dict) -> Tuple[str, ...]:
    keys = []
    if raw.get('anthropic_api_key'):
        keys.append(raw['anthropic_api_key'])
    for key in raw.get('anthropic_api_keys') or []:
        if key and key not in keys:
            keys.append(key)

    if not keys and os.getenv('ANTHROPIC_API_KEY'):
        keys.append(os.getenv('ANTHROPIC_API_KEY'))
    return tuple(keys)


def _resolve_feed_group(feed: Dict) -> FeedGroupConfig:
    # Empty strings count as unset; the RSS channel needs every field
    def publish(key, default):
        return feed.get(key) or default

    return FeedGroupConfig(
        name=feed['name'],
        cache_filename=feed['cache_filename'],
        serve_path=feed['serve_path'],
        feed_urls=tuple(feed['feed_urls']),
        publish_title=publish('publish_title', DEFAULT_PUBLISH_TITLE),
        publish_link=publish('publish_link', DEFAULT_PUBLISH_LINK),
        publish_description=publish('publish_description', DEFAULT_PUBLISH_DESCRIPTION),
        publish_author=publish('publish_author', DEFAULT_PUBLISH_AUTHOR),
        publish_email=publish('publish_email', DEFAULT_PUBLISH_EMAIL),
        drop_items_with_failed_summaries=feed.get('drop_items_with_failed_summaries', False),
    )


def build_config(raw: Dict) -> Config:
    """Validate `raw` and resolve it into an immutable Config."""
    errors = validate_config(raw)
    if errors:
        lines = []
        for section, error_list in errors.items():
            for error in error_list:
                lines.append(f"{section}: {error}")
        raise ConfigError("invalid config:\n  " + "\n  ".join(lines))

    return Config(
        anthropic_api_keys=_resolve_api_keys(raw),
        anthropic_models=tuple(raw.get('anthropic_models') or [DEFAULT_ANTHROPIC_MODEL]),
        db_files_dir=raw['db_files_dir'],
        desired_language=raw.get('desired_language') or DEFAULT_DESIRED_LANGUAGE,
        verbose=raw.get('verbose', False),
        rss_feeds=tuple(_resolve_feed_group(feed) for feed in raw['rss_feeds']),
        fetch_feeds_interval_seconds=raw.get('fetch_feeds_interval_seconds') or DEFAULT_FETCH_FEEDS_INTERVAL_SECONDS,
        fetch_feeds_timeout_seconds=raw.get('fetch_feeds_timeout_seconds') or DEFAULT_FETCH_FEEDS_TIMEOUT_SECONDS,
        permitted_user_agents=tuple(raw.get('permitted_user_agents') or []),
        rss_server_port=raw['rss_server_port'],
    )


def load_config(filepath) -> Config:
    """Load, validate and resolve the config file at `filepath`."""
    return build_config(read_config_file(Path(filepath)))


def describe_config(conf: Config) -> str:
    """Render config for verbose logs, with API keys masked."""
    def mask(key):
        return key[:6] + '...' if len(key) > 6 else '***'

    lines = [
        f"   Models: {', '.join(conf.anthropic_models)}",
        f"   API keys: {', '.join(mask(k) for k in conf.anthropic_api_keys) or '(none)'}",
        f"   DB files dir: {conf.db_files_dir}",
        f"   Language: {conf.desired_language}",
        f"   Interval/timeout: {conf.fetch_feeds_interval_seconds}s / {conf.fetch_feeds_timeout_seconds}s",
        f"   Permitted user agents: {', '.join(conf.permitted_user_agents) or '(everyone)'}",
        f"   Port: {conf.rss_server_port}",
    ]
    for feed in conf.rss_feeds:
        lines.append(f"   Feed {feed.name}: {feed.serve_path} <- {', '.join(feed.feed_urls)}")
    return "\n".join(lines)


if __name__ == "__main__":
    # Validate a config file from the command line
    import sys

    if len(sys.argv) < 2:
        print("Usage: python3 config_loader.py <config.json>")
        sys.exit(1)

    print("Testing configuration loader...")
    print("=" * 60)

    try:
        config = load_config(sys.argv[1])
        print("\n✅ Config loaded:")
        print(describe_config(config))
    except ConfigError as e:
        print(f"\n❌ {e}")
        sys.exit(1)
