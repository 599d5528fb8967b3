#!/usr/bin/env python3
"""
Summarized RSS Feeds
Periodically fetches RSS feeds, summarizes new items with Claude, caches them,
and serves the cached items as RSS feeds
"""

import os
import sys
from threading import Event
from typing import List, Optional

from config_loader import Config, ConfigError, describe_config, load_config
from feed_client import FeedClientError, new_feed_client
from feed_pipeline import FeedGroup, FeedPipeline
from publisher import create_app, serve


def print_help(cmd: str):
    print(f"""> Usage:

  * fetch, summarize, cache, and serve RSS feed items
    {cmd} [CONFIG_FILEPATH]
""")


def build_feed_groups(conf: Config) -> List[FeedGroup]:
    """Create a client for every configured feed group, skipping broken ones."""
    groups = []
    for feed_conf in conf.rss_feeds:
        try:
            client = new_feed_client(
                conf.anthropic_api_keys,
                feed_conf.feed_urls,
                os.path.join(conf.db_files_dir, feed_conf.cache_filename),
                models=conf.anthropic_models,
                desired_language=conf.desired_language,
                verbose=conf.verbose,
                drop_items_with_failed_summaries=feed_conf.drop_items_with_failed_summaries,
                fetch_timeout=conf.fetch_feeds_timeout_seconds,
            )
        except FeedClientError as e:
            print(f"❌ Failed to create a client for {feed_conf.name}: {e}")
            continue

        groups.append(FeedGroup(config=feed_conf, client=client))
    return groups


def run(conf: Config, stop_event: Optional[Event] = None):
    """Start a pipeline per feed group, then serve until the listener stops."""
    if conf.verbose:
        print(f"⚙️ Running with config:\n{describe_config(conf)}")

    stop_event = stop_event or Event()
    groups = build_feed_groups(conf)
    for group in groups:
        FeedPipeline(group, conf.fetch_feeds_interval_seconds, verbose=conf.verbose).start(stop_event)

    print(f"📚 {len(groups)} of {len(conf.rss_feeds)} feed group(s) running")

    app = create_app(conf, groups)
    try:
        serve(app, conf.rss_server_port)
    finally:
        stop_event.set()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv if argv is None else argv
    if hasattr(sys.stdout, 'reconfigure'):
        sys.stdout.reconfigure(line_buffering=True)
    cmd, args = argv[0], argv[1:]

    if not args:
        print_help(cmd)
        return 1

    try:
        conf = load_config(args[0])
    except ConfigError as e:
        print(f"❌ Failed to read config: {e}")
        return 1

    run(conf)

    # only reached when the server could not start or stopped
    return 1


if __name__ == '__main__':
    sys.exit(main())
