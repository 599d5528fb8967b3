#!/usr/bin/env python3
"""
RSS publisher: serves each feed group's cached items as RSS XML over HTTP,
for permitted user agents only
"""

from typing import Sequence

from flask import Flask, Response, request
from werkzeug.serving import make_server

from config_loader import Config, normalize_serve_path
from feed_pipeline import FeedGroup

RSS_CONTENT_TYPE = 'application/rss+xml'
RSS_CACHE_CONTROL = 'max-age=60'


def request_permitted(user_agent: str, permitted_user_agents: Sequence[str]) -> bool:
    """Allow everyone when nothing is configured, else UAs containing an entry."""
    if not permitted_user_agents:
        return True

    user_agent = user_agent or ''
    if any(permitted in user_agent for permitted in permitted_user_agents):
        return True

    print(f"⚠️ Dropping access from non-permitted user agent: {user_agent}")
    return False


def _make_feed_view(group: FeedGroup, permitted_user_agents: Sequence[str]):
    feed_conf = group.config
    client = group.client

    def serve_feed():
        if not request_permitted(request.headers.get('User-Agent', ''), permitted_user_agents):
            return Response(status=401)

        try:
            items = client.list_cached_items(include_read=True)
            xml = client.publish_xml(
                feed_conf.publish_title,
                feed_conf.publish_link,
                feed_conf.publish_description,
                feed_conf.publish_author,
                feed_conf.publish_email,
                items,
            )
        except Exception as e:
            print(f"❌ [{feed_conf.name}] Failed to serve RSS feeds: {e}")
            return Response(status=500)

        return Response(
            xml,
            status=200,
            content_type=RSS_CONTENT_TYPE,
            headers={'Cache-Control': RSS_CACHE_CONTROL},
        )

    return serve_feed


def create_app(conf: Config, groups: Sequence[FeedGroup]) -> Flask:
    """Flask app with one GET route per feed group's serve path."""
    app = Flask(__name__, static_folder=None)

    for idx, group in enumerate(groups):
        rule = normalize_serve_path(group.config.serve_path)
        app.add_url_rule(
            rule,
            endpoint=f"feed_{idx}",
            view_func=_make_feed_view(group, conf.permitted_user_agents),
            methods=['GET'],
        )
        if conf.verbose:
            print(f"🌐 Serving {group.name} at {rule}")

    return app


def serve(app: Flask, port: int, host: str = '0.0.0.0'):
    """Serve `app` until the process is stopped; listener errors are reported."""
    try:
        server = make_server(host, port, app, threaded=True)
    except (OSError, SystemExit) as e:
        print(f"❌ Failed to start server on port {port}: {e}")
        return

    print(f"✅ Serving RSS feeds on port {port}")
    try:
        server.serve_forever()
    except OSError as e:
        print(f"❌ Server stopped: {e}")
    finally:
        server.server_close()
