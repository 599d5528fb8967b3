"""Shared fakes: canned feed documents, a fake Claude client, temp cache dirs."""

import re
from types import SimpleNamespace

import pytest
import requests

import feed_client
from config_loader import build_config

FEED_URL = 'https://example.com/feed.xml'

ITEM_TEMPLATE = """
    <item>
      <title>{title}</title>
      <link>{link}</link>
      <guid>{link}</guid>
      <description>{description}</description>
      <pubDate>{pub_date}</pubDate>
    </item>"""


def make_rss(items, title='Example Feed'):
    """RSS 2.0 bytes for `items` (dicts with title/link and optional description)."""
    body = "".join(
        ITEM_TEMPLATE.format(
            title=item['title'],
            link=item['link'],
            description=item.get('description', f"About {item['title']}"),
            pub_date=item.get('pub_date', 'Mon, 19 Oct 2026 10:00:00 GMT'),
        )
        for item in items
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://example.com/</link>
    <description>{title}</description>{body}
  </channel>
</rss>""".encode('utf-8')


TWO_ITEMS = [
    {'title': 'Alpha launches a rocket', 'link': 'https://example.com/a'},
    {'title': 'Quiet market day in Tokyo', 'link': 'https://example.com/b'},
]


class FakeResponse:
    def __init__(self, content=b'', status_code=200):
        self.content = content
        self.status_code = status_code

    @property
    def text(self):
        return self.content.decode('utf-8')

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def feed_documents(monkeypatch):
    """url -> RSS bytes (or an exception to raise) served to the feed client."""
    documents = {}

    def fake_get(url, headers=None, timeout=None, **kwargs):
        if url not in documents:
            return FakeResponse(b'not found', 404)
        value = documents[url]
        if isinstance(value, Exception):
            raise value
        return FakeResponse(value)

    monkeypatch.setattr(feed_client.requests, 'get', fake_get)
    return documents


class FakeLLM:
    """Stands in for anthropic.Anthropic; summaries are 'Summary of <title>'."""

    def __init__(self):
        self.calls = []
        self.api_keys = []
        self.failing_links = set()
        self.failing_models = set()

    def __call__(self, api_key=None, **kwargs):
        self.api_keys.append(api_key)
        return SimpleNamespace(messages=SimpleNamespace(create=self.create))

    def create(self, model, max_tokens, messages, system=None):
        prompt = messages[0]['content']
        self.calls.append({'model': model, 'prompt': prompt})

        if model in self.failing_models:
            raise RuntimeError(f"{model} is overloaded")
        for link in self.failing_links:
            if f"URL: {link}\n" in prompt:
                raise RuntimeError("summary failed")

        title = re.search(r"^Title: (.*)$", prompt, re.M).group(1)
        return SimpleNamespace(content=[SimpleNamespace(text=f"Summary of {title}")])


@pytest.fixture
def fake_llm(monkeypatch):
    llm = FakeLLM()
    monkeypatch.setattr(feed_client.anthropic, 'Anthropic', llm)
    return llm


@pytest.fixture
def make_client(tmp_path):
    """Factory for FeedClients caching under tmp_path."""
    def factory(feed_urls=(FEED_URL,), cache_filename='example.json', **settings):
        return feed_client.new_feed_client(
            ['test-key'], list(feed_urls), tmp_path / cache_filename, **settings
        )
    return factory


@pytest.fixture
def raw_config(tmp_path):
    return {
        'anthropic_api_key': 'test-key',
        'db_files_dir': str(tmp_path),
        'rss_feeds': [
            {
                'name': 'example',
                'cache_filename': 'example.json',
                'serve_path': '/rss/example',
                'feed_urls': [FEED_URL],
            }
        ],
        'rss_server_port': 8080,
    }


@pytest.fixture
def make_config(raw_config):
    def factory(**overrides):
        raw = dict(raw_config)
        raw.update(overrides)
        return build_config(raw)
    return factory
