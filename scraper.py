#!/usr/bin/env python3
"""
Article scraping with requests + BeautifulSoup
A Scraper is a short-lived session: build one per fetch cycle, close it after
"""

from typing import Callable, Optional

import requests
from bs4 import BeautifulSoup

from url_policy import DEFAULT_POLICY, FALLBACK_SELECTOR, UrlPolicy

DEFAULT_SCRAPE_TIMEOUT = 20

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36'

HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'text/html,application/xhtml+xml'
}

# Tags that never hold article text
NOISE_TAGS = ['script', 'style', 'noscript', 'template', 'svg', 'iframe']


class ScrapeError(Exception):
    """Raised when a page cannot be scraped."""


class Scraper:
    """Loads pages and extracts text from a CSS-selected region."""

    def __init__(self, timeout: int = DEFAULT_SCRAPE_TIMEOUT):
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(HEADERS)
        self._url_replacer: Callable[[str], str] = lambda url: url
        self._selector_returner: Callable[[str], str] = lambda url: FALLBACK_SELECTOR
        self.closed = False

    def set_url_replacer(self, fn: Callable[[str], str]):
        self._url_replacer = fn

    def set_selector_returner(self, fn: Callable[[str], str]):
        self._selector_returner = fn

    def scrape(self, url: str) -> str:
        """Fetch `url` (after rewriting) and return the selected text."""
        if self.closed:
            raise ScrapeError("scraper is already closed")

        # the selector is picked for the original url, the fetch uses the rewritten one
        selector = self._selector_returner(url)
        target = self._url_replacer(url)

        try:
            response = self._session.get(target, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ScrapeError(f"failed to load {target}: {e}")

        return extract_text(response.text, selector)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._session.close()


def extract_text(html: str, selector: str) -> str:
    """Return the text of every element matching `selector` in `html`."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(NOISE_TAGS):
        tag.decompose()

    elements = soup.select(selector)
    texts = [e.get_text(' ', strip=True) for e in elements]
    text = "\n\n".join(t for t in texts if t)
    if not text:
        raise ScrapeError(f"nothing found for selector '{selector}'")
    return text


def new_scraper(policy: Optional[UrlPolicy] = None,
                timeout: int = DEFAULT_SCRAPE_TIMEOUT) -> Optional[Scraper]:
    """Create a scraper wired to `policy`, or None if one can't be created."""
    policy = policy or DEFAULT_POLICY
    try:
        scraper = Scraper(timeout=timeout)
    except Exception as e:
        print(f"⚠️ Failed to create a new scraper: {e}")
        return None

    scraper.set_url_replacer(policy.resolve_url)
    scraper.set_selector_returner(policy.resolve_selector)
    return scraper


def close_scraper(scraper: Optional[Scraper]):
    """Close `scraper`, reporting (never raising) errors."""
    if scraper is None:
        return
    try:
        scraper.close()
    except Exception as e:
        print(f"⚠️ Failed to close scraper: {e}")


if __name__ == '__main__':
    import sys

    if len(sys.argv) < 2:
        print("Usage: python3 scraper.py <url>")
        sys.exit(1)

    scraper = new_scraper()
    if scraper is None:
        sys.exit(1)
    try:
        print(scraper.scrape(sys.argv[1])[:2000])
    except ScrapeError as e:
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        close_scraper(scraper)
