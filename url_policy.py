#!/usr/bin/env python3
"""
URL policy for article scraping
Decides how an article URL is rewritten (paywall bypass, alternate renders)
and which part of the page holds the article text
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

FALLBACK_SELECTOR = 'body'

PAYWALL_BYPASS_URL = 'https://www.paywallskip.com/article?url={url}'

# Paywalled sites' urls
PAYWALLED_SITES_URLS = [
    "https://www.nytimes.com/",
    "https://www.wsj.com/",
    "https://www.washingtonpost.com/",
    "https://www.economist.com/",
    "https://www.ft.com/",
    "https://www.theguardian.com/",
]


@dataclass(frozen=True)
class RewriteRule:
    """Rewrites URLs starting with `prefix`, by host swap or by wrapping."""
    prefix: str
    replace: Optional[Tuple[str, str]] = None
    wrap: Optional[str] = None

    def matches(self, url: str) -> bool:
        return url.startswith(self.prefix)

    def apply(self, url: str) -> str:
        if self.replace:
            old, new = self.replace
            url = url.replace(old, new)
        if self.wrap:
            url = self.wrap.format(url=url)
        return url


@dataclass(frozen=True)
class SelectorRule:
    """Scrapes `selector` from pages whose URL starts with `prefix`."""
    prefix: str
    selector: str

    def matches(self, url: str) -> bool:
        return url.startswith(self.prefix)


DEFAULT_REWRITE_RULES = (
    # www.reddit.com => old.reddit.com
    RewriteRule('https://www.reddit.com/', replace=('www.reddit.com', 'old.reddit.com')),
) + tuple(
    RewriteRule(site, wrap=PAYWALL_BYPASS_URL) for site in PAYWALLED_SITES_URLS
)

DEFAULT_SELECTOR_RULES = (
    SelectorRule('https://x.com/', 'div[data-testid="tweetText"]'),
)


class UrlPolicy:
    """Ordered rule tables; the first matching rule of each table wins."""

    def __init__(self,
                 rewrite_rules: Sequence[RewriteRule] = DEFAULT_REWRITE_RULES,
                 selector_rules: Sequence[SelectorRule] = DEFAULT_SELECTOR_RULES,
                 fallback_selector: str = FALLBACK_SELECTOR):
        self.rewrite_rules = tuple(rewrite_rules)
        self.selector_rules = tuple(selector_rules)
        self.fallback_selector = fallback_selector

    def resolve_url(self, url: str) -> str:
        for rule in self.rewrite_rules:
            if rule.matches(url):
                return rule.apply(url)
        return url

    def resolve_selector(self, url: str) -> str:
        for rule in self.selector_rules:
            if rule.matches(url):
                return rule.selector
        return self.fallback_selector


DEFAULT_POLICY = UrlPolicy()


def resolve_url(url: str) -> str:
    """Rewrite `url` with the default rules (identity when none match)."""
    return DEFAULT_POLICY.resolve_url(url)


def resolve_selector(url: str) -> str:
    """Selector for `url` with the default rules (`body` when none match)."""
    return DEFAULT_POLICY.resolve_selector(url)
