"""
Maps a referrer URL onto the category a reader cares about: which search engine,
which social platform, one of our own sites, or just "some other domain".
"""
from typing import Iterable, Optional

from sitestats.services.domains import host_of, registrable_domain

DIRECT = "Direct"
INTERNAL = "Internal"
INTERBLOG = "Interblog"
UNGROUPED_PREFIX = "~"

# Matched against the first label of the registrable domain, so every
# country variant (google.de, google.co.uk, ...) lands in one bucket.
SEARCH_ENGINES: dict[str, str] = {
    "google": "Google",
    "bing": "Bing",
    "yahoo": "Yahoo",
    "duckduckgo": "DuckDuckGo",
    "baidu": "Baidu",
    "yandex": "Yandex",
    "ecosia": "Ecosia",
    "qwant": "Qwant",
    "startpage": "Startpage",
    "ask": "Ask",
    "sogou": "Sogou",
    "kagi": "Kagi",
}

# Literal hosts whose registrable domain is not a search engine by itself
SEARCH_HOST_OVERRIDES: dict[str, str] = {
    "search.brave.com": "Brave",
    "search.aol.com": "AOL",
    "search.naver.com": "Naver",
    "search.seznam.cz": "Seznam",
    "search.lilo.org": "Lilo",
}

# Host suffix -> platform, checked in order
SOCIAL_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("facebook.com", "Facebook"),
    ("fb.com", "Facebook"),
    ("fb.me", "Facebook"),
    ("twitter.com", "Twitter"),
    ("x.com", "Twitter"),
    ("t.co", "Twitter"),
    ("linkedin.com", "LinkedIn"),
    ("lnkd.in", "LinkedIn"),
    ("news.ycombinator.com", "Hacker News"),
    ("reddit.com", "Reddit"),
    ("instagram.com", "Instagram"),
    ("pinterest.com", "Pinterest"),
    ("youtube.com", "YouTube"),
    ("youtu.be", "YouTube"),
    ("tumblr.com", "Tumblr"),
    ("bsky.app", "Bluesky"),
    ("threads.net", "Threads"),
    ("mastodon.social", "Mastodon"),
    ("vk.com", "VK"),
    ("tiktok.com", "TikTok"),
)


def _host_matches(host: str, suffix: str) -> bool:
    return host == suffix or host.endswith("." + suffix)


def search_engine(host: str) -> Optional[str]:
    if host in SEARCH_HOST_OVERRIDES:
        return SEARCH_HOST_OVERRIDES[host]
    domain = registrable_domain(host)
    first_label = domain.split(".", 1)[0]
    return SEARCH_ENGINES.get(first_label)


def social_platform(host: str) -> Optional[str]:
    for suffix, name in SOCIAL_PLATFORMS:
        if _host_matches(host, suffix):
            return name
    return None


class ReferrerClassifier:
    def __init__(self, source_hosts: Iterable[str] = ()):
        self._network = {registrable_domain(h) for h in source_hosts if h}

    def classify(self, referrer: Optional[str], summarize: bool = True, site: Optional[str] = None) -> str:
        """
        Category for a referrer URL.

        With `summarize` off, referrers outside every known category come back
        verbatim so the consumer can still show the exact page.
        """
        referrer = (referrer or "").strip()
        if not referrer:
            return DIRECT

        host = host_of(referrer).lower()
        if not host:
            return referrer if not summarize else UNGROUPED_PREFIX + referrer

        domain = registrable_domain(host)
        if site and domain == registrable_domain(site):
            return INTERNAL

        engine = search_engine(host)
        if engine:
            return engine

        platform = social_platform(host)
        if platform:
            return platform

        if not summarize:
            return referrer
        if domain in self._network:
            return INTERBLOG
        return UNGROUPED_PREFIX + domain
