import re

# Common crawler / scripted-client user agent substrings
BOT_SIGNATURES: tuple[str, ...] = (
    "bot",
    "crawl",
    "spider",
    "slurp",
    "scraper",
    "wget",
    "curl",
    "python-requests",
    "go-http-client",
    "libwww",
    "httpclient",
    "java/",
    "facebookexternalhit",
    "mediapartners",
    "feedfetcher",
    "pingdom",
    "uptimerobot",
    "statuscake",
    "headlesschrome",
    "bingpreview",
    "skypeuripreview",
    "google-pagerenderer",
)

_BOT_RE = re.compile("|".join(re.escape(s) for s in BOT_SIGNATURES), re.IGNORECASE)


def is_bot(user_agent: str | None) -> bool:
    if not user_agent:
        return False
    return _BOT_RE.search(user_agent) is not None
