"""
Registrable-domain resolution.
`www.news.bbc.co.uk` and `bbc.co.uk` both resolve to `bbc.co.uk`, so every
same-site / cross-site decision in the pipeline compares like with like.
"""
import ipaddress
from functools import lru_cache
from urllib.parse import urlparse

import tldextract

# Bundled public suffix snapshot only: no network fetch, no disk cache.
_extract = tldextract.TLDExtract(
    suffix_list_urls=(),
    cache_dir=None,
    include_psl_private_domains=True,
)


def host_of(url: str | None) -> str:
    if not url:
        return ""
    try:
        return (urlparse(url.strip()).hostname or "").rstrip(".")
    except ValueError:
        return ""


@lru_cache(maxsize=4096)
def registrable_domain(host: str) -> str:
    """Shortest registrable domain for a host; IPs and bare names come back as-is."""
    host = (host or "").strip().lower().rstrip(".")
    if not host:
        return ""
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass

    ext = _extract(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    # unknown TLD (intranet names, .example, ...): keep the last two labels
    return ".".join(host.split(".")[-2:])


def domain_of(url: str | None) -> str:
    return registrable_domain(host_of(url))


def same_site(url: str | None, site_host: str) -> bool:
    domain = domain_of(url)
    return bool(domain) and domain == registrable_domain(site_host)
