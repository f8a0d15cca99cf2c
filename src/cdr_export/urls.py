from __future__ import annotations

from urllib.parse import ParseResult, urlparse, urlunparse


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for stable document ids.

    - Lowercases scheme + hostname.
    - Strips fragments.
    """

    parsed: ParseResult = urlparse(raw_url)
    parsed = parsed._replace(
        scheme=(parsed.scheme or "").lower(),
        netloc=(parsed.netloc or "").lower(),
        fragment="",
    )
    return urlunparse(parsed)


def url_host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def reverse_domain(domain: str | None) -> str | None:
    """Turn ``foo.bar.com`` into ``com/bar/foo``.

    Returns None for an empty host.
    """

    if not domain:
        return None
    parts = [p for p in domain.split(".") if p]
    if not parts:
        return None
    return "/".join(reversed(parts))
