from __future__ import annotations

import hashlib

from .urls import reverse_domain, url_host


def content_digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def content_address(content: bytes, url: str) -> str | None:
    """Return the storage key for ``content`` fetched from ``url``.

    The key is the reversed host of the URL (``com/example/www``) followed by
    the SHA-256 hex digest of the bytes. Identical bytes from the same host
    always map to the same key. Returns None when the URL has no host.
    """

    prefix = reverse_domain(url_host(url))
    if prefix is None:
        return None
    return f"{prefix}/{content_digest(content)}"
