from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

logger = logging.getLogger(__name__)


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


def extract_img_links(html: str, *, page_url: str) -> set[str]:
    """Absolute URLs of every ``<img src>`` in ``html``.

    Relative sources are resolved against ``<base href>`` when present,
    otherwise against ``page_url``. Broken markup is parsed best-effort;
    markup the parser rejects outright yields no links.
    """

    try:
        soup = BeautifulSoup(html, "html.parser")
    except ParserRejectedMarkup as e:
        logger.warning(f"Unparseable HTML at {page_url}, no images resolved: {e}")
        return set()

    effective_base = page_url
    base = soup.find("base")
    if base is not None:
        base_href = _attr_text(base.get("href")).strip()
        if base_href:
            try:
                effective_base = urljoin(page_url, base_href)
            except ValueError:
                pass

    links: set[str] = set()
    for img in soup.find_all("img", src=True):
        src = _attr_text(img.get("src")).strip()
        if not src or src.lower().startswith("data:"):
            continue
        try:
            abs_url = urljoin(effective_base, src)
            scheme = urlparse(abs_url).scheme
        except ValueError:
            continue
        if scheme not in {"http", "https"}:
            continue
        links.add(abs_url)
    return links
