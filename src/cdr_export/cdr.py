"""CDR document models and per-version assembly.

Each assembly function turns one HTML ``CrawlRecord`` into an immutable CDR
document. The schema version is fixed for a run, so callers pick the function
once with ``assembler_for`` and apply it to every record.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Union

from .html_links import extract_img_links
from .timestamps import crawl_time_iso, utc_iso
from .media import MediaObject
from .outcomes import NO_CONTENT_TYPE, NOT_HTML, Outcome, RecordResult
from .records import CrawlRecord
from .urls import normalize_url

if TYPE_CHECKING:
    from .cache import MediaCache

logger = logging.getLogger(__name__)


class CdrVersion(str, Enum):
    V2 = "CDRv2"
    V3 = "CDRv3"
    V31 = "CDRv31"

    @property
    def supports_media(self) -> bool:
        return self == CdrVersion.V31


def document_id(url: str) -> str:
    """Stable document id: uppercase SHA-256 hex of the normalized URL."""

    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest().upper()


@dataclass(frozen=True)
class CDR2Document:
    id: str
    url: str
    timestamp: int
    content_type: str
    raw_content: str
    team: str
    crawler: str
    crawl_data: dict[str, Any] = field(default_factory=dict)
    version: str = "2.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "url": self.url,
            "timestamp": self.timestamp,
            "content_type": self.content_type,
            "version": self.version,
            "team": self.team,
            "crawler": self.crawler,
            "raw_content": self.raw_content,
            "crawl_data": dict(self.crawl_data),
        }


@dataclass(frozen=True)
class CDR3Document:
    id: str
    url: str
    timestamp_crawl: str
    timestamp_index: str
    content_type: str
    raw_content: str
    team: str
    crawler: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "url": self.url,
            "timestamp_crawl": self.timestamp_crawl,
            "timestamp_index": self.timestamp_index,
            "content_type": self.content_type,
            "team": self.team,
            "crawler": self.crawler,
            "raw_content": self.raw_content,
        }


@dataclass(frozen=True)
class CDR31Document(CDR3Document):
    response_headers: dict[str, Any] = field(default_factory=dict)
    objects: tuple[MediaObject, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        doc = super().to_dict()
        doc["response_headers"] = dict(self.response_headers)
        doc["objects"] = [obj.to_dict() for obj in self.objects]
        return doc


CdrDocument = Union[CDR2Document, CDR3Document, CDR31Document]


@dataclass(frozen=True)
class AssemblyContext:
    team: str = "NYU"
    crawler: str = "ACHE"
    media_cache: MediaCache | None = None
    clock: Callable[[], float] = time.time


def build_cdr2(record: CrawlRecord, ctx: AssemblyContext) -> CDR2Document:
    return CDR2Document(
        id=document_id(record.url),
        url=record.url,
        timestamp=record.fetch_time,
        content_type=str(record.content_type),
        raw_content=record.content_as_text,
        team=ctx.team,
        crawler=ctx.crawler,
        crawl_data={"response_headers": dict(record.response_headers)},
    )


def build_cdr3(record: CrawlRecord, ctx: AssemblyContext) -> CDR3Document:
    return CDR3Document(
        id=document_id(record.url),
        url=record.url,
        timestamp_crawl=crawl_time_iso(record.fetch_time),
        timestamp_index=utc_iso(ctx.clock()),
        content_type=str(record.content_type),
        raw_content=record.content_as_text,
        team=ctx.team,
        crawler=ctx.crawler,
    )


def resolve_media_objects(
    html: str, *, page_url: str, cache: MediaCache | None
) -> tuple[MediaObject, ...]:
    """Cached media objects for the images referenced by ``html``.

    References missing from the cache are dropped.
    """

    if cache is None:
        return ()
    found: list[MediaObject] = []
    for link in sorted(extract_img_links(html, page_url=page_url)):
        obj = cache.get(link)
        if obj is not None:
            found.append(obj)
    return tuple(found)


def build_cdr31(record: CrawlRecord, ctx: AssemblyContext) -> CDR31Document:
    raw_content = record.content_as_text
    return CDR31Document(
        id=document_id(record.url),
        url=record.url,
        timestamp_crawl=crawl_time_iso(record.fetch_time),
        timestamp_index=utc_iso(ctx.clock()),
        content_type=str(record.content_type),
        raw_content=raw_content,
        team=ctx.team,
        crawler=ctx.crawler,
        response_headers=dict(record.response_headers),
        objects=resolve_media_objects(
            raw_content, page_url=record.url, cache=ctx.media_cache
        ),
    )


Assembler = Callable[[CrawlRecord, AssemblyContext], CdrDocument]

_ASSEMBLERS: dict[CdrVersion, Assembler] = {
    CdrVersion.V2: build_cdr2,
    CdrVersion.V3: build_cdr3,
    CdrVersion.V31: build_cdr31,
}


def assembler_for(version: CdrVersion) -> Assembler:
    return _ASSEMBLERS[CdrVersion(version)]


class DocumentPipeline:
    """Pass 2: assemble one CDR document per HTML record."""

    def __init__(self, *, version: CdrVersion, context: AssemblyContext) -> None:
        self.version = CdrVersion(version)
        self.context = context
        self._assemble = assembler_for(self.version)

    def process(self, record: CrawlRecord) -> RecordResult:
        content_type = record.content_type
        if not content_type:
            logger.warning(f"Ignoring URL with no content-type: {record.url}")
            return RecordResult.skipped(record.url, NO_CONTENT_TYPE)

        if not content_type.startswith("text/html"):
            return RecordResult.skipped(record.url, NOT_HTML)

        try:
            doc = self._assemble(record, self.context)
        except (ValueError, TypeError, LookupError, RuntimeError, sqlite3.Error) as e:
            logger.error(f"Failed to build CDR document for {record.url}: {e}")
            return RecordResult.failed(record.url, e)

        return RecordResult(Outcome.EMITTED, record.url, value=doc)
