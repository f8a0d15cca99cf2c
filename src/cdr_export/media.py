from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from .addressing import content_address
from .timestamps import crawl_time_iso
from .outcomes import (
    MEDIA_NOT_SUPPORTED,
    NO_CONTENT_TYPE,
    NOT_IMAGE,
    Outcome,
    RecordResult,
)
from .records import CrawlRecord
from .uploader import UploadError

if TYPE_CHECKING:
    from .cache import MediaCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaObject:
    content_type: str
    timestamp_crawl: str
    original_url: str
    stored_url: str
    response_headers: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_type": self.content_type,
            "timestamp_crawl": self.timestamp_crawl,
            "obj_original_url": self.original_url,
            "obj_stored_url": self.stored_url,
            "response_headers": dict(self.response_headers),
        }

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> MediaObject:
        return cls(
            content_type=str(obj["content_type"]),
            timestamp_crawl=str(obj["timestamp_crawl"]),
            original_url=str(obj["obj_original_url"]),
            stored_url=str(obj["obj_stored_url"]),
            response_headers=dict(obj.get("response_headers") or {}),
        )


class Uploader(Protocol):
    def upload(self, key: str, content: bytes) -> None: ...


class MediaPipeline:
    """Pass 1: upload image records and remember them in the media cache."""

    def __init__(
        self,
        *,
        uploader: Uploader | None,
        cache: MediaCache,
        enabled: bool = True,
    ) -> None:
        self.uploader = uploader
        self.cache = cache
        self.enabled = enabled

    def process(self, record: CrawlRecord) -> RecordResult:
        content_type = record.content_type
        if not content_type:
            # Reported once, by the document pass.
            logger.debug(f"Ignoring URL with no content-type: {record.url}")
            return RecordResult.skipped(record.url, NO_CONTENT_TYPE)

        if not content_type.startswith("image"):
            return RecordResult.skipped(record.url, NOT_IMAGE)

        # Only CDR v3.1 documents can reference media objects.
        if not self.enabled or self.uploader is None:
            return RecordResult.skipped(record.url, MEDIA_NOT_SUPPORTED)

        try:
            obj = self._store(record, self.uploader)
        except (UploadError, OSError, ValueError, sqlite3.Error) as e:
            logger.error(f"Failed to process media object {record.url}: {e}")
            return RecordResult.failed(record.url, e)

        if obj is None:
            logger.warning(f"Ignoring media object without a host: {record.url}")
            return RecordResult.failed(record.url, "no host to derive storage key")

        return RecordResult(Outcome.STORED, record.url, value=obj)

    def _store(
        self, record: CrawlRecord, uploader: Uploader
    ) -> MediaObject | None:
        key = content_address(record.content, record.url)
        if key is None:
            return None

        uploader.upload(key, record.content)
        logger.debug(f"Uploaded object: {key}")

        obj = MediaObject(
            content_type=str(record.content_type),
            timestamp_crawl=crawl_time_iso(record.fetch_time),
            original_url=record.url,
            stored_url=key,
            response_headers=dict(record.response_headers),
        )
        self.cache.put(record.url, obj)
        return obj
