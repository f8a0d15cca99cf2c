from __future__ import annotations

import base64
import binascii
import gzip
import hashlib
import json
import logging
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import quote

from .urls import url_host

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlRecord:
    url: str
    fetch_time: int
    content_type: str | None
    content: bytes
    response_headers: dict[str, Any] = field(default_factory=dict)
    redirected_url: str | None = None

    @property
    def content_as_text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def _header_value(headers: dict[str, Any], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() != name.lower():
            continue
        if isinstance(value, list):
            return str(value[0]) if value else None
        return str(value) if value is not None else None
    return None


def record_from_json(obj: dict[str, Any]) -> CrawlRecord:
    """Build a CrawlRecord from a stored target-model JSON object.

    Raises ValueError when the object has no URL or its content is not
    valid base64.
    """

    url = str(obj.get("url") or "")
    if not url:
        raise ValueError("record has no url")

    headers = obj.get("response_headers") or {}
    if not isinstance(headers, dict):
        raise ValueError(f"response_headers is not a mapping: {url}")

    content_type = obj.get("content_type") or _header_value(headers, "Content-Type")

    raw_content = obj.get("content") or ""
    try:
        content = base64.b64decode(raw_content, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"invalid base64 content for {url}: {e}") from e

    return CrawlRecord(
        url=url,
        fetch_time=int(obj.get("fetch_time") or 0),
        content_type=str(content_type) if content_type else None,
        content=content,
        response_headers=dict(headers),
        redirected_url=obj.get("redirected_url") or None,
    )


def record_to_json(record: CrawlRecord) -> dict[str, Any]:
    obj: dict[str, Any] = {
        "url": record.url,
        "fetch_time": record.fetch_time,
        "content_type": record.content_type,
        "response_headers": record.response_headers,
        "content": base64.b64encode(record.content).decode("ascii"),
    }
    if record.redirected_url:
        obj["redirected_url"] = record.redirected_url
    return obj


class RepositoryType(str, Enum):
    FILES = "FILES"
    FILESYSTEM_JSON = "FILESYSTEM_JSON"


def _read_data_file(path: Path) -> bytes:
    raw = path.read_bytes()
    if path.name.endswith(".deflate"):
        return zlib.decompress(raw)
    if path.name.endswith(".gz"):
        return gzip.decompress(raw)
    return raw


def _visible_files(root: Path) -> list[Path]:
    return sorted(
        p
        for p in root.rglob("*")
        if p.is_file()
        and not any(part.startswith(".") for part in p.relative_to(root).parts)
    )


@dataclass
class FilesRepository:
    """Directory of data files holding one record JSON per line."""

    root: Path

    def iterate(self) -> Iterator[CrawlRecord]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Repository directory not found: {self.root}")
        return self._scan()

    def _scan(self) -> Iterator[CrawlRecord]:
        for path in _visible_files(self.root):
            try:
                text = _read_data_file(path).decode("utf-8", errors="replace")
            except (OSError, zlib.error, EOFError) as e:
                logger.error(f"Failed to read data file {path}: {e}")
                continue

            for lineno, line in enumerate(text.split("\n"), start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield record_from_json(json.loads(line))
                except (json.JSONDecodeError, ValueError, AttributeError) as e:
                    logger.error(f"Skipping unreadable record {path}:{lineno}: {e}")


@dataclass
class FileSystemJsonRepository:
    """One record JSON per file, grouped in one directory per host."""

    root: Path
    hash_filename: bool = False
    compress_data: bool = False

    def path_for(self, url: str) -> Path:
        host = url_host(url) or "_"
        if self.hash_filename:
            name = hashlib.sha256(url.encode("utf-8")).hexdigest()
        else:
            name = quote(url, safe="")
        return self.root / host / name

    def _decode(self, raw: bytes) -> CrawlRecord:
        if self.compress_data:
            raw = zlib.decompress(raw)
        return record_from_json(json.loads(raw.decode("utf-8")))

    def get(self, url: str) -> CrawlRecord | None:
        path = self.path_for(url)
        if not path.exists():
            return None
        return self._decode(path.read_bytes())

    def store(self, record: CrawlRecord) -> Path:
        path = self.path_for(record.url)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(record_to_json(record), ensure_ascii=False).encode("utf-8")
        if self.compress_data:
            data = zlib.compress(data)
        path.write_bytes(data)
        return path

    def iterate(self) -> Iterator[CrawlRecord]:
        if not self.root.is_dir():
            raise FileNotFoundError(f"Repository directory not found: {self.root}")
        return self._scan()

    def _scan(self) -> Iterator[CrawlRecord]:
        for path in _visible_files(self.root):
            try:
                yield self._decode(path.read_bytes())
            except (
                OSError,
                zlib.error,
                UnicodeDecodeError,
                json.JSONDecodeError,
                ValueError,
                AttributeError,
            ) as e:
                logger.error(f"Skipping unreadable record file {path}: {e}")


def open_repository(
    path: Path,
    *,
    repository_type: RepositoryType = RepositoryType.FILES,
    hash_filename: bool = False,
    compress_data: bool = False,
) -> FilesRepository | FileSystemJsonRepository:
    if repository_type == RepositoryType.FILESYSTEM_JSON:
        return FileSystemJsonRepository(
            path, hash_filename=hash_filename, compress_data=compress_data
        )
    return FilesRepository(path)
