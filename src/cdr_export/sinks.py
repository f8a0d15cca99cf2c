from __future__ import annotations

import gzip
import json
import logging
import time
from pathlib import Path
from typing import Any, Protocol, Sequence

import requests
from requests import exceptions as req_exc

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


class IndexingError(RuntimeError):
    """Raised when a bulk request could not be delivered to the search index.

    ``dropped`` holds the ``(doc_id, url)`` pairs of the batch that was lost.
    """

    def __init__(self, message: str, dropped: Sequence[tuple[str, str]] = ()) -> None:
        super().__init__(message)
        self.dropped = tuple(dropped)


class DocumentSink(Protocol):
    def write(self, doc: dict[str, Any], doc_id: str) -> None: ...

    def close(self) -> None: ...


class GzipJsonLinesWriter:
    """Gzip-compressed file with one JSON document per line."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = gzip.open(path, "wt", encoding="utf-8", newline="\n")
        self.lines_written = 0

    def write(self, doc: dict[str, Any], doc_id: str) -> None:
        _ = doc_id
        line = json.dumps(doc, ensure_ascii=False)
        self._fh.write(line + "\n")
        self.lines_written += 1

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


def parse_auth(user_pass: str | None) -> tuple[str, str] | None:
    if not user_pass:
        return None
    user, sep, password = user_pass.partition(":")
    if not sep:
        raise ValueError("Elasticsearch credentials must be in format user:pass")
    return user, password


class BulkIndexer:
    """Buffers documents and sends them to Elasticsearch's ``_bulk`` API."""

    def __init__(
        self,
        session: requests.Session,
        *,
        server_url: str,
        index: str,
        doc_type: str,
        user_pass: str | None = None,
        bulk_size: int = 25,
        timeout_s: int = 60,
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
    ) -> None:
        if not index:
            raise ValueError("Argument for Elasticsearch index can't be empty")
        if not doc_type:
            raise ValueError("Argument for Elasticsearch type can't be empty")
        if bulk_size < 1:
            raise ValueError("Elasticsearch bulk size must be at least 1")

        self._session = session
        self._bulk_url = server_url.rstrip("/") + "/_bulk"
        self._auth = parse_auth(user_pass)
        self.index = index
        self.doc_type = doc_type
        self.bulk_size = bulk_size
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        # (doc_id, url, action and source lines)
        self._buffer: list[tuple[str, str, str]] = []
        self.documents_sent = 0

    def write(self, doc: dict[str, Any], doc_id: str) -> None:
        self.add_document(self.index, self.doc_type, doc, doc_id)

    def add_document(
        self, index: str, doc_type: str, doc: dict[str, Any], doc_id: str
    ) -> None:
        source = {k: v for k, v in doc.items() if k != "_id"}
        action = {"index": {"_index": index, "_type": doc_type, "_id": doc_id}}
        chunk = json.dumps(action) + "\n" + json.dumps(source) + "\n"
        self._buffer.append((doc_id, str(doc.get("url", "")), chunk))
        if len(self._buffer) >= self.bulk_size:
            self.flush()

    def flush(self) -> None:
        if not self._buffer:
            return
        batch = self._buffer
        self._buffer = []
        body = "".join(chunk for _, _, chunk in batch).encode("utf-8")
        try:
            result = self._post(body)
        except IndexingError as e:
            logger.error(f"Dropped a batch of {len(batch)} documents: {e}")
            raise IndexingError(
                str(e), dropped=[(doc_id, url) for doc_id, url, _ in batch]
            ) from e
        self.documents_sent += len(batch)

        if result.get("errors"):
            for item in result.get("items") or []:
                op = item.get("index") or {}
                if op.get("error"):
                    logger.error(
                        f"Failed to index document {op.get('_id')}: {op.get('error')}"
                    )

    def _post(self, body: bytes) -> dict[str, Any]:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.post(
                    self._bulk_url,
                    data=body,
                    headers={"Content-Type": "application/x-ndjson"},
                    auth=self._auth,
                    timeout=self._timeout_s,
                )
            except req_exc.RequestException as e:
                last_error = e
                if attempt >= self._max_retries:
                    break
                time.sleep(self._backoff_base_s * (2**attempt))
                continue

            if (
                resp.status_code in TRANSIENT_HTTP_STATUSES
                and attempt < self._max_retries
            ):
                time.sleep(self._backoff_base_s * (2**attempt))
                continue

            if resp.status_code >= 400:
                raise IndexingError(
                    f"Bulk request to {self._bulk_url} failed with status "
                    f"{resp.status_code}: {resp.text[:500]}"
                )
            try:
                return resp.json()
            except ValueError as e:
                raise IndexingError(f"Invalid bulk response: {e}") from e

        raise IndexingError(f"Bulk request to {self._bulk_url} failed: {last_error}")

    def close(self) -> None:
        self.flush()
