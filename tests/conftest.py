"""
Shared pytest fixtures for cdr-export tests.

Records are built in memory and written to temp-dir repositories, and the
object store and document sinks are replaced by in-memory fakes, so no test
touches S3 or Elasticsearch.
"""

import json
import sys
import zlib
from pathlib import Path

# Ensure src/ is on sys.path so imports work without an install.
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from cdr_export.records import CrawlRecord, record_to_json
from cdr_export.uploader import UploadError

FETCH_TIME_MS = 1_500_000_000_000  # 2017-07-14T02:40:00Z


class FakeUploader:
    """Collects uploads in a dict; keys listed in ``fail_keys`` raise."""

    def __init__(self, fail_keys=()):
        self.objects = {}
        self.fail_keys = set(fail_keys)

    def upload(self, key, content):
        if key in self.fail_keys:
            raise UploadError(f"simulated failure for {key}")
        self.objects[key] = content


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {"errors": False, "items": []}
        self.text = text

    def json(self):
        return self._payload


class FakeSession:
    """Replays queued responses (or exceptions) and records each POST."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.responses:
            resp = self.responses.pop(0)
            if isinstance(resp, Exception):
                raise resp
            return resp
        return FakeResponse()


class ListSink:
    """Document sink that keeps (doc, id) pairs in memory."""

    def __init__(self, fail_ids=()):
        self.docs = []
        self.closed = False
        self.fail_ids = set(fail_ids)

    def write(self, doc, doc_id):
        if doc_id in self.fail_ids:
            raise OSError(f"simulated write failure for {doc_id}")
        self.docs.append((doc, doc_id))

    def close(self):
        self.closed = True


@pytest.fixture
def make_record():
    def _make(
        url="http://x.com/page.html",
        content_type="text/html",
        content=b"<html></html>",
        headers=None,
        fetch_time=FETCH_TIME_MS,
    ):
        return CrawlRecord(
            url=url,
            fetch_time=fetch_time,
            content_type=content_type,
            content=content,
            response_headers=dict(headers or {}),
        )

    return _make


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def write_files_repo(tmp_path):
    """Writes records as JSON lines into a FILES-style repository."""

    def _write(records, *, name="crawl_data-0", compressed=False, root=None):
        root = root or tmp_path / "repo"
        root.mkdir(parents=True, exist_ok=True)
        text = "".join(json.dumps(record_to_json(r)) + "\n" for r in records)
        data = text.encode("utf-8")
        if compressed:
            path = root / f"{name}.deflate"
            path.write_bytes(zlib.compress(data))
        else:
            path = root / name
            path.write_bytes(data)
        return root

    return _write


@pytest.fixture
def e2e_records(make_record):
    """An image and the page that embeds it, page first."""

    page = make_record(
        url="http://x.com/page.html",
        content_type="text/html",
        content=b'<html><img src="/logo.png"></html>',
        headers={"Content-Type": "text/html"},
    )
    logo = make_record(
        url="http://x.com/logo.png",
        content_type="image/png",
        content=b"PNG",
        headers={"Content-Type": "image/png"},
    )
    return [page, logo]
