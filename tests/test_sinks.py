"""Tests for cdr_export/sinks.py: gzip JSON-lines output and bulk indexing."""

import gzip
import json

import pytest
import requests

from cdr_export import sinks
from cdr_export.sinks import BulkIndexer, GzipJsonLinesWriter, IndexingError
from conftest import FakeResponse, FakeSession


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(sinks.time, "sleep", lambda _s: None)


def _lines(body):
    return [json.loads(line) for line in body.decode("utf-8").splitlines()]


class TestGzipJsonLinesWriter:
    def test_writes_one_document_per_line(self, tmp_path):
        path = tmp_path / "out" / "cdr.json.gz"
        writer = GzipJsonLinesWriter(path)
        writer.write({"_id": "A", "url": "http://x.com/é"}, "A")
        writer.write({"_id": "B", "url": "http://x.com/b"}, "B")
        writer.close()
        writer.close()

        with gzip.open(path, "rt", encoding="utf-8") as f:
            docs = [json.loads(line) for line in f]
        assert [d["_id"] for d in docs] == ["A", "B"]
        assert docs[0]["url"] == "http://x.com/é"
        assert writer.lines_written == 2


class TestBulkIndexer:
    def _indexer(self, session, **kwargs):
        params = dict(
            server_url="http://es:9200/",
            index="cdr",
            doc_type="page",
            bulk_size=2,
        )
        params.update(kwargs)
        return BulkIndexer(session, **params)

    def test_flushes_when_batch_is_full(self):
        session = FakeSession()
        indexer = self._indexer(session)
        indexer.add_document("cdr", "page", {"_id": "A", "url": "a"}, "A")
        assert session.calls == []
        indexer.add_document("cdr", "page", {"_id": "B", "url": "b"}, "B")

        assert len(session.calls) == 1
        url, kwargs = session.calls[0]
        assert url == "http://es:9200/_bulk"
        assert kwargs["headers"]["Content-Type"] == "application/x-ndjson"
        lines = _lines(kwargs["data"])
        assert lines[0] == {"index": {"_index": "cdr", "_type": "page", "_id": "A"}}
        assert lines[1] == {"url": "a"}
        assert len(lines) == 4

    def test_close_flushes_remainder(self):
        session = FakeSession()
        indexer = self._indexer(session, bulk_size=10)
        indexer.write({"_id": "A", "url": "a"}, "A")
        indexer.close()
        assert len(session.calls) == 1
        assert indexer.documents_sent == 1

    def test_close_without_documents_sends_nothing(self):
        session = FakeSession()
        self._indexer(session).close()
        assert session.calls == []

    def test_basic_auth(self):
        session = FakeSession()
        indexer = self._indexer(session, user_pass="elastic:s3cr:et", bulk_size=1)
        indexer.write({"url": "a"}, "A")
        assert session.calls[0][1]["auth"] == ("elastic", "s3cr:et")

    def test_retries_transient_status(self):
        session = FakeSession([FakeResponse(503), FakeResponse(200)])
        indexer = self._indexer(session, bulk_size=1)
        indexer.write({"url": "a"}, "A")
        assert len(session.calls) == 2

    def test_retries_transport_errors_then_gives_up(self):
        errors = [requests.ConnectionError("down") for _ in range(4)]
        session = FakeSession(errors)
        indexer = self._indexer(session, bulk_size=1, max_retries=3)
        with pytest.raises(IndexingError, match="down"):
            indexer.write({"url": "a"}, "A")
        assert len(session.calls) == 4

    def test_client_error_raises(self):
        session = FakeSession([FakeResponse(400, text="mapper_parsing_exception")])
        indexer = self._indexer(session, bulk_size=1)
        with pytest.raises(IndexingError, match="400"):
            indexer.write({"url": "a"}, "A")

    def test_item_errors_are_logged(self, caplog):
        payload = {
            "errors": True,
            "items": [{"index": {"_id": "A", "error": {"type": "bad"}}}],
        }
        session = FakeSession([FakeResponse(200, payload)])
        indexer = self._indexer(session, bulk_size=1)
        indexer.write({"url": "a"}, "A")
        assert any("Failed to index document A" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize(
        "kwargs",
        [{"index": ""}, {"doc_type": ""}, {"bulk_size": 0}, {"user_pass": "nocolon"}],
    )
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            self._indexer(FakeSession(), **kwargs)

    def test_failed_flush_reports_whole_batch(self):
        session = FakeSession([FakeResponse(400, text="boom")])
        indexer = self._indexer(session, bulk_size=3)
        indexer.write({"url": "http://x.com/a"}, "A")
        indexer.write({"url": "http://x.com/b"}, "B")
        with pytest.raises(IndexingError) as excinfo:
            indexer.write({"url": "http://x.com/c"}, "C")
        assert excinfo.value.dropped == (
            ("A", "http://x.com/a"),
            ("B", "http://x.com/b"),
            ("C", "http://x.com/c"),
        )
        assert indexer.documents_sent == 0
        indexer.close()
        assert len(session.calls) == 1
