"""Tests for cdr_export/media.py: the media object pass."""

import hashlib
import logging

import pytest

from cdr_export.cache import MediaCache
from cdr_export.media import MediaObject, MediaPipeline
from cdr_export.outcomes import (
    MEDIA_NOT_SUPPORTED,
    NO_CONTENT_TYPE,
    NOT_IMAGE,
    Outcome,
)
from conftest import FakeUploader


@pytest.fixture
def cache(tmp_path):
    c = MediaCache.open(tmp_path / "work")
    yield c
    c.close()


class TestMediaPipeline:
    def test_uploads_and_caches_image(self, make_record, uploader, cache):
        rec = make_record(
            url="http://x.com/logo.png",
            content_type="image/png",
            content=b"PNG",
            headers={"Content-Type": "image/png"},
        )
        result = MediaPipeline(uploader=uploader, cache=cache).process(rec)

        key = "com/x/" + hashlib.sha256(b"PNG").hexdigest()
        assert result.outcome == Outcome.STORED
        assert uploader.objects == {key: b"PNG"}
        assert cache.get("http://x.com/logo.png") == result.value
        assert result.value == MediaObject(
            content_type="image/png",
            timestamp_crawl="2017-07-14T02:40:00Z",
            original_url="http://x.com/logo.png",
            stored_url=key,
            response_headers={"Content-Type": "image/png"},
        )

    def test_non_image_is_skipped_silently(self, make_record, uploader, cache, caplog):
        caplog.set_level(logging.DEBUG, logger="cdr_export")
        result = MediaPipeline(uploader=uploader, cache=cache).process(make_record())
        assert result.outcome == Outcome.SKIPPED
        assert result.reason == NOT_IMAGE
        assert uploader.objects == {}
        assert caplog.records == []

    def test_missing_content_type_is_anomaly(self, make_record, uploader, cache):
        result = MediaPipeline(uploader=uploader, cache=cache).process(
            make_record(content_type=None)
        )
        assert result.outcome == Outcome.SKIPPED
        assert result.reason == NO_CONTENT_TYPE
        assert result.is_anomaly
        assert len(cache) == 0

    def test_disabled_for_older_schemas(self, make_record, uploader, cache):
        rec = make_record(url="http://x.com/a.png", content_type="image/png")
        result = MediaPipeline(uploader=uploader, cache=cache, enabled=False).process(rec)
        assert result.reason == MEDIA_NOT_SUPPORTED
        assert uploader.objects == {}
        assert cache.get("http://x.com/a.png") is None

    def test_upload_failure_is_contained(self, make_record, cache, caplog):
        key = "com/x/" + hashlib.sha256(b"PNG").hexdigest()
        failing = FakeUploader(fail_keys=[key])
        rec = make_record(url="http://x.com/a.png", content_type="image/png", content=b"PNG")

        with caplog.at_level(logging.ERROR, logger="cdr_export"):
            result = MediaPipeline(uploader=failing, cache=cache).process(rec)

        assert result.outcome == Outcome.FAILED
        assert "simulated failure" in result.reason
        assert cache.get("http://x.com/a.png") is None
        assert any("http://x.com/a.png" in r.getMessage() for r in caplog.records)

    def test_missing_host_creates_no_object(self, make_record, uploader, cache):
        rec = make_record(url="file:///tmp/a.png", content_type="image/png")
        result = MediaPipeline(uploader=uploader, cache=cache).process(rec)
        assert result.outcome == Outcome.FAILED
        assert uploader.objects == {}
        assert len(cache) == 0


class TestMediaObject:
    def test_dict_uses_cdr_field_names(self):
        obj = MediaObject(
            content_type="image/jpeg",
            timestamp_crawl="2017-07-14T02:40:00Z",
            original_url="http://x.com/a.jpg",
            stored_url="com/x/abc",
        )
        assert obj.to_dict() == {
            "content_type": "image/jpeg",
            "timestamp_crawl": "2017-07-14T02:40:00Z",
            "obj_original_url": "http://x.com/a.jpg",
            "obj_stored_url": "com/x/abc",
            "response_headers": {},
        }
        assert MediaObject.from_dict(obj.to_dict()) == obj
