from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

import requests
from tqdm import tqdm

from .cache import MediaCache, prepare_work_dir
from .cdr import AssemblyContext, CdrVersion, DocumentPipeline
from .manifest import ManifestWriter
from .media import MediaPipeline, Uploader
from .outcomes import Outcome, RecordResult, RunStats
from .records import CrawlRecord, RepositoryType, open_repository
from .sinks import (
    BulkIndexer,
    DocumentSink,
    GzipJsonLinesWriter,
    IndexingError,
    parse_auth,
)
from .timestamps import utc_iso
from .uploader import S3Uploader

logger = logging.getLogger(__name__)

# Failures that stay inside one record's processing.
RECORD_ERRORS = (
    OSError,
    ValueError,
    TypeError,
    RuntimeError,
    sqlite3.Error,
    requests.RequestException,
)


@dataclass
class ExportConfig:
    input_path: Path
    repository_type: RepositoryType = RepositoryType.FILES
    hash_filename: bool = False
    compress_data: bool = False

    cdr_version: CdrVersion = CdrVersion.V31
    output_file: Path | None = None
    team: str = "NYU"
    crawler: str = "ACHE"

    es_url: str | None = None
    es_index: str | None = None
    es_type: str | None = None
    es_auth: str | None = None
    es_bulk_size: int = 25

    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_bucket: str = ""
    s3_region: str = "us-east-1"

    tmp_path: Path | None = None
    manifest_path: Path | None = None
    progress_every: int = 100
    show_progress: bool = True

    def validate(self) -> None:
        if not self.input_path.exists():
            raise ValueError(f"Input path does not exist: {self.input_path}")
        if self.es_url:
            if not self.es_index:
                raise ValueError("Argument for Elasticsearch index can't be empty")
            if not self.es_type:
                raise ValueError("Argument for Elasticsearch type can't be empty")
            if self.es_bulk_size < 1:
                raise ValueError("Elasticsearch bulk size must be at least 1")
            parse_auth(self.es_auth)
        if self.progress_every < 1:
            raise ValueError("Progress interval must be at least 1")


class CdrExporter:
    """Runs the media pass and then the document pass over one repository.

    The media pass must finish before the document pass starts: v3.1
    documents look up every referenced image in the media cache.
    """

    def __init__(
        self,
        config: ExportConfig,
        *,
        uploader: Uploader | None = None,
        sinks: list[DocumentSink] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.cfg = config
        self.cfg.cdr_version = CdrVersion(self.cfg.cdr_version)
        self._uploader = uploader
        self._sinks = sinks
        self._clock = clock
        self.stats = RunStats()
        self.processed_pages = 0
        self.manifest = (
            ManifestWriter(self.cfg.manifest_path)
            if self.cfg.manifest_path is not None
            else None
        )

    def _build_uploader(self) -> Uploader | None:
        if self._uploader is not None:
            return self._uploader
        if not self.cfg.cdr_version.supports_media:
            return None
        if not self.cfg.s3_bucket:
            raise ValueError("CDR v3.1 export requires an S3 bucket for media objects")
        return S3Uploader(
            bucket=self.cfg.s3_bucket,
            region=self.cfg.s3_region,
            access_key_id=self.cfg.s3_access_key,
            secret_access_key=self.cfg.s3_secret_key,
        )

    def _build_sinks(self) -> list[DocumentSink]:
        if self._sinks is not None:
            return list(self._sinks)
        sinks: list[DocumentSink] = []
        if self.cfg.output_file is not None:
            sinks.append(GzipJsonLinesWriter(self.cfg.output_file))
        if self.cfg.es_url:
            sinks.append(
                BulkIndexer(
                    requests.Session(),
                    server_url=self.cfg.es_url,
                    index=str(self.cfg.es_index),
                    doc_type=str(self.cfg.es_type),
                    user_pass=self.cfg.es_auth,
                    bulk_size=self.cfg.es_bulk_size,
                )
            )
        return sinks

    def _progress(self, records: Iterable[CrawlRecord], desc: str):
        return tqdm(
            records,
            desc=desc,
            unit="record",
            disable=not self.cfg.show_progress,
        )

    def _note(self, pass_name: str, result: RecordResult) -> None:
        self.stats.record(pass_name, result)
        self._log_event(pass_name, result)

    def _log_event(self, pass_name: str, result: RecordResult) -> None:
        if self.manifest is None:
            return
        if result.outcome == Outcome.FAILED:
            self.manifest.error(pass_name, result.url, result.reason)
        elif result.is_anomaly and pass_name == "documents":
            self.manifest.anomaly(pass_name, result.url, result.reason)

    def _charge_dropped(
        self, error: IndexingError, *, current_id: str | None = None
    ) -> None:
        """Turn documents already counted as emitted into failures.

        The document being written when the batch failed is last in the batch
        and has not been counted yet, so it is left to the caller.
        """
        dropped = list(error.dropped)
        if current_id is not None and dropped and dropped[-1][0] == current_id:
            dropped.pop()
        for doc_id, url in dropped:
            logger.error(f"CDR document {doc_id} for {url} was not indexed: {error}")
            failed = RecordResult.failed(url, error)
            self.stats.revise("documents", Outcome.EMITTED, failed)
            self._log_event("documents", failed)
            self.processed_pages -= 1

    def _emit(self, result: RecordResult, sinks: list[DocumentSink]) -> RecordResult:
        doc = result.value
        try:
            payload = doc.to_dict()
            for sink in sinks:
                sink.write(payload, doc.id)
        except IndexingError as e:
            logger.error(f"Failed to index CDR document for {result.url}: {e}")
            self._charge_dropped(e, current_id=doc.id)
            return RecordResult.failed(result.url, e)
        except RECORD_ERRORS as e:
            logger.error(f"Failed to write CDR document for {result.url}: {e}")
            return RecordResult.failed(result.url, e)
        return result

    def _close_sinks(self, sinks: list[DocumentSink]) -> None:
        # Every sink gets closed; the first non-indexing error is re-raised.
        errors: list[Exception] = []
        for sink in sinks:
            try:
                sink.close()
            except IndexingError as e:
                self._charge_dropped(e)
            except RECORD_ERRORS as e:
                logger.error(f"Failed to close document sink: {e}")
                errors.append(e)
        if errors:
            raise errors[0]

    def run(self) -> dict[str, Any]:
        self.cfg.validate()
        uploader = self._build_uploader()

        logger.info(f"Reading crawl data from: {self.cfg.input_path}")
        logger.info(f"Generating CDR file at: {self.cfg.output_file}")
        logger.info(f" Compressed repository: {self.cfg.compress_data}")
        logger.info(f"      Hashed file name: {self.cfg.hash_filename}")

        repository = open_repository(
            self.cfg.input_path,
            repository_type=self.cfg.repository_type,
            hash_filename=self.cfg.hash_filename,
            compress_data=self.cfg.compress_data,
        )

        started_at = utc_iso()
        work_dir = prepare_work_dir(self.cfg.tmp_path)
        try:
            with MediaCache.open(work_dir.path) as cache:
                sinks = self._build_sinks()
                try:
                    self._media_pass(repository.iterate(), uploader, cache)
                    cache.flush()
                    self._document_pass(repository.iterate(), cache, sinks)
                finally:
                    self._close_sinks(sinks)
        finally:
            work_dir.cleanup()

        print(f"Processed {self.processed_pages} pages")

        summary = {
            "started_at": started_at,
            "finished_at": utc_iso(),
            "cdr_version": self.cfg.cdr_version.value,
            "stats": self.stats.as_dict(),
            "processed_pages": self.processed_pages,
        }
        if self.manifest is not None:
            self.manifest.write_summary(summary)
        return summary

    def _media_pass(
        self,
        records: Iterable[CrawlRecord],
        uploader: Uploader | None,
        cache: MediaCache,
    ) -> None:
        pipeline = MediaPipeline(
            uploader=uploader,
            cache=cache,
            enabled=self.cfg.cdr_version.supports_media,
        )
        for record in self._progress(records, "Media objects"):
            self._note("media", pipeline.process(record))

    def _document_pass(
        self,
        records: Iterable[CrawlRecord],
        cache: MediaCache,
        sinks: list[DocumentSink],
    ) -> None:
        context = AssemblyContext(
            team=self.cfg.team,
            crawler=self.cfg.crawler,
            media_cache=cache if self.cfg.cdr_version.supports_media else None,
            clock=self._clock or time.time,
        )
        pipeline = DocumentPipeline(version=self.cfg.cdr_version, context=context)

        for record in self._progress(records, "CDR documents"):
            result = pipeline.process(record)
            if result.outcome == Outcome.EMITTED:
                result = self._emit(result, sinks)
            self._note("documents", result)

            if result.outcome == Outcome.EMITTED:
                self.processed_pages += 1
                if self.processed_pages % self.cfg.progress_every == 0:
                    logger.info(f"Processed {self.processed_pages} pages")
