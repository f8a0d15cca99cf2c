"""Timestamp formats used in CDR documents and run summaries."""

from __future__ import annotations

import time


def utc_iso(epoch_s: float | None = None) -> str:
    """ISO-8601 UTC with second precision, e.g. ``2017-07-14T02:40:00Z``."""
    return time.strftime(
        "%Y-%m-%dT%H:%M:%SZ",
        time.gmtime(time.time() if epoch_s is None else epoch_s),
    )


def crawl_time_iso(fetch_time_ms: int) -> str:
    return utc_iso(fetch_time_ms / 1000.0)
