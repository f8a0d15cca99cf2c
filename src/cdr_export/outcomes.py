from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Outcome(str, Enum):
    STORED = "stored"
    EMITTED = "emitted"
    SKIPPED = "skipped"
    FAILED = "failed"


# Reasons for SKIPPED results.
NO_CONTENT_TYPE = "no_content_type"
NOT_IMAGE = "not_image"
NOT_HTML = "not_html"
MEDIA_NOT_SUPPORTED = "media_not_supported"


@dataclass(frozen=True)
class RecordResult:
    """What happened to one record in one pass.

    ``value`` carries the MediaObject (Pass 1) or CDR document (Pass 2) for
    STORED/EMITTED results. ``reason`` explains SKIPPED and FAILED results.
    """

    outcome: Outcome
    url: str
    reason: str | None = None
    value: Any = None

    @property
    def is_anomaly(self) -> bool:
        return self.outcome == Outcome.SKIPPED and self.reason == NO_CONTENT_TYPE

    @classmethod
    def skipped(cls, url: str, reason: str) -> RecordResult:
        return cls(Outcome.SKIPPED, url, reason=reason)

    @classmethod
    def failed(cls, url: str, error: BaseException | str) -> RecordResult:
        return cls(Outcome.FAILED, url, reason=str(error))


class RunStats:
    """Run-level counters, keyed ``<pass>_<outcome>``."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def record(self, pass_name: str, result: RecordResult) -> None:
        self._counts[f"{pass_name}_{result.outcome.value}"] += 1
        if result.is_anomaly:
            self._counts[f"{pass_name}_anomalies"] += 1

    def revise(self, pass_name: str, previous: Outcome, result: RecordResult) -> None:
        """Replace one already counted ``previous`` outcome with ``result``."""
        self._counts[f"{pass_name}_{previous.value}"] -= 1
        self.record(pass_name, result)

    def __getitem__(self, key: str) -> int:
        return self._counts[key]

    def as_dict(self) -> dict[str, int]:
        return dict(sorted(self._counts.items()))
