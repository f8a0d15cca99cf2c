from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .timestamps import utc_iso


class ManifestWriter:
    """Per-record failures and anomalies of one export run, one JSON per line.

    The run summary goes next to it as ``<name>.summary.json``.
    """

    def __init__(self, jsonl_path: Path) -> None:
        self.jsonl_path = jsonl_path
        self.summary_path = jsonl_path.with_name(jsonl_path.name + ".summary.json")
        self.events_written = 0

    def error(self, pass_name: str, url: str, error: str | None) -> None:
        self._append({"kind": "error", "pass": pass_name, "url": url, "error": error})

    def anomaly(self, pass_name: str, url: str, reason: str | None) -> None:
        self._append(
            {"kind": "anomaly", "pass": pass_name, "url": url, "reason": reason}
        )

    def _append(self, event: dict[str, Any]) -> None:
        event["at"] = utc_iso()
        self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")
        self.events_written += 1

    def write_summary(self, summary: dict[str, Any]) -> None:
        summary = dict(summary, manifest_events=self.events_written)
        self.summary_path.parent.mkdir(parents=True, exist_ok=True)
        self.summary_path.write_text(
            json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8"
        )
