from __future__ import annotations

import gzip
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class OutputInspection:
    output_file: Path
    lines_total: int
    lines_invalid_json: int
    versions: dict[str, int]
    missing_ids: int
    documents_with_objects: int
    objects_total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_file": str(self.output_file),
            "lines_total": self.lines_total,
            "lines_invalid_json": self.lines_invalid_json,
            "versions": dict(self.versions),
            "missing_ids": self.missing_ids,
            "documents_with_objects": self.documents_with_objects,
            "objects_total": self.objects_total,
        }


def infer_version(doc: dict[str, Any]) -> str:
    if doc.get("version"):
        return str(doc["version"])
    if "objects" in doc or "response_headers" in doc:
        return "3.1"
    if "timestamp_crawl" in doc:
        return "3.0"
    return "unknown"


def inspect_output(*, output_file: Path) -> OutputInspection:
    """Summarize a gzip-compressed JSON-lines CDR export."""

    if not output_file.exists():
        raise FileNotFoundError(f"Missing CDR output file: {output_file}")

    versions: dict[str, int] = {}
    lines_total = 0
    lines_invalid_json = 0
    missing_ids = 0
    documents_with_objects = 0
    objects_total = 0

    # Bytes mode: only b"\n" ends a line, and bad UTF-8 counts as invalid.
    with gzip.open(output_file, "rb") as f:
        for line in f:
            lines_total += 1
            line = line.strip()
            if not line:
                continue

            try:
                doc = json.loads(line)
            except ValueError:
                lines_invalid_json += 1
                continue
            if not isinstance(doc, dict):
                lines_invalid_json += 1
                continue

            version = infer_version(doc)
            versions[version] = versions.get(version, 0) + 1

            if not doc.get("_id"):
                missing_ids += 1

            objects = doc.get("objects")
            if isinstance(objects, list) and objects:
                documents_with_objects += 1
                objects_total += len(objects)

    versions = dict(sorted(versions.items(), key=lambda kv: (-kv[1], kv[0])))

    return OutputInspection(
        output_file=output_file,
        lines_total=lines_total,
        lines_invalid_json=lines_invalid_json,
        versions=versions,
        missing_ids=missing_ids,
        documents_with_objects=documents_with_objects,
        objects_total=objects_total,
    )
