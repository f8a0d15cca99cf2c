from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from pathlib import Path

from .cdr import CdrVersion
from .export_inspect import inspect_output
from .exporter import CdrExporter, ExportConfig
from .records import RepositoryType
from .sinks import IndexingError


def _configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root = logging.getLogger("cdr_export")
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def _add_export_args(p: argparse.ArgumentParser) -> None:
    # Input data options
    p.add_argument(
        "--input-path",
        type=Path,
        required=True,
        help="Path to the crawler's target repository folder",
    )
    p.add_argument(
        "--repository-type",
        "-rt",
        choices=[t.value for t in RepositoryType],
        default=RepositoryType.FILES.value,
        help="Which repository type should be used",
    )
    p.add_argument(
        "--fs-hashed",
        action="store_true",
        help="Whether filesystem repository file names are hashed",
    )
    p.add_argument(
        "--fs-compressed",
        action="store_true",
        help="Whether filesystem repository files are compressed",
    )

    # Output data format
    p.add_argument(
        "--cdr-version",
        choices=[v.value for v in CdrVersion],
        default=CdrVersion.V31.value,
        help="Which CDR version should be used",
    )
    p.add_argument(
        "--output-file",
        type=Path,
        default=None,
        help="Gzipped output file containing data formatted as per CDR schema",
    )
    p.add_argument("--team", default="NYU")
    p.add_argument("--crawler", default="ACHE")

    # Elasticsearch output
    p.add_argument("--output-es-index", "-oi", help="Elasticsearch index name")
    p.add_argument("--output-es-type", "-ot", help="Elasticsearch index type")
    p.add_argument(
        "--output-es-url", "-ou", help="Elasticsearch full HTTP URL address"
    )
    p.add_argument(
        "--output-es-auth",
        "-oa",
        help="User and password for Elasticsearch in format: user:pass",
    )
    p.add_argument(
        "--output-es-bulk-size",
        "-obs",
        type=int,
        default=25,
        help="Elasticsearch bulk size",
    )

    # S3 media storage
    p.add_argument("--accesskey", "-ak", default="", help="AWS access key id")
    p.add_argument("--secretkey", "-sk", default="", help="AWS secret access key")
    p.add_argument("--bucket", "-bk", default="", help="AWS S3 bucket name")
    p.add_argument("--region", "-rg", default="us-east-1", help="AWS S3 region")

    p.add_argument(
        "--tmp-path",
        "-tmp",
        type=Path,
        default=None,
        help="Path to temporary working folder (auto-created if unset)",
    )
    p.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Append per-record anomalies/failures to this JSONL file",
    )
    p.add_argument("--progress-every", type=int, default=100)
    p.add_argument("--no-progress", action="store_true")


def config_from_args(args: argparse.Namespace) -> ExportConfig:
    return ExportConfig(
        input_path=args.input_path,
        repository_type=RepositoryType(args.repository_type),
        hash_filename=bool(args.fs_hashed),
        compress_data=bool(args.fs_compressed),
        cdr_version=CdrVersion(args.cdr_version),
        output_file=args.output_file,
        team=args.team,
        crawler=args.crawler,
        es_url=args.output_es_url,
        es_index=args.output_es_index,
        es_type=args.output_es_type,
        es_auth=args.output_es_auth,
        es_bulk_size=int(args.output_es_bulk_size),
        s3_access_key=args.accesskey,
        s3_secret_key=args.secretkey,
        s3_bucket=args.bucket,
        s3_region=args.region,
        tmp_path=args.tmp_path,
        manifest_path=args.manifest,
        progress_every=int(args.progress_every),
        show_progress=not bool(args.no_progress),
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="cdr-export")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="cmd", required=True)

    export_p = sub.add_parser("export", help="Export crawled data to CDR format")
    _add_export_args(export_p)

    inspect_p = sub.add_parser(
        "inspect-output",
        help="Summarize an existing gzipped CDR output file",
    )
    inspect_p.add_argument("--in", dest="in_file", type=Path, required=True)
    inspect_p.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON to stdout",
    )

    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    if args.cmd == "export":
        exporter = CdrExporter(config_from_args(args))
        try:
            summary = exporter.run()
        except (OSError, ValueError, sqlite3.Error, IndexingError) as e:
            print(str(e), file=sys.stderr)
            return 2
        stats = summary["stats"]
        print(
            "export: "
            f"media_stored={stats.get('media_stored', 0)} "
            f"media_failed={stats.get('media_failed', 0)} "
            f"documents_emitted={stats.get('documents_emitted', 0)} "
            f"documents_failed={stats.get('documents_failed', 0)}"
        )
        print("done.")
        return 0

    if args.cmd == "inspect-output":
        try:
            inspected = inspect_output(output_file=args.in_file)
        except (OSError, EOFError, ValueError) as e:
            print(str(e), file=sys.stderr)
            return 2

        if bool(args.json):
            print(json.dumps(inspected.to_dict(), indent=2))
        else:
            versions = " ".join(f"{k}={v}" for k, v in inspected.versions.items())
            print(
                "inspect-output: "
                f"lines={inspected.lines_total} "
                f"invalid_json={inspected.lines_invalid_json} "
                f"missing_ids={inspected.missing_ids} "
                f"with_objects={inspected.documents_with_objects} "
                f"objects={inspected.objects_total}"
            )
            if versions:
                print(f"inspect-output: versions: {versions}")
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
