from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .media import MediaObject

logger = logging.getLogger(__name__)

CACHE_FILENAME = "media_objects.sqlite"


@dataclass(frozen=True)
class WorkDir:
    path: Path
    owned: bool

    def cleanup(self) -> None:
        if self.owned:
            shutil.rmtree(self.path, ignore_errors=True)


def prepare_work_dir(tmp_path: Path | None) -> WorkDir:
    """Create the run's working directory.

    A caller-supplied directory is created if missing and kept after the run;
    an auto-generated one is removed by ``WorkDir.cleanup``.
    """

    if tmp_path is None:
        return WorkDir(Path(tempfile.mkdtemp(prefix="cdr-export-tmp")), owned=True)
    tmp_path.mkdir(parents=True, exist_ok=True)
    return WorkDir(tmp_path, owned=False)


class MediaCache:
    """On-disk map from original media URL to its MediaObject.

    Written during the media pass and only read during the document pass.
    Lives for one export run: ``close(discard=True)`` deletes the backing file.
    """

    def __init__(self, db_path: Path, *, commit_every: int = 1000) -> None:
        self.db_path = db_path
        self._commit_every = commit_every
        self._pending = 0
        self._conn: sqlite3.Connection | None = sqlite3.connect(str(db_path))
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS media_objects ("
            " url TEXT PRIMARY KEY,"
            " payload TEXT NOT NULL)"
        )
        self._conn.commit()

    @classmethod
    def open(cls, work_dir: Path, *, commit_every: int = 1000) -> MediaCache:
        work_dir.mkdir(parents=True, exist_ok=True)
        return cls(work_dir / CACHE_FILENAME, commit_every=commit_every)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Media cache is closed")
        return self._conn

    def put(self, key: str, value: MediaObject) -> None:
        conn = self._connection()
        conn.execute(
            "INSERT OR REPLACE INTO media_objects (url, payload) VALUES (?, ?)",
            (key, json.dumps(value.to_dict(), ensure_ascii=False)),
        )
        self._pending += 1
        if self._pending >= self._commit_every:
            conn.commit()
            self._pending = 0

    def get(self, key: str) -> MediaObject | None:
        if not isinstance(key, str) or not key:
            return None
        row = (
            self._connection()
            .execute("SELECT payload FROM media_objects WHERE url = ?", (key,))
            .fetchone()
        )
        if row is None:
            return None
        try:
            return MediaObject.from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring corrupt media cache entry for {key}: {e}")
            return None

    def __len__(self) -> int:
        row = self._connection().execute("SELECT COUNT(*) FROM media_objects").fetchone()
        return int(row[0])

    def flush(self) -> None:
        self._connection().commit()
        self._pending = 0

    def close(self, *, discard: bool = True) -> None:
        if self._conn is None:
            return
        self._conn.commit()
        self._conn.close()
        self._conn = None
        if discard:
            self.db_path.unlink(missing_ok=True)

    def __enter__(self) -> MediaCache:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
