"""
Thread-safe SQLite dedup cache for trackfetch.

The cache maps a track fingerprint to the CompletionRecord written when the
track was last fully acquired (downloaded, tagged and placed). It is
consulted before scheduling work so re-runs skip completed tracks.

Schema:
    schema_version:       Single row with the schema version
    completion_records:   One row per fingerprint (PRIMARY KEY)

Rules:
    - A record whose file no longer exists on disk is a miss: the cache is
      an optimization, never the authority.
    - Records are inserted or updated, never deleted by the pipeline.
      prune_missing() exists for explicit user maintenance only.
    - Commits from parallel workers are serialized by a lock and upserted
      on the fingerprint primary key, so one fingerprint always has at
      most one record.

Usage:
    cache = DedupCache(output_dir / "cache.db")

    record = cache.lookup(fp)
    if record is None:
        ...  # acquire the track
        cache.commit(CompletionRecord(fp, path, "mp3", now_iso(), checksum))
"""

import hashlib
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

from trackfetch.core.exceptions import CacheError
from trackfetch.core.logger import get_logger

logger = get_logger(__name__)


DATABASE_VERSION = 1

# Chunk size used when hashing audio files
_CHECKSUM_CHUNK_SIZE = 1024 * 1024


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS completion_records (
    fingerprint TEXT PRIMARY KEY,
    file_path TEXT NOT NULL,
    format TEXT NOT NULL,
    tagged_at TEXT NOT NULL,
    checksum TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_completion_records_path ON completion_records(file_path);
"""


@dataclass(frozen=True)
class CompletionRecord:
    """
    Proof that a track was fully acquired.

    Attributes:
        fingerprint: Canonical dedup key of the track.
        file_path: Absolute path of the placed file.
        format: Audio format of the file ("mp3", "m4a", "flac").
        tagged_at: ISO-8601 UTC timestamp of tagging.
        checksum: sha256 hex digest of the placed file.
    """
    fingerprint: str
    file_path: str
    format: str
    tagged_at: str
    checksum: str

    def to_dict(self) -> dict[str, str]:
        return {
            "fingerprint": self.fingerprint,
            "file_path": self.file_path,
            "format": self.format,
            "tagged_at": self.tagged_at,
            "checksum": self.checksum,
        }


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def file_checksum(path: Path) -> str:
    """Return the sha256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHECKSUM_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class DedupCache:
    """
    Thread-safe SQLite store of CompletionRecords keyed by fingerprint.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing. The cache is
    owned by one run; there is no module-level instance.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise CacheError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize cache: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # thread safety handled by _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "DedupCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise CacheError(
                    f"Cache version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CompletionRecord:
        return CompletionRecord(
            fingerprint=row["fingerprint"],
            file_path=row["file_path"],
            format=row["format"],
            tagged_at=row["tagged_at"],
            checksum=row["checksum"],
        )

    # =========================================================================
    # Lookup / Commit
    # =========================================================================

    def get(self, fingerprint: str) -> CompletionRecord | None:
        """Return the stored record for a fingerprint, without checking the file."""
        try:
            with self._lock:
                with self._get_connection() as conn:
                    cursor = conn.execute(
                        "SELECT * FROM completion_records WHERE fingerprint = ?",
                        (fingerprint,)
                    )
                    row = cursor.fetchone()
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to read cache: {e}",
                details={"fingerprint": fingerprint}
            ) from e
        return self._row_to_record(row) if row else None

    def lookup(self, fingerprint: str) -> CompletionRecord | None:
        """
        Find a usable completion record for a fingerprint.

        Args:
            fingerprint: Canonical track key.

        Returns:
            The CompletionRecord if one exists AND its file is still on
            disk, None otherwise. A stale record stays in the store and
            is overwritten by the next commit for the same fingerprint.
        """
        record = self.get(fingerprint)
        if record is None:
            return None

        if not Path(record.file_path).is_file():
            logger.debug(f"Cache entry is stale (file missing): {record.file_path}")
            return None

        return record

    def commit(self, record: CompletionRecord) -> None:
        """
        Insert or update the record keyed by record.fingerprint.

        The fingerprint is not a separate argument: it is read from the
        record itself, so a record can never be filed under another key.
        An existing record for the same fingerprint is replaced whole
        (path, format, timestamp and checksum).

        Raises:
            CacheError: If the write fails.
        """
        try:
            with self._lock:
                with self._get_connection() as conn:
                    conn.execute("""
                        INSERT INTO completion_records
                            (fingerprint, file_path, format, tagged_at, checksum)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(fingerprint) DO UPDATE SET
                            file_path = excluded.file_path,
                            format = excluded.format,
                            tagged_at = excluded.tagged_at,
                            checksum = excluded.checksum
                    """, (
                        record.fingerprint,
                        record.file_path,
                        record.format,
                        record.tagged_at,
                        record.checksum,
                    ))
                    conn.commit()
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to commit cache record: {e}",
                details={"fingerprint": record.fingerprint, "path": record.file_path}
            ) from e

    # =========================================================================
    # Queries
    # =========================================================================

    def find_by_path(self, file_path: Path | str) -> CompletionRecord | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM completion_records WHERE file_path = ?",
                    (str(file_path),)
                )
                row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def all_records(self) -> list[CompletionRecord]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM completion_records ORDER BY file_path"
                )
                rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def stats(self) -> dict[str, int]:
        records = self.all_records()
        missing = sum(1 for r in records if not Path(r.file_path).is_file())
        return {
            "total": len(records),
            "present": len(records) - missing,
            "missing": missing,
        }

    # =========================================================================
    # Maintenance (user-invoked, never called by the pipeline)
    # =========================================================================

    def prune_missing(self) -> tuple[int, int]:
        """
        Delete records whose files no longer exist.

        Returns:
            (removed, total) where total is the record count before pruning.
        """
        with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT fingerprint, file_path FROM completion_records"
                ).fetchall()
                stale = [row["fingerprint"] for row in rows if not Path(row["file_path"]).is_file()]
                conn.executemany(
                    "DELETE FROM completion_records WHERE fingerprint = ?",
                    [(fp,) for fp in stale]
                )
                conn.commit()

        if stale:
            logger.info(f"Pruned {len(stale)} stale cache entries")
        return len(stale), len(rows)
