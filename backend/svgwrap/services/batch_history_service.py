"""Batch History Service for persisting snapshots of finished batches."""

import asyncio
import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import ValidationError

from svgwrap.config import settings
from svgwrap.core.batch.models import Batch, HistoryRecord, StorageInfo, utcnow
from svgwrap.core.constants import HISTORY_SCHEMA_VERSION
from svgwrap.core.exceptions import StorageIOError, StorageUnavailableError
from svgwrap.utils.logging import get_logger

logger = get_logger(__name__)


def _upgrade_v0(data: Dict[str, Any]) -> Dict[str, Any]:
    """Records written before versioning carried no schema_version field."""
    data["schema_version"] = 1
    return data


# Maps a stored schema version to the function that lifts it one version.
RECORD_UPGRADES: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _upgrade_v0,
}


class BatchHistoryService:
    """Durable, recency-ordered store of batch snapshots.

    Records live in one SQLite table keyed by ``record_id`` with a secondary
    index on ``saved_at``. An autoincrement ``seq`` column breaks ties between
    records saved at the same instant, later insertion first.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        record_size_estimate: Optional[int] = None,
    ):
        """Initialize the batch history service.

        Args:
            db_path: Path to the SQLite database file
            record_size_estimate: Assumed average record size in bytes, used
                only by :meth:`info`
        """
        self.db_path = db_path or settings.history_db_path
        self.record_size_estimate = (
            record_size_estimate or settings.history_record_size_estimate
        )
        self._lock = asyncio.Lock()
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailableError(
                f"Cannot open history database: {e}",
                details={"db_path": self.db_path},
            ) from e
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self, conn: sqlite3.Connection) -> None:
        """Create tables and indexes on first use."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history_records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                record_id TEXT NOT NULL UNIQUE,
                batch_id TEXT NOT NULL,
                saved_at REAL NOT NULL,  -- POSIX seconds, UTC
                schema_version INTEGER NOT NULL,
                payload TEXT NOT NULL  -- HistoryRecord JSON
            )
        """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_history_records_saved_at
            ON history_records(saved_at)
        """
        )

    @contextmanager
    def _get_db(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Get a committed-on-exit connection, mapping SQLite errors."""
        conn = self._connect()
        try:
            if not self._initialized:
                self._init_db(conn)
                self._initialized = True
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if not self._initialized:
                raise StorageUnavailableError(
                    f"History database is not usable: {e}",
                    details={"db_path": self.db_path, "operation": operation},
                ) from e
            raise StorageIOError(
                f"History {operation} failed: {e}",
                details={"db_path": self.db_path, "operation": operation},
            ) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageIOError(
                f"History {operation} failed: {e}",
                details={"db_path": self.db_path, "operation": operation},
            ) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def save(self, batch: Batch) -> str:
        """Persist a point-in-time copy of ``batch``.

        The snapshot is serialised before any suspension point, so later
        activity on the live batch never reaches the stored record. When the
        batch may still be running in another thread, pass
        ``orchestrator.snapshot(batch)`` so the copy is taken under the
        orchestrator's lock and its tasks agree with each other.

        Returns:
            The new record id
        """
        record = HistoryRecord(batch=batch.model_copy(deep=True), saved_at=utcnow())
        payload = record.model_dump_json()

        async with self._lock:
            with self._get_db("save") as conn:
                conn.execute(
                    """
                    INSERT INTO history_records (
                        record_id, batch_id, saved_at, schema_version, payload
                    ) VALUES (?, ?, ?, ?, ?)
                """,
                    (
                        record.record_id,
                        record.batch.batch_id,
                        record.saved_at.timestamp(),
                        record.schema_version,
                        payload,
                    ),
                )

        logger.info(
            "Batch saved to history",
            record_id=record.record_id,
            batch_id=record.batch.batch_id,
            status=record.batch.status.value,
        )
        return record.record_id

    async def list(self) -> List[HistoryRecord]:
        """All records, most recently saved first."""
        async with self._lock:
            with self._get_db("list") as conn:
                rows = conn.execute(
                    """
                    SELECT record_id, schema_version, payload
                    FROM history_records
                    ORDER BY saved_at DESC, seq DESC
                """
                ).fetchall()

        return [self._load_record(row) for row in rows]

    async def get(self, record_id: str) -> Optional[HistoryRecord]:
        """Fetch one record, or ``None`` when it does not exist."""
        async with self._lock:
            with self._get_db("get") as conn:
                row = conn.execute(
                    """
                    SELECT record_id, schema_version, payload
                    FROM history_records WHERE record_id = ?
                """,
                    (record_id,),
                ).fetchone()

        if not row:
            return None
        return self._load_record(row)

    async def delete(self, record_id: str) -> None:
        """Delete one record; unknown ids are ignored."""
        async with self._lock:
            with self._get_db("delete") as conn:
                cursor = conn.execute(
                    "DELETE FROM history_records WHERE record_id = ?", (record_id,)
                )
                deleted = cursor.rowcount

        logger.debug("History record deleted", record_id=record_id, deleted=deleted)

    async def clear(self) -> None:
        """Remove every record."""
        async with self._lock:
            with self._get_db("clear") as conn:
                cursor = conn.execute("DELETE FROM history_records")
                deleted = cursor.rowcount

        logger.info("History cleared", deleted=deleted)

    async def info(self) -> StorageInfo:
        """Exact record count plus a coarse size estimate.

        ``estimated_size_bytes`` is ``count`` times a fixed per-record average;
        it is not a measurement of the database file.
        """
        async with self._lock:
            with self._get_db("info") as conn:
                count = conn.execute(
                    "SELECT COUNT(*) FROM history_records"
                ).fetchone()[0]

        return StorageInfo(
            count=count, estimated_size_bytes=count * self.record_size_estimate
        )

    async def cleanup_old_records(self, retention_days: Optional[int] = None) -> int:
        """Delete records saved before the retention cutoff.

        Returns:
            Number of records deleted
        """
        days = retention_days if retention_days is not None else settings.history_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        async with self._lock:
            with self._get_db("cleanup") as conn:
                cursor = conn.execute(
                    "DELETE FROM history_records WHERE saved_at < ?",
                    (cutoff.timestamp(),),
                )
                deleted = cursor.rowcount

        if deleted:
            logger.info("Cleaned up old history records", deleted=deleted)
        return deleted

    def _load_record(self, row: sqlite3.Row) -> HistoryRecord:
        """Decode a stored payload, upgrading older schema versions."""
        record_id = row["record_id"]
        version = row["schema_version"]

        if version > HISTORY_SCHEMA_VERSION:
            raise StorageIOError(
                f"History record {record_id} uses unknown schema version {version}",
                details={"record_id": record_id, "schema_version": version},
            )

        try:
            if version == HISTORY_SCHEMA_VERSION:
                return HistoryRecord.model_validate_json(row["payload"])

            data = json.loads(row["payload"])
            while version < HISTORY_SCHEMA_VERSION:
                data = RECORD_UPGRADES[version](data)
                version += 1
            return HistoryRecord.model_validate_json(json.dumps(data))
        except (ValidationError, ValueError, KeyError) as e:
            raise StorageIOError(
                f"History record {record_id} is unreadable: {e}",
                details={"record_id": record_id, "schema_version": version},
            ) from e
