"""SQLite-backed checkpoint store for distribution progress."""

import asyncio
import logging
import sqlite3
import time
from pathlib import Path

from airdrop.models import BatchReceipt

log = logging.getLogger("airdrop.sqlite_store")


class SQLiteCheckpointStore:
    """Persistent checkpoint store backed by SQLite."""

    def __init__(self, db_path: str | Path = "airdrop_state.db") -> None:
        self.db_path = Path(db_path)
        self._lock = asyncio.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(
                """
                -- One row per job: index of the first unconfirmed batch
                CREATE TABLE IF NOT EXISTS cursors (
                    job_id TEXT PRIMARY KEY,
                    next_batch INTEGER NOT NULL,
                    updated_at REAL NOT NULL
                );

                -- Confirmed batches
                CREATE TABLE IF NOT EXISTS batches (
                    job_id TEXT NOT NULL,
                    batch_index INTEGER NOT NULL,
                    size INTEGER NOT NULL,
                    tx_id TEXT NOT NULL,
                    confirmed_at REAL NOT NULL,
                    PRIMARY KEY (job_id, batch_index)
                );
                CREATE INDEX IF NOT EXISTS idx_batches_job ON batches(job_id);
                """
            )
            conn.commit()
            log.debug(f"SQLite checkpoint store initialized at {self.db_path}")
        finally:
            conn.close()

    async def load(self, job_id: str) -> int:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute("SELECT next_batch FROM cursors WHERE job_id = ?", (job_id,)).fetchone()
                return row[0] if row else 0
            finally:
                conn.close()

    async def advance(self, job_id: str, receipt: BatchReceipt) -> None:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                now = time.time()
                conn.execute(
                    """
                    INSERT INTO batches (job_id, batch_index, size, tx_id, confirmed_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(job_id, batch_index) DO UPDATE SET
                        size = excluded.size,
                        tx_id = excluded.tx_id,
                        confirmed_at = excluded.confirmed_at
                    """,
                    (job_id, receipt.index, receipt.size, receipt.tx_id, now),
                )
                conn.execute(
                    """
                    INSERT INTO cursors (job_id, next_batch, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(job_id) DO UPDATE SET
                        next_batch = MAX(cursors.next_batch, excluded.next_batch),
                        updated_at = excluded.updated_at
                    """,
                    (job_id, receipt.index + 1, now),
                )
                conn.commit()
            finally:
                conn.close()

    async def receipts(self, job_id: str) -> list[BatchReceipt]:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                cursor = conn.execute(
                    "SELECT batch_index, size, tx_id FROM batches WHERE job_id = ? ORDER BY batch_index",
                    (job_id,),
                )
                return [BatchReceipt(index=i, size=s, tx_id=t) for i, s, t in cursor.fetchall()]
            finally:
                conn.close()

    async def clear(self, job_id: str) -> None:
        async with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute("DELETE FROM batches WHERE job_id = ?", (job_id,))
                conn.execute("DELETE FROM cursors WHERE job_id = ?", (job_id,))
                conn.commit()
            finally:
                conn.close()
