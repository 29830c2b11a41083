"""
Structured Storage Implementation (SQLite)

DESIGN DECISION: SQLite is the preferred backend because:
1. Every operation runs in its own transaction - no partial writes
2. Secondary indexes (date, kind, category, date+kind) keep range
   queries off the full-scan path
3. It ships with Python and needs no server

TRADEOFFS:
- A single file can be locked by another process (we retry on open)
- A database written by a newer schema version cannot be opened by
  older code; that case is treated as "unavailable" and the ledger
  falls back to the flat store

Schema upgrades are additive and idempotent: each version only creates
tables and indexes that are absent. The version lives in PRAGMA user_version.
"""

import datetime as dt
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from pydantic import ValidationError as ModelValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.models.ledger import BackupRecord, SettingsRecord, Snapshot
from household_ledger.models.transaction import Transaction
from household_ledger.services.storage.interface import (
    SETTINGS_KEY,
    BackendUnavailable,
    StorageBackend,
    StorageError,
)


SCHEMA_VERSION = 2

# Column order of the transactions table
TRANSACTION_COLUMNS = [
    "id",
    "date",
    "kind",
    "category",
    "amount",
    "note",
    "created_at",
    "updated_at",
]

_MIGRATIONS: dict[int, str] = {
    1: """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            date TEXT NOT NULL,
            kind TEXT NOT NULL,
            category TEXT NOT NULL,
            amount INTEGER NOT NULL,
            note TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
        CREATE INDEX IF NOT EXISTS idx_transactions_kind ON transactions(kind);
        CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category);
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS backups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            version TEXT NOT NULL,
            payload TEXT NOT NULL
        );
    """,
    2: """
        CREATE INDEX IF NOT EXISTS idx_transactions_date_kind ON transactions(date, kind);
        CREATE INDEX IF NOT EXISTS idx_backups_timestamp ON backups(timestamp);
    """,
}

logger = structlog.get_logger(__name__)


class StructuredStore(StorageBackend):
    """
    SQLite implementation of ledger storage.
    
    One row per transaction, one settings row keyed by SETTINGS_KEY,
    and an auto-sequenced backups table holding JSON snapshots.
    """
    
    name = "structured"
    
    def __init__(
        self,
        path: Path,
        max_backups: int = 10,
        open_attempts: int = 3,
        open_max_wait: float = 2.0,
    ):
        self._path = Path(path)
        self._max_backups = max_backups
        self._open_attempts = open_attempts
        self._open_max_wait = open_max_wait
        self._conn: Optional[sqlite3.Connection] = None
    
    @property
    def path(self) -> Path:
        return self._path
    
    @property
    def is_open(self) -> bool:
        return self._conn is not None
    
    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------
    
    async def open(self) -> None:
        """Open the database and bring its schema up to date."""
        if self._conn is not None:
            return
        
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailable(f"Cannot create data directory: {e}") from e
        
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._open_attempts),
                wait=wait_exponential(multiplier=0.1, max=self._open_max_wait),
                retry=retry_if_exception_type(sqlite3.OperationalError),
                reraise=True,
            ):
                with attempt:
                    self._conn = self._connect()
        except BackendUnavailable:
            raise
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to open structured store: {e}") from e
        
        logger.info("structured_store_opened", path=str(self._path))
    
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=5.0)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._migrate(conn)
        except Exception:
            conn.close()
            raise
        return conn
    
    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Apply every migration newer than the database's version."""
        current = conn.execute("PRAGMA user_version").fetchone()[0]
        if current > SCHEMA_VERSION:
            raise BackendUnavailable(
                f"Database schema version {current} is newer than supported "
                f"version {SCHEMA_VERSION}"
            )
        
        for version in range(current + 1, SCHEMA_VERSION + 1):
            conn.executescript(_MIGRATIONS[version])
            conn.execute(f"PRAGMA user_version = {version}")
            logger.info("schema_upgraded", path=str(self._path), version=version)
    
    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
    
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One atomic unit: commit on success, roll back on any error."""
        if self._conn is None:
            raise StorageError("Structured store is not open")
        
        conn = self._conn
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Structured store operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
    
    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------
    
    @staticmethod
    def _transaction_to_row(transaction: Transaction) -> tuple:
        record = transaction.to_record()
        return tuple(record[column] for column in TRANSACTION_COLUMNS)
    
    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
        return {column: row[column] for column in TRANSACTION_COLUMNS}
    
    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------
    
    async def get_all_transactions(self) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions ORDER BY date, created_at"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]
    
    async def get_transactions_by_date_range(
        self,
        start: dt.date,
        end: dt.date,
    ) -> list[dict[str, Any]]:
        """Range query served by the date index."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE date BETWEEN ? AND ? ORDER BY date",
                (start.isoformat(), end.isoformat()),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]
    
    async def add_transaction(self, transaction: Transaction) -> None:
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
                f"VALUES ({placeholders})",
                self._transaction_to_row(transaction),
            )
    
    async def update_transaction(self, transaction: Transaction) -> None:
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
                f"VALUES ({placeholders})",
                self._transaction_to_row(transaction),
            )
    
    async def delete_transaction(self, transaction_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM transactions WHERE id = ?",
                (transaction_id,),
            )
        return cursor.rowcount > 0
    
    async def add_transactions_batch(self, transactions: list[Transaction]) -> None:
        if not transactions:
            return
        
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        with self._transaction() as conn:
            conn.executemany(
                f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [self._transaction_to_row(t) for t in transactions],
            )
    
    async def clear_transactions(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM transactions")

    async def replace_all(
        self,
        transactions: list[Transaction],
        settings: SettingsRecord,
    ) -> None:
        """Clear, reinsert and save settings inside a single transaction."""
        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        with self._transaction() as conn:
            conn.execute("DELETE FROM transactions")
            conn.executemany(
                f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [self._transaction_to_row(t) for t in transactions],
            )
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (
                    SETTINGS_KEY,
                    settings.model_dump_json(),
                    settings.updated_at.isoformat(),
                ),
            )
    
    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------
    
    async def get_settings(self) -> Optional[dict[str, Any]]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?",
                (SETTINGS_KEY,),
            ).fetchone()
        
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Settings record is corrupt: {e}") from e
    
    async def save_settings(self, settings: SettingsRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (
                    SETTINGS_KEY,
                    settings.model_dump_json(),
                    settings.updated_at.isoformat(),
                ),
            )
    
    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------
    
    async def create_backup(self, snapshot: Snapshot) -> BackupRecord:
        record = BackupRecord(payload=snapshot)
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO backups (timestamp, version, payload) VALUES (?, ?, ?)",
                (
                    record.timestamp.isoformat(),
                    record.version,
                    snapshot.model_dump_json(),
                ),
            )
            record.id = cursor.lastrowid
            # Keep only the most recent backups
            conn.execute(
                "DELETE FROM backups WHERE id NOT IN ("
                "SELECT id FROM backups ORDER BY timestamp DESC, id DESC LIMIT ?)",
                (self._max_backups,),
            )
        return record
    
    async def list_backups(self) -> list[BackupRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, timestamp, version, payload FROM backups "
                "ORDER BY timestamp DESC, id DESC"
            ).fetchall()
        
        backups = []
        for row in rows:
            try:
                backups.append(BackupRecord(
                    id=row["id"],
                    timestamp=dt.datetime.fromisoformat(row["timestamp"]),
                    version=row["version"],
                    payload=Snapshot.model_validate_json(row["payload"]),
                ))
            except (ValueError, ModelValidationError) as e:
                logger.warning("backup_unreadable", backup_id=row["id"], error=str(e))
        return backups
