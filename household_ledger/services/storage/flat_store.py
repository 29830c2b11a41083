"""
Flat Storage Implementation (JSON blobs)

DESIGN DECISION: The flat store is the fallback used when the structured
store is unavailable or fails mid-session. It keeps one JSON blob per
logical collection in a directory:

    transactions.json   list of transaction records
    settings.json       the settings record
    backups.json        {"next_id": n, "backups": [...]}

TRADEOFFS:
- Every read and write costs O(collection size) (acceptable: this is
  the degraded path, not the common one)
- No secondary indexes (range queries scan)
- Writes go through a temporary file and an atomic rename, so a crash
  leaves either the old or the new blob, never a torn one
"""

import json
import os
import tempfile
from collections import Counter
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError as ModelValidationError

from household_ledger.models.ledger import BackupRecord, SettingsRecord, Snapshot
from household_ledger.models.transaction import Transaction
from household_ledger.services.storage.interface import (
    BackendUnavailable,
    StorageBackend,
    StorageError,
)


TRANSACTIONS_BLOB = "transactions.json"
SETTINGS_BLOB = "settings.json"
BACKUPS_BLOB = "backups.json"

logger = structlog.get_logger(__name__)


class FlatStore(StorageBackend):
    """
    Single-blob-per-collection implementation of ledger storage.
    
    Functionally equivalent to the structured store.
    """
    
    name = "flat"
    
    def __init__(self, directory: Path, max_backups: int = 10):
        self._dir = Path(directory)
        self._max_backups = max_backups
        self._open = False
    
    @property
    def directory(self) -> Path:
        return self._dir
    
    @property
    def is_open(self) -> bool:
        return self._open
    
    async def open(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailable(f"Cannot create flat store directory: {e}") from e
        
        if not os.access(self._dir, os.W_OK):
            raise BackendUnavailable(f"Flat store directory is not writable: {self._dir}")
        
        self._open = True
        logger.info("flat_store_opened", path=str(self._dir))
    
    async def close(self) -> None:
        self._open = False
    
    # -------------------------------------------------------------------------
    # Blob I/O
    # -------------------------------------------------------------------------
    
    def _read(self, blob: str, default: Any) -> Any:
        if not self._open:
            raise StorageError("Flat store is not open")
        
        path = self._dir / blob
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return default
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {blob}: {e}") from e
    
    def _write(self, blob: str, data: Any) -> None:
        if not self._open:
            raise StorageError("Flat store is not open")
        
        path = self._dir / blob
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{blob}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {blob}: {e}") from e
    
    def _read_transactions(self) -> list[dict[str, Any]]:
        records = self._read(TRANSACTIONS_BLOB, [])
        if not isinstance(records, list):
            raise StorageError(f"{TRANSACTIONS_BLOB} does not hold a list")
        return records
    
    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------
    
    async def get_all_transactions(self) -> list[dict[str, Any]]:
        return self._read_transactions()
    
    async def add_transaction(self, transaction: Transaction) -> None:
        records = self._read_transactions()
        if any(r.get("id") == transaction.id for r in records if isinstance(r, dict)):
            raise StorageError(f"Duplicate transaction id: {transaction.id}")
        records.append(transaction.to_record())
        self._write(TRANSACTIONS_BLOB, records)
    
    async def update_transaction(self, transaction: Transaction) -> None:
        records = self._read_transactions()
        for index, record in enumerate(records):
            if isinstance(record, dict) and record.get("id") == transaction.id:
                records[index] = transaction.to_record()
                break
        else:
            records.append(transaction.to_record())
        self._write(TRANSACTIONS_BLOB, records)
    
    async def delete_transaction(self, transaction_id: str) -> bool:
        records = self._read_transactions()
        remaining = [
            r for r in records
            if not (isinstance(r, dict) and r.get("id") == transaction_id)
        ]
        if len(remaining) == len(records):
            return False
        self._write(TRANSACTIONS_BLOB, remaining)
        return True
    
    async def add_transactions_batch(self, transactions: list[Transaction]) -> None:
        if not transactions:
            return
        
        records = self._read_transactions()
        existing = {r.get("id") for r in records if isinstance(r, dict)}
        counts = Counter(t.id for t in transactions)
        duplicates = existing.intersection(counts)
        duplicates.update(i for i, n in counts.items() if n > 1)
        if duplicates:
            raise StorageError(f"Duplicate transaction ids: {sorted(duplicates)}")
        
        records.extend(t.to_record() for t in transactions)
        self._write(TRANSACTIONS_BLOB, records)
    
    async def clear_transactions(self) -> None:
        self._write(TRANSACTIONS_BLOB, [])
    
    async def replace_all(
        self,
        transactions: list[Transaction],
        settings: SettingsRecord,
    ) -> None:
        self._write(TRANSACTIONS_BLOB, [t.to_record() for t in transactions])
        self._write(SETTINGS_BLOB, settings.model_dump(mode="json"))
    
    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------
    
    async def get_settings(self) -> Optional[dict[str, Any]]:
        data = self._read(SETTINGS_BLOB, None)
        if data is not None and not isinstance(data, dict):
            raise StorageError(f"{SETTINGS_BLOB} does not hold an object")
        return data
    
    async def save_settings(self, settings: SettingsRecord) -> None:
        self._write(SETTINGS_BLOB, settings.model_dump(mode="json"))
    
    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------
    
    def _read_backups(self) -> dict[str, Any]:
        data = self._read(BACKUPS_BLOB, {"next_id": 1, "backups": []})
        if not isinstance(data, dict) or not isinstance(data.get("backups"), list):
            raise StorageError(f"{BACKUPS_BLOB} is corrupt")
        return data
    
    async def create_backup(self, snapshot: Snapshot) -> BackupRecord:
        data = self._read_backups()
        record = BackupRecord(id=int(data.get("next_id", 1)), payload=snapshot)
        
        backups = data["backups"]
        backups.append(record.model_dump(mode="json"))
        # Oldest first in the blob; evict from the front
        data["backups"] = backups[-self._max_backups:]
        data["next_id"] = record.id + 1
        
        self._write(BACKUPS_BLOB, data)
        return record
    
    async def list_backups(self) -> list[BackupRecord]:
        backups = []
        for raw in reversed(self._read_backups()["backups"]):
            try:
                backups.append(BackupRecord.model_validate(raw))
            except ModelValidationError as e:
                logger.warning(
                    "backup_unreadable",
                    backup_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        return backups
