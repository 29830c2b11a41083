"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Prefer a structured, indexed store and fall back to a flat one
2. Switch backends at initialization without touching ledger logic
3. Use failing or in-memory backends in tests

Transactions come back from storage as raw JSON-compatible records.
The ledger parses them, so one damaged record never makes the whole
collection unreadable and can still be reported and repaired.
"""

import datetime as dt
from abc import ABC, abstractmethod
from typing import Any, Optional

from household_ledger.models.ledger import BackupRecord, SettingsRecord, Snapshot
from household_ledger.models.transaction import Transaction


SETTINGS_KEY = "main"


class StorageBackend(ABC):
    """
    Abstract interface for ledger persistence.
    
    Three logical collections: transactions (keyed by id), settings
    (one record under SETTINGS_KEY) and backups (append-only,
    sequence-numbered, capped to the most recent N).
    """
    
    #: Short name shown to collaborators (e.g. a "degraded storage" badge)
    name: str = "abstract"
    
    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True between a successful open() and close()."""
    
    @abstractmethod
    async def open(self) -> None:
        """
        Prepare the backend for use.
        
        Raises:
            BackendUnavailable: If the backend cannot be used
        """
    
    @abstractmethod
    async def close(self) -> None:
        """Release the backend. Safe to call more than once."""
    
    @abstractmethod
    async def get_all_transactions(self) -> list[dict[str, Any]]:
        """
        Get every stored transaction as a raw record.
        
        Raises:
            StorageError: If reading fails
        """
    
    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> None:
        """
        Insert a new transaction.
        
        Raises:
            StorageError: If the write fails (including a duplicate id)
        """
    
    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        """
        Replace the stored transaction with the same id (insert if absent).
        
        Raises:
            StorageError: If the write fails
        """
    
    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Delete a transaction by id.
        
        Returns:
            True if a record was deleted, False if none existed
        """
    
    @abstractmethod
    async def add_transactions_batch(self, transactions: list[Transaction]) -> None:
        """
        Insert several transactions as one atomic operation.
        
        Either all records are written or none are.
        """
    
    @abstractmethod
    async def clear_transactions(self) -> None:
        """Delete every stored transaction."""
    
    @abstractmethod
    async def get_settings(self) -> Optional[dict[str, Any]]:
        """Get the raw settings record, or None if never saved."""
    
    @abstractmethod
    async def save_settings(self, settings: SettingsRecord) -> None:
        """Replace the settings record."""
    
    @abstractmethod
    async def create_backup(self, snapshot: Snapshot) -> BackupRecord:
        """
        Append a backup and evict all but the most recent `max_backups`.
        
        Returns:
            The stored record, with its sequence number
        """
    
    @abstractmethod
    async def list_backups(self) -> list[BackupRecord]:
        """All retained backups, newest first."""
    
    async def replace_all(
        self,
        transactions: list[Transaction],
        settings: SettingsRecord,
    ) -> None:
        """
        Overwrite the transactions and settings with a full state dump.

        Used by restore and by the fallback path to bring a backend in
        line with the in-memory state.
        """
        await self.clear_transactions()
        await self.add_transactions_batch(transactions)
        await self.save_settings(settings)

    async def get_latest_backup(self) -> Optional[BackupRecord]:
        """The newest backup, or None if there is none."""
        backups = await self.list_backups()
        return backups[0] if backups else None
    
    async def get_transactions_by_date_range(
        self,
        start: dt.date,
        end: dt.date,
    ) -> list[dict[str, Any]]:
        """
        Get raw records dated within [start, end].
        
        Backends without a date index scan every record.
        """
        low, high = start.isoformat(), end.isoformat()
        return [
            record
            for record in await self.get_all_transactions()
            if low <= str(record.get("date", "")) <= high
        ]


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class BackendUnavailable(StorageError):
    """The backend is unsupported, blocked or could not be opened."""
    pass


class PersistenceFailure(StorageError):
    """A write failed after the change was already applied in memory."""
    pass
