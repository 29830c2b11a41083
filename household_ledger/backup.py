"""
Backup Manager

Snapshots the full ledger state into the active backend's backup area.

Two triggers:
1. Every N-th transaction (N = auto_backup_interval)
2. On demand (Ledger.create_backup)

Retention (keep the most recent max_backups) is enforced by the
backends. When the ledger runs without any backend, the most recent
backup is kept in memory so restore_latest_backup still works.
"""

from typing import Callable, Optional

import structlog

from household_ledger.models.ledger import BackupRecord, Snapshot
from household_ledger.services.storage import StorageBackend, StorageError


logger = structlog.get_logger(__name__)


class BackupManager:
    """Creates and fetches ledger backups."""
    
    def __init__(
        self,
        snapshot: Callable[[], Snapshot],
        interval: int = 100,
    ):
        """
        Args:
            snapshot: Produces the payload (the ledger's snapshot()).
            interval: Auto-backup every `interval` transactions.
        """
        self._snapshot = snapshot
        self._interval = interval
        self._in_memory: Optional[BackupRecord] = None
    
    def is_due(self, transaction_count: int) -> bool:
        return transaction_count > 0 and transaction_count % self._interval == 0
    
    async def create(self, backend: Optional[StorageBackend]) -> BackupRecord:
        """
        Snapshot the ledger now.
        
        Raises:
            StorageError: If the backend write fails
        """
        payload = self._snapshot()
        if backend is None:
            self._in_memory = BackupRecord(id=1, payload=payload)
            logger.info("backup_kept_in_memory", transactions=len(payload.transactions))
            return self._in_memory
        
        record = await backend.create_backup(payload)
        logger.info(
            "backup_created",
            backend=backend.name,
            backup_id=record.id,
            transactions=len(payload.transactions),
        )
        return record
    
    async def auto_backup(
        self,
        backend: Optional[StorageBackend],
        transaction_count: int,
    ) -> Optional[BackupRecord]:
        """Create a backup if one is due; failures are logged, never raised."""
        if not self.is_due(transaction_count):
            return None
        
        try:
            return await self.create(backend)
        except StorageError as e:
            logger.error(
                "auto_backup_failed",
                error=str(e),
                transaction_count=transaction_count,
            )
            return None
    
    async def latest(self, backend: Optional[StorageBackend]) -> Optional[BackupRecord]:
        if backend is None:
            return self._in_memory
        return await backend.get_latest_backup()
