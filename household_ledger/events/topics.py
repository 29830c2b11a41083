"""Topics published by the ledger."""

LOADED = "loaded"
CHANGED = "changed"
TRANSACTION_ADDED = "transactionAdded"
TRANSACTION_UPDATED = "transactionUpdated"
TRANSACTION_DELETED = "transactionDeleted"
TRANSACTIONS_BATCH_ADDED = "transactionsBatchAdded"
FILTERS_APPLIED = "filtersApplied"
CATEGORY_ADDED = "categoryAdded"
CATEGORY_REMOVED = "categoryRemoved"
CATEGORY_RENAMED = "categoryRenamed"
DATA_CLEARED = "dataCleared"
DATA_REPAIRED = "dataRepaired"
SETTINGS_SAVED = "settingsSaved"
STORAGE_DEGRADED = "storageDegraded"
ERROR = "error"

ALL_TOPICS = (
    LOADED,
    CHANGED,
    TRANSACTION_ADDED,
    TRANSACTION_UPDATED,
    TRANSACTION_DELETED,
    TRANSACTIONS_BATCH_ADDED,
    FILTERS_APPLIED,
    CATEGORY_ADDED,
    CATEGORY_REMOVED,
    CATEGORY_RENAMED,
    DATA_CLEARED,
    DATA_REPAIRED,
    SETTINGS_SAVED,
    STORAGE_DEGRADED,
    ERROR,
)
