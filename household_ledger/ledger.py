"""
Ledger

The single owner of the household's transactions, categories, filters
and statistics. Everything else (tables, charts, import/export, backups
UI) is a collaborator that reads copies and listens to events.

FLOW of every mutation:
1. Validate the draft (nothing is touched if this fails)
2. Apply the change in memory and drop derived caches
3. Persist through the active backend, falling back to the flat store
   if the structured store fails
4. Publish the specific event, then `changed`

DESIGN DECISION: Memory is authoritative. A storage failure never fails
a mutation; it degrades durability (flat store, then memory only) and
the full state is written again at the next successful flush.
"""

import asyncio
import datetime as dt
from collections import Counter
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError as ModelValidationError

from household_ledger.audit import AuditLogger
from household_ledger.backup import BackupManager
from household_ledger.config import LedgerSettings, get_settings
from household_ledger.debounce import DebouncedCall
from household_ledger.errors import (
    CategoryInUseError,
    LedgerDestroyedError,
    LedgerError,
    LedgerNotReadyError,
    NotFoundError,
    ValidationError,
)
from household_ledger.events import topics
from household_ledger.events.bus import EventBus, Handler, Subscription
from household_ledger.models.ledger import (
    BackupRecord,
    BatchResult,
    FieldError,
    IntegrityIssue,
    IntegrityReport,
    LedgerStats,
    MonthlyTotals,
    RepairReport,
    RowError,
    SettingsRecord,
    Snapshot,
    Summary,
)
from household_ledger.models.transaction import (
    FALLBACK_CATEGORIES,
    CategoryRegistry,
    FilterState,
    Transaction,
    TransactionKind,
    utc_now,
)
from household_ledger.queries import (
    build_monthly_aggregate,
    compute_summary,
    filter_transactions,
)
from household_ledger.services.storage import (
    FlatStore,
    PersistenceFailure,
    StorageBackend,
    StorageError,
    StructuredStore,
)
from household_ledger.validation import (
    record_problems,
    sanitize_date,
    sanitize_kind,
    validate_category_name,
    validate_transaction,
)


logger = structlog.get_logger(__name__)

# Fields a patch may change; id and timestamps are owned by the ledger
_MUTABLE_FIELDS = ("date", "kind", "category", "amount", "note")
_LEGACY_KEYS = {"type": "kind", "description": "note"}


class LedgerState(str, Enum):
    """Lifecycle of a Ledger."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED_READY = "degraded_ready"
    DESTROYED = "destroyed"


def _field_errors(error: ModelValidationError) -> list[FieldError]:
    """Convert a pydantic validation error into field errors."""
    return [
        FieldError(
            field=".".join(str(part) for part in e["loc"]) or "value",
            message=e["msg"],
        )
        for e in error.errors()
    ]


class Ledger:
    """
    Household ledger engine.

    Usage:
        ledger = Ledger()
        await ledger.initialize()
        tx = await ledger.add_transaction({
            "date": "2024-03-01", "kind": "expense",
            "category": "Food", "amount": 1200,
        })
        summary = ledger.calculate_summary()
        await ledger.destroy()
    """

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        structured_backend: Optional[StorageBackend] = None,
        flat_backend: Optional[StorageBackend] = None,
        bus: Optional[EventBus] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            settings: Configuration (defaults to get_settings()).
            structured_backend: Preferred backend. Defaults to a StructuredStore
                under settings.data_dir unless prefer_structured_store is off.
            flat_backend: Fallback backend (defaults to a FlatStore).
            bus: Event bus to publish on (a new one by default).
            audit_logger: If given, attached to the bus.
        """
        self._config = settings or get_settings()

        if structured_backend is None and self._config.prefer_structured_store:
            structured_backend = StructuredStore(
                self._config.database_path,
                max_backups=self._config.max_backups,
                open_attempts=self._config.open_retry_attempts,
                open_max_wait=self._config.open_retry_max_wait,
            )
        self._structured = structured_backend
        self._flat = flat_backend or FlatStore(
            self._config.flat_store_path,
            max_backups=self._config.max_backups,
        )
        self._backend: Optional[StorageBackend] = None

        self._bus = bus or EventBus(max_handlers=self._config.max_handlers_per_topic)
        self._audit = audit_logger
        if self._audit is not None:
            self._audit.attach(self._bus)

        self._state = LedgerState.UNINITIALIZED
        self._transactions: list[Transaction] = []
        # Stored records that could not be parsed; reported and repaired, never served
        self._malformed: list[Any] = []
        self._categories = CategoryRegistry()
        self._filters = FilterState()
        self._filtered_view: list[Transaction] = []
        self._id_counter = 0
        self._stats = LedgerStats()
        self._dirty = False

        self._summary_cache: Optional[tuple[int, Summary]] = None
        self._monthly_cache: dict[tuple, dict[str, MonthlyTotals]] = {}

        self._settings_save = DebouncedCall(
            self._save_settings,
            self._config.settings_debounce_seconds,
        )
        self._backups = BackupManager(
            self.snapshot,
            interval=self._config.auto_backup_interval,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def is_degraded(self) -> bool:
        return self._state == LedgerState.DEGRADED_READY

    @property
    def is_dirty(self) -> bool:
        """True if memory holds changes no backend has accepted yet."""
        return self._dirty

    @property
    def backend_name(self) -> str:
        """Name of the active backend, or "memory" when none is open."""
        return self._backend.name if self._backend is not None else "memory"

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def categories(self) -> CategoryRegistry:
        self._check_alive()
        return self._categories.model_copy(deep=True)

    @property
    def filters(self) -> FilterState:
        self._check_alive()
        return self._filters.model_copy()

    @property
    def stats(self) -> LedgerStats:
        self._check_alive()
        return self._stats.model_copy()

    @property
    def filtered_view(self) -> list[Transaction]:
        self._check_alive()
        return [t.model_copy() for t in self._filtered_view]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Open storage and load the persisted state.

        Tries the structured store first and the flat store second. If
        neither opens, the ledger runs in memory only (DEGRADED_READY).
        Calling it again after a successful initialization does nothing.
        """
        self._check_alive()
        if self._state != LedgerState.UNINITIALIZED:
            return

        self._state = LedgerState.INITIALIZING
        raw_transactions: list[Any] = []
        raw_settings: Optional[dict[str, Any]] = None
        failure: Optional[str] = None

        for backend in (self._structured, self._flat):
            if backend is None:
                continue
            try:
                await backend.open()
                raw_transactions = await backend.get_all_transactions()
            except StorageError as e:
                failure = str(e)
                logger.warning("backend_fallback", backend=backend.name, error=failure)
                await backend.close()
                continue
            self._backend = backend
            break
        else:
            logger.error("storage_unavailable", error=failure)

        if self._backend is not None:
            # Unreadable settings fall back to defaults; the transactions stay on this backend
            try:
                raw_settings = await self._backend.get_settings()
            except StorageError as e:
                logger.warning("settings_unreadable", backend=self._backend.name, error=str(e))

        self._load(raw_transactions, raw_settings)

        degraded = self._backend is None or (
            self._structured is not None and self._backend is not self._structured
        )
        self._state = LedgerState.DEGRADED_READY if degraded else LedgerState.READY

        logger.info(
            "ledger_initialized",
            backend=self.backend_name,
            state=self._state.value,
            transactions=len(self._transactions),
            malformed=len(self._malformed),
        )
        self._bus.publish(topics.LOADED, {
            "backend": self.backend_name,
            "transactions": len(self._transactions),
        })
        if degraded:
            self._bus.publish(topics.STORAGE_DEGRADED, {
                "backend": self.backend_name,
                "reason": failure or "structured store unavailable",
            })
        self._bus.publish(topics.CHANGED)

    async def flush(self) -> None:
        """Run any pending settings save now (writing full state if dirty)."""
        self._check_alive()
        if self._dirty:
            self._settings_save.schedule()
        await self._settings_save.flush()

    async def destroy(self) -> None:
        """
        Flush, close storage and drop every subscription.

        The ledger is unusable afterwards; destroying twice is a no-op.
        """
        if self._state == LedgerState.DESTROYED:
            return

        await self.flush()
        self._settings_save.cancel()

        if self._backend is not None:
            await self._backend.close()
            self._backend = None
        if self._audit is not None:
            self._audit.detach()
        self._bus.clear()

        self._transactions = []
        self._malformed = []
        self._filtered_view = []
        self._invalidate_caches()
        self._state = LedgerState.DESTROYED
        logger.info("ledger_destroyed")

    def _check_alive(self) -> None:
        if self._state == LedgerState.DESTROYED:
            raise LedgerDestroyedError("Ledger has been destroyed")

    def _check_ready(self) -> None:
        self._check_alive()
        if self._state not in (LedgerState.READY, LedgerState.DEGRADED_READY):
            raise LedgerNotReadyError("Ledger is not initialized; call initialize() first")

    def _load(
        self,
        raw_transactions: Sequence[Any],
        raw_settings: Optional[Mapping[str, Any]],
    ) -> None:
        """Parse stored records and settings into memory."""
        transactions, malformed = [], []
        for record in raw_transactions:
            try:
                transactions.append(Transaction.model_validate(record))
            except ModelValidationError:
                malformed.append(record)
        if malformed:
            logger.warning("malformed_records_loaded", count=len(malformed))

        settings = SettingsRecord()
        if raw_settings is not None:
            try:
                settings = SettingsRecord.model_validate(raw_settings)
            except ModelValidationError as e:
                logger.warning("settings_unreadable", error=str(e))

        self._transactions = transactions
        self._malformed = malformed
        self._categories = settings.categories
        self._filters = settings.filters
        # Records written before the counter existed still count as issued ids
        self._id_counter = max(settings.id_counter, len(transactions) + len(malformed))
        self._stats = settings.stats
        self._collection_changed(touch=False)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, draft: Mapping[str, Any]) -> Transaction:
        """
        Validate and add a single transaction.

        Raises:
            ValidationError: If the draft is invalid (nothing is changed)
        """
        self._check_ready()
        result = validate_transaction(draft, self._categories)
        if not result.is_valid:
            raise ValidationError(result.errors)

        transaction = self._mint(result.data)
        self._transactions.append(transaction)
        self._collection_changed()

        await self._persist("add_transaction", lambda b: b.add_transaction(transaction))
        self._settings_save.schedule()
        await self._backups.auto_backup(self._backend, len(self._transactions))

        self._bus.publish(topics.TRANSACTION_ADDED, transaction.model_copy())
        self._bus.publish(topics.CHANGED)
        return transaction.model_copy()

    async def update_transaction(
        self,
        transaction_id: str,
        patch: Mapping[str, Any],
    ) -> Transaction:
        """
        Merge `patch` onto a transaction and validate the merged record.

        The id and created_at never change; updated_at is refreshed.

        Raises:
            NotFoundError: If no transaction has this id
            ValidationError: If the merged record is invalid
        """
        self._check_ready()
        index = self._index_of(transaction_id)
        current = self._transactions[index]

        merged = {field: getattr(current, field) for field in _MUTABLE_FIELDS}
        for key, value in patch.items():
            key = _LEGACY_KEYS.get(key, key)
            if key in _MUTABLE_FIELDS:
                merged[key] = value

        result = validate_transaction(merged, self._categories)
        if not result.is_valid:
            raise ValidationError(result.errors)

        updated = current.model_copy(update={**result.data, "updated_at": utc_now()})
        self._transactions[index] = updated
        self._collection_changed()

        await self._persist("update_transaction", lambda b: b.update_transaction(updated))
        self._settings_save.schedule()

        self._bus.publish(topics.TRANSACTION_UPDATED, updated.model_copy())
        self._bus.publish(topics.CHANGED)
        return updated.model_copy()

    async def delete_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Remove a transaction. Returns it, or None if it did not exist."""
        self._check_ready()
        try:
            index = self._index_of(transaction_id)
        except NotFoundError:
            return None

        removed = self._transactions.pop(index)
        self._collection_changed()

        await self._persist("delete_transaction", lambda b: b.delete_transaction(removed.id))
        self._settings_save.schedule()

        self._bus.publish(topics.TRANSACTION_DELETED, removed.model_copy())
        self._bus.publish(topics.CHANGED)
        return removed.model_copy()

    async def add_transactions_batch(
        self,
        drafts: Sequence[Mapping[str, Any]],
    ) -> BatchResult:
        """
        Validate every row and add the valid ones in one backend batch.

        Invalid rows are reported in the result, not raised.

        Raises:
            ValidationError: If no row is valid
        """
        self._check_ready()
        valid: list[dict[str, Any]] = []
        row_errors: list[RowError] = []

        for row, draft in enumerate(drafts, start=1):
            if not isinstance(draft, Mapping):
                row_errors.append(RowError(row=row, errors=[
                    FieldError(field="row", message="Row must be a mapping"),
                ]))
                continue
            result = validate_transaction(draft, self._categories)
            if result.is_valid:
                valid.append(result.data)
            else:
                row_errors.append(RowError(row=row, errors=result.errors))

        if not valid:
            raise ValidationError(
                row_errors=row_errors,
                message="Batch contains no valid rows" if row_errors else "Batch is empty",
            )

        added = [self._mint(data) for data in valid]
        self._transactions.extend(added)
        self._collection_changed()

        await self._persist("add_transactions_batch", lambda b: b.add_transactions_batch(added))
        self._settings_save.schedule()

        logger.info("batch_added", added=len(added), rejected=len(row_errors))
        copies = [t.model_copy() for t in added]
        self._bus.publish(topics.TRANSACTIONS_BATCH_ADDED, list(copies))
        self._bus.publish(topics.CHANGED)
        return BatchResult(added=copies, errors=row_errors)

    def get_all_transactions(self) -> list[Transaction]:
        self._check_alive()
        return [t.model_copy() for t in self._transactions]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        self._check_alive()
        for transaction in self._transactions:
            if transaction.id == transaction_id:
                return transaction.model_copy()
        return None

    def get_transactions_by_date_range(
        self,
        start: Union[dt.date, str],
        end: Union[dt.date, str],
    ) -> list[Transaction]:
        """
        Transactions dated within [start, end], oldest first.

        Raises:
            ValidationError: If a bound is not a valid date or start > end
        """
        self._check_alive()
        low, high = sanitize_date(start), sanitize_date(end)
        errors = []
        if low is None:
            errors.append(FieldError(field="start", message="Start must be a valid date"))
        if high is None:
            errors.append(FieldError(field="end", message="End must be a valid date"))
        if not errors and low > high:
            errors.append(FieldError(field="start", message="Start must not be after end"))
        if errors:
            raise ValidationError(errors)

        matching = [t for t in self._transactions if low <= t.date <= high]
        matching.sort(key=lambda t: t.date)
        return [t.model_copy() for t in matching]

    def _mint(self, data: Mapping[str, Any]) -> Transaction:
        now = utc_now()
        return Transaction(id=self._new_id(), created_at=now, updated_at=now, **data)

    def _new_id(self) -> str:
        self._id_counter += 1
        return uuid4().hex

    def _index_of(self, transaction_id: str) -> int:
        for index, transaction in enumerate(self._transactions):
            if transaction.id == transaction_id:
                return index
        raise NotFoundError(transaction_id)

    # -------------------------------------------------------------------------
    # Filters and aggregates
    # -------------------------------------------------------------------------

    def apply_filters(
        self,
        changes: Union[Mapping[str, Any], FilterState, None] = None,
    ) -> list[Transaction]:
        """
        Merge `changes` onto the current filters and recompute the view.

        Returns the filtered view (newest first). The new filters are
        saved with the settings after the debounce delay.

        Raises:
            ValidationError: If a filter value is invalid
        """
        self._check_ready()
        if isinstance(changes, FilterState):
            changes = changes.model_dump(exclude_unset=True)

        try:
            self._filters = self._filters.merged(changes or {})
        except ModelValidationError as e:
            raise ValidationError(_field_errors(e)) from e

        self._filtered_view = filter_transactions(self._transactions, self._filters)
        view = self.filtered_view
        self._bus.publish(topics.FILTERS_APPLIED, list(view))
        self._settings_save.schedule()
        return view

    def calculate_summary(self) -> Summary:
        """Totals over all transactions, cached until the next mutation."""
        self._check_alive()
        count = len(self._transactions)
        if self._summary_cache is None or self._summary_cache[0] != count:
            self._summary_cache = (count, compute_summary(self._transactions))
        return self._summary_cache[1].model_copy()

    def get_monthly_aggregate(
        self,
        month_count: Optional[int] = 6,
        end_date: Union[dt.date, str, None] = None,
    ) -> dict[str, MonthlyTotals]:
        """
        Per-month totals for the `month_count` months ending at end_date.

        Keys are YYYY-MM, oldest first; months without entries are zero.
        month_count=None covers every month from the oldest to the newest
        transaction. end_date defaults to today.

        Raises:
            ValidationError: If month_count < 1 or end_date is not a date
        """
        self._check_alive()
        if month_count is not None and month_count < 1:
            raise ValidationError([
                FieldError(field="month_count", message="month_count must be at least 1"),
            ])

        end = dt.date.today() if end_date is None else sanitize_date(end_date)
        if end is None:
            raise ValidationError([
                FieldError(field="end_date", message="end_date must be a valid date"),
            ])

        key = (month_count, end.strftime("%Y-%m") if month_count is not None else None)
        monthly = self._monthly_cache.get(key)
        if monthly is None:
            monthly = build_monthly_aggregate(self._transactions, month_count, end)
            self._monthly_cache[key] = monthly
        return {month: totals.model_copy() for month, totals in monthly.items()}

    def _invalidate_caches(self) -> None:
        self._summary_cache = None
        self._monthly_cache.clear()

    def _collection_changed(self, touch: bool = True) -> None:
        """Drop derived data and refresh stats after any collection mutation."""
        self._invalidate_caches()
        self._filtered_view = filter_transactions(self._transactions, self._filters)

        dates = [t.date for t in self._transactions]
        self._stats.total_transactions = len(self._transactions)
        self._stats.oldest_transaction = min(dates) if dates else None
        self._stats.newest_transaction = max(dates) if dates else None
        if touch:
            self._stats.last_modified = utc_now()

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def add_category(self, kind: Union[TransactionKind, str], name: str) -> str:
        """
        Add a category name for a kind. Returns the sanitized name.

        Raises:
            ValidationError: If the name is invalid or already exists
        """
        self._check_ready()
        kind = self._require_kind(kind)
        name, errors = validate_category_name(name)
        if errors:
            raise ValidationError(errors)
        if self._categories.contains(kind, name):
            raise ValidationError([
                FieldError(field="category", message=f"Category already exists: {name}"),
            ])

        self._categories.names(kind).append(name)
        self._settings_save.schedule()
        self._bus.publish(topics.CATEGORY_ADDED, {"kind": kind.value, "name": name})
        return name

    async def remove_category(
        self,
        kind: Union[TransactionKind, str],
        name: str,
        replacement: Optional[str] = None,
    ) -> int:
        """
        Remove a category, moving its transactions to `replacement`.

        Returns:
            Number of transactions reassigned

        Raises:
            NotFoundError: If the category does not exist
            CategoryInUseError: If transactions use it and no replacement is given
            ValidationError: If the replacement is unknown or equals `name`
            LedgerError: If some reassignments failed (the category is kept)
        """
        self._check_ready()
        kind = self._require_kind(kind)
        if not self._categories.contains(kind, name):
            raise NotFoundError(name, what="Category")

        affected = [
            t.id for t in self._transactions
            if t.kind == kind and t.category == name
        ]
        if affected and replacement is None:
            raise CategoryInUseError(len(affected), kind.value, name)

        if replacement is not None:
            if replacement == name:
                raise ValidationError([
                    FieldError(
                        field="replacement",
                        message="Replacement must differ from the removed category",
                    ),
                ])
            if not self._categories.contains(kind, replacement):
                raise ValidationError([
                    FieldError(
                        field="replacement",
                        message=f"Unknown {kind.value} category: {replacement}",
                    ),
                ])

        if affected:
            await self._reassign(affected, replacement)

        self._categories.names(kind).remove(name)
        self._settings_save.schedule()

        self._bus.publish(topics.CATEGORY_REMOVED, {
            "kind": kind.value,
            "name": name,
            "replacement": replacement,
            "reassigned": len(affected),
        })
        self._bus.publish(topics.CHANGED)
        return len(affected)

    async def rename_category(
        self,
        kind: Union[TransactionKind, str],
        old: str,
        new: str,
    ) -> int:
        """
        Rename a category in place and move its transactions to the new name.

        Returns:
            Number of transactions reassigned
        """
        self._check_ready()
        kind = self._require_kind(kind)
        if not self._categories.contains(kind, old):
            raise NotFoundError(old, what="Category")

        new, errors = validate_category_name(new)
        if errors:
            raise ValidationError(errors)
        if new == old:
            return 0
        if self._categories.contains(kind, new):
            raise ValidationError([
                FieldError(field="category", message=f"Category already exists: {new}"),
            ])

        names = self._categories.names(kind)
        names.insert(names.index(old), new)
        affected = [
            t.id for t in self._transactions
            if t.kind == kind and t.category == old
        ]
        if affected:
            await self._reassign(affected, new)
        names.remove(old)
        self._settings_save.schedule()

        self._bus.publish(topics.CATEGORY_RENAMED, {
            "kind": kind.value,
            "old": old,
            "new": new,
            "reassigned": len(affected),
        })
        self._bus.publish(topics.CHANGED)
        return len(affected)

    async def _reassign(self, transaction_ids: list[str], category: str) -> None:
        """Move transactions to `category` through the update path."""
        results = await asyncio.gather(
            *(self.update_transaction(i, {"category": category}) for i in transaction_ids),
            return_exceptions=True,
        )
        failures = [
            (transaction_id, result)
            for transaction_id, result in zip(transaction_ids, results)
            if isinstance(result, Exception)
        ]
        if failures:
            logger.error(
                "category_reassignment_failed",
                category=category,
                failed=len(failures),
                total=len(transaction_ids),
                errors=[str(error) for _, error in failures],
            )
            raise LedgerError(
                f"Failed to reassign {len(failures)} of {len(transaction_ids)} "
                f"transaction(s) to '{category}': {failures[0][1]}"
            )

    @staticmethod
    def _require_kind(kind: Union[TransactionKind, str]) -> TransactionKind:
        parsed = sanitize_kind(kind)
        if parsed is None:
            raise ValidationError([
                FieldError(field="kind", message="Kind must be 'income' or 'expense'"),
            ])
        return parsed

    # -------------------------------------------------------------------------
    # Snapshot / restore / maintenance
    # -------------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Full copy of the ledger state."""
        self._check_alive()
        return Snapshot(
            transactions=[t.model_copy() for t in self._transactions],
            categories=self._categories.model_copy(deep=True),
            filters=self._filters.model_copy(),
            id_counter=self._id_counter,
            stats=self._stats.model_copy(),
        )

    async def restore(self, snapshot: Union[Snapshot, Mapping[str, Any]]) -> None:
        """
        Replace the whole ledger state with a snapshot.

        Raises:
            ValidationError: If the snapshot does not parse
        """
        self._check_ready()
        if isinstance(snapshot, Snapshot):
            incoming = snapshot.model_copy(deep=True)
        else:
            try:
                incoming = Snapshot.model_validate(snapshot)
            except ModelValidationError as e:
                raise ValidationError(_field_errors(e), message="Invalid snapshot") from e

        self._transactions = list(incoming.transactions)
        self._malformed = []
        self._categories = incoming.categories
        self._filters = incoming.filters
        self._id_counter = max(incoming.id_counter, len(self._transactions))
        self._stats = incoming.stats
        self._settings_save.cancel()
        self._collection_changed(touch=False)

        await self._persist("restore", self._write_full_state)

        logger.info("ledger_restored", transactions=len(self._transactions))
        self._bus.publish(topics.LOADED, {
            "backend": self.backend_name,
            "transactions": len(self._transactions),
        })
        self._bus.publish(topics.CHANGED)

    def validate_integrity(self) -> IntegrityReport:
        """Report duplicate ids, malformed records and unknown categories."""
        self._check_alive()
        issues: list[IntegrityIssue] = []

        counts = Counter(t.id for t in self._transactions)
        duplicates = sorted(i for i, n in counts.items() if n > 1)
        for transaction_id in duplicates:
            issues.append(IntegrityIssue(
                issue_type="duplicate_id",
                transaction_id=transaction_id,
                field="id",
                message=f"Id used by {counts[transaction_id]} transactions",
            ))

        for record in self._malformed:
            raw_id = record.get("id") if isinstance(record, Mapping) else None
            issues.append(IntegrityIssue(
                issue_type="malformed",
                transaction_id=str(raw_id) if raw_id else None,
                message="Stored record could not be parsed",
            ))

        for transaction in self._transactions:
            for problem in record_problems(transaction):
                issues.append(IntegrityIssue(
                    issue_type="malformed",
                    transaction_id=transaction.id or None,
                    field=problem.field,
                    message=problem.message,
                ))
            if transaction.category and not self._categories.contains(
                transaction.kind, transaction.category
            ):
                issues.append(IntegrityIssue(
                    issue_type="unknown_category",
                    transaction_id=transaction.id or None,
                    field="category",
                    message=(
                        f"Category '{transaction.category}' is not a "
                        f"{transaction.kind.value} category"
                    ),
                ))

        return IntegrityReport(
            issues=issues,
            duplicate_ids=duplicates,
            total_transactions=len(self._transactions) + len(self._malformed),
            unique_ids=len(counts),
            category_count=len(self._categories.all_names()),
        )

    async def repair(self) -> RepairReport:
        """
        Fix what validate_integrity() reports.

        - Records without an id get a fresh one
        - Duplicates are dropped (the first occurrence is kept)
        - Records with an unusable date, kind or amount are dropped
        - Unknown categories move to the kind's fallback category
        """
        self._check_ready()
        actions: list[str] = []
        removed = 0
        candidates: list[Transaction] = []

        for record in self._malformed:
            recovered = None
            if isinstance(record, Mapping) and not record.get("id"):
                try:
                    recovered = Transaction.model_validate({**record, "id": self._new_id()})
                except ModelValidationError:
                    recovered = None
            if recovered is None:
                removed += 1
                actions.append("Removed unreadable record")
            else:
                actions.append(f"Assigned new id {recovered.id}")
                candidates.append(recovered)

        seen: set[str] = set()
        kept: list[Transaction] = []
        for transaction in [*candidates, *self._transactions]:
            if not transaction.id.strip():
                transaction = transaction.model_copy(update={"id": self._new_id()})
                actions.append(f"Assigned new id {transaction.id}")
            if transaction.id in seen:
                removed += 1
                actions.append(f"Removed duplicate {transaction.id}")
                continue

            fatal = [p for p in record_problems(transaction) if p.field in ("date", "amount")]
            if fatal:
                removed += 1
                actions.append(f"Removed {transaction.id}: {fatal[0].message}")
                continue
            seen.add(transaction.id)

            if not self._categories.contains(transaction.kind, transaction.category):
                fallback = FALLBACK_CATEGORIES[transaction.kind]
                if not self._categories.contains(transaction.kind, fallback):
                    self._categories.names(transaction.kind).append(fallback)
                    actions.append(f"Created category {fallback}")
                actions.append(
                    f"Moved {transaction.id} from '{transaction.category}' to '{fallback}'"
                )
                transaction = transaction.model_copy(update={"category": fallback})
            kept.append(transaction)

        report = RepairReport(actions=actions, removed_count=removed, final_count=len(kept))
        if not actions:
            return report

        self._transactions = kept
        self._malformed = []
        self._collection_changed()
        await self._persist("repair", self._write_full_state)

        logger.warning("ledger_repaired", repairs=len(actions), removed=removed)
        self._bus.publish(topics.DATA_REPAIRED, list(actions))
        self._bus.publish(topics.CHANGED)
        return report

    async def clear_all_data(self) -> int:
        """Delete every transaction. Returns how many were removed."""
        self._check_ready()
        count = len(self._transactions)
        self._transactions = []
        self._malformed = []
        self._collection_changed()

        await self._persist("clear_transactions", lambda b: b.clear_transactions())
        self._settings_save.schedule()

        self._bus.publish(topics.DATA_CLEARED, {"removed": count})
        self._bus.publish(topics.CHANGED)
        return count

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    async def create_backup(self) -> BackupRecord:
        """
        Back up the full state now.

        Raises:
            PersistenceFailure: If the backend rejects the backup
        """
        self._check_ready()
        try:
            return await self._backups.create(self._backend)
        except StorageError as e:
            logger.error("backup_failed", backend=self.backend_name, error=str(e))
            raise PersistenceFailure(f"Backup failed: {e}") from e

    async def get_latest_backup(self) -> Optional[BackupRecord]:
        self._check_ready()
        return await self._backups.latest(self._backend)

    async def restore_latest_backup(self) -> Optional[BackupRecord]:
        """Restore the newest backup. Returns it, or None if there is none."""
        record = await self.get_latest_backup()
        if record is None:
            return None
        await self.restore(record.payload)
        return record

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _persist(
        self,
        operation: str,
        write: Callable[[StorageBackend], Awaitable[Any]],
    ) -> bool:
        """
        Write through the active backend; never raises StorageError.

        A failing structured store is replaced by the flat store for the
        rest of the session. If no backend accepts the write the ledger
        is marked dirty and the full state is written at the next flush.

        Returns:
            True if a backend accepted the write
        """
        backend = self._backend
        if backend is None:
            self._dirty = True
            return False

        if self._dirty:
            write = self._write_full_state

        try:
            await write(backend)
        except StorageError as e:
            logger.error(
                "persistence_failure",
                backend=backend.name,
                operation=operation,
                error=str(e),
            )
            if backend is self._structured and await self._fall_back_to_flat(str(e)):
                return True
            self._dirty = True
            return False

        self._dirty = False
        return True

    async def _fall_back_to_flat(self, reason: str) -> bool:
        """Move the full state to the flat store and switch to it."""
        failed, flat = self._backend, self._flat
        try:
            await flat.open()
            await self._write_full_state(flat)
        except StorageError as e:
            logger.error("fallback_failed", backend=flat.name, error=str(e))
            return False

        self._backend = flat
        self._dirty = False
        self._state = LedgerState.DEGRADED_READY
        if failed is not None:
            await failed.close()

        logger.warning(
            "backend_fallback",
            from_backend=failed.name if failed is not None else None,
            to_backend=flat.name,
            reason=reason,
        )
        self._bus.publish(topics.STORAGE_DEGRADED, {"backend": flat.name, "reason": reason})
        return True

    async def _write_full_state(self, backend: StorageBackend) -> None:
        await backend.replace_all(
            [t.model_copy() for t in self._transactions],
            self._settings_record(),
        )

    def _settings_record(self) -> SettingsRecord:
        return SettingsRecord(
            categories=self._categories.model_copy(deep=True),
            filters=self._filters.model_copy(),
            id_counter=self._id_counter,
            stats=self._stats.model_copy(),
        )

    async def _save_settings(self) -> None:
        """Debounced callback: save settings, then announce it."""
        if self._state == LedgerState.DESTROYED:
            return

        record = self._settings_record()
        saved = await self._persist("save_settings", lambda b: b.save_settings(record))
        if saved:
            await self._bus.publish_and_await(topics.SETTINGS_SAVED, record)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        self._check_alive()
        return self._bus.subscribe(topic, handler)

    def unsubscribe(self, subscription: Subscription) -> bool:
        self._check_alive()
        return self._bus.unsubscribe(subscription)

    def once(self, topic: str, handler: Handler) -> Subscription:
        self._check_alive()
        return self._bus.once(topic, handler)

    async def wait_for(self, topic: str, timeout: Optional[float] = None) -> Any:
        self._check_alive()
        return await self._bus.wait_for(topic, timeout)
