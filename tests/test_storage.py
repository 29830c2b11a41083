"""
Tests for the storage backends

Both backends must behave the same through the StorageBackend
interface, so most tests run against each of them.
"""

import datetime as dt
import sqlite3

import pytest
import pytest_asyncio

from household_ledger.models import SettingsRecord, Snapshot, Transaction
from household_ledger.services.storage import (
    SCHEMA_VERSION,
    BackendUnavailable,
    FlatStore,
    StorageError,
    StructuredStore,
)


def make_transaction(tx_id, date="2024-03-15", kind="expense", category="Food", amount=100):
    return Transaction(id=tx_id, date=date, kind=kind, category=category, amount=amount)


@pytest_asyncio.fixture(params=["structured", "flat"])
async def backend(request, tmp_path):
    if request.param == "structured":
        store = StructuredStore(tmp_path / "ledger.sqlite3", max_backups=3, open_attempts=1)
    else:
        store = FlatStore(tmp_path / "flat", max_backups=3)
    await store.open()
    yield store
    await store.close()


class TestTransactions:
    """Tests for the transaction collection."""
    
    @pytest.mark.asyncio
    async def test_add_and_get_all(self, backend):
        await backend.add_transaction(make_transaction("a"))
        records = await backend.get_all_transactions()
        assert len(records) == 1
        assert Transaction.model_validate(records[0]).id == "a"
    
    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, backend):
        await backend.add_transaction(make_transaction("a"))
        with pytest.raises(StorageError):
            await backend.add_transaction(make_transaction("a"))
    
    @pytest.mark.asyncio
    async def test_update_replaces_record(self, backend):
        await backend.add_transaction(make_transaction("a", amount=100))
        await backend.update_transaction(make_transaction("a", amount=250))
        records = await backend.get_all_transactions()
        assert [r["amount"] for r in records] == [250]
    
    @pytest.mark.asyncio
    async def test_delete(self, backend):
        await backend.add_transaction(make_transaction("a"))
        assert await backend.delete_transaction("a") is True
        assert await backend.delete_transaction("a") is False
        assert await backend.get_all_transactions() == []
    
    @pytest.mark.asyncio
    async def test_batch_is_atomic(self, backend):
        await backend.add_transaction(make_transaction("a"))
        with pytest.raises(StorageError):
            await backend.add_transactions_batch([
                make_transaction("b"),
                make_transaction("a"),
            ])
        records = await backend.get_all_transactions()
        assert [r["id"] for r in records] == ["a"]
    
    @pytest.mark.asyncio
    async def test_clear(self, backend):
        await backend.add_transactions_batch([make_transaction("a"), make_transaction("b")])
        await backend.clear_transactions()
        assert await backend.get_all_transactions() == []
    
    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, backend):
        await backend.add_transactions_batch([
            make_transaction("a", date="2024-01-31"),
            make_transaction("b", date="2024-02-01"),
            make_transaction("c", date="2024-02-29"),
            make_transaction("d", date="2024-03-01"),
        ])
        records = await backend.get_transactions_by_date_range(
            dt.date(2024, 2, 1), dt.date(2024, 2, 29),
        )
        assert sorted(r["id"] for r in records) == ["b", "c"]
    
    @pytest.mark.asyncio
    async def test_replace_all(self, backend):
        await backend.add_transaction(make_transaction("old"))
        await backend.replace_all([make_transaction("new")], SettingsRecord(id_counter=7))
        
        records = await backend.get_all_transactions()
        assert [r["id"] for r in records] == ["new"]
        assert (await backend.get_settings())["id_counter"] == 7


class TestSettings:
    """Tests for the settings record."""
    
    @pytest.mark.asyncio
    async def test_missing_settings(self, backend):
        assert await backend.get_settings() is None
    
    @pytest.mark.asyncio
    async def test_save_and_load(self, backend):
        record = SettingsRecord(id_counter=12)
        record.categories.expense.append("Pets")
        await backend.save_settings(record)
        
        loaded = SettingsRecord.model_validate(await backend.get_settings())
        assert loaded.id_counter == 12
        assert "Pets" in loaded.categories.expense


class TestBackups:
    """Tests for the capped backup log."""
    
    @pytest.mark.asyncio
    async def test_no_backup(self, backend):
        assert await backend.get_latest_backup() is None
    
    @pytest.mark.asyncio
    async def test_retention_keeps_most_recent(self, backend):
        ids = []
        for counter in range(5):
            record = await backend.create_backup(Snapshot(id_counter=counter))
            ids.append(record.id)
        
        backups = await backend.list_backups()
        assert [b.id for b in backups] == list(reversed(ids))[:3]
        assert [b.payload.id_counter for b in backups] == [4, 3, 2]
        
        latest = await backend.get_latest_backup()
        assert latest.payload.id_counter == 4
    
    @pytest.mark.asyncio
    async def test_sequence_numbers_increase(self, backend):
        first = await backend.create_backup(Snapshot())
        second = await backend.create_backup(Snapshot())
        assert second.id > first.id


class TestNotOpen:
    """Operations on a closed backend fail with StorageError."""
    
    @pytest.mark.asyncio
    async def test_structured_not_open(self, tmp_path):
        store = StructuredStore(tmp_path / "ledger.sqlite3")
        with pytest.raises(StorageError):
            await store.get_all_transactions()
    
    @pytest.mark.asyncio
    async def test_flat_not_open(self, tmp_path):
        store = FlatStore(tmp_path / "flat")
        with pytest.raises(StorageError):
            await store.get_settings()


class TestStructuredStore:
    """Tests specific to the SQLite store."""
    
    @pytest.mark.asyncio
    async def test_schema_version_and_indexes(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        store = StructuredStore(path)
        await store.open()
        await store.close()
        
        conn = sqlite3.connect(path)
        try:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            indexes = {
                row[0] for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'index'"
                )
            }
        finally:
            conn.close()
        
        assert version == SCHEMA_VERSION
        assert {
            "idx_transactions_date",
            "idx_transactions_kind",
            "idx_transactions_category",
            "idx_transactions_date_kind",
            "idx_backups_timestamp",
        } <= indexes
    
    @pytest.mark.asyncio
    async def test_reopen_keeps_data(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        store = StructuredStore(path)
        await store.open()
        await store.add_transaction(make_transaction("a"))
        await store.close()
        
        reopened = StructuredStore(path)
        await reopened.open()
        assert len(await reopened.get_all_transactions()) == 1
        await reopened.close()
    
    @pytest.mark.asyncio
    async def test_upgrade_from_version_one(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        conn = sqlite3.connect(path)
        conn.executescript(
            "CREATE TABLE transactions (id TEXT PRIMARY KEY, date TEXT NOT NULL, "
            "kind TEXT NOT NULL, category TEXT NOT NULL, amount INTEGER NOT NULL, "
            "note TEXT NOT NULL DEFAULT '', created_at TEXT NOT NULL, "
            "updated_at TEXT NOT NULL);"
            "CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT NOT NULL, "
            "updated_at TEXT NOT NULL);"
            "CREATE TABLE backups (id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "timestamp TEXT NOT NULL, version TEXT NOT NULL, payload TEXT NOT NULL);"
            "PRAGMA user_version = 1;"
        )
        conn.close()
        
        store = StructuredStore(path)
        await store.open()
        await store.create_backup(Snapshot())
        assert len(await store.list_backups()) == 1
        await store.close()
    
    @pytest.mark.asyncio
    async def test_newer_schema_is_refused(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        conn = sqlite3.connect(path)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        conn.close()
        
        store = StructuredStore(path, open_attempts=1)
        with pytest.raises(BackendUnavailable):
            await store.open()
        assert not store.is_open
    
    @pytest.mark.asyncio
    async def test_unopenable_path(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        path.mkdir()
        
        store = StructuredStore(path, open_attempts=1)
        with pytest.raises(BackendUnavailable):
            await store.open()


class TestFlatStore:
    """Tests specific to the JSON blob store."""
    
    @pytest.mark.asyncio
    async def test_blobs_on_disk(self, tmp_path):
        store = FlatStore(tmp_path / "flat")
        await store.open()
        await store.add_transaction(make_transaction("a"))
        await store.save_settings(SettingsRecord())
        
        names = sorted(p.name for p in (tmp_path / "flat").iterdir())
        assert names == ["settings.json", "transactions.json"]
    
    @pytest.mark.asyncio
    async def test_corrupt_blob_raises_storage_error(self, tmp_path):
        directory = tmp_path / "flat"
        directory.mkdir()
        (directory / "transactions.json").write_text("{not json", encoding="utf-8")
        
        store = FlatStore(directory)
        await store.open()
        with pytest.raises(StorageError):
            await store.get_all_transactions()
    
    @pytest.mark.asyncio
    async def test_unreadable_backup_entries_are_skipped(self, tmp_path):
        directory = tmp_path / "flat"
        directory.mkdir()
        (directory / "backups.json").write_text(
            '{"next_id": 3, "backups": ["junk", {"id": 2}]}',
            encoding="utf-8",
        )

        store = FlatStore(directory)
        await store.open()
        assert await store.list_backups() == []

        record = await store.create_backup(Snapshot(id_counter=9))
        assert record.id == 3
        assert [b.payload.id_counter for b in await store.list_backups()] == [9]

    @pytest.mark.asyncio
    async def test_directory_cannot_be_created(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        
        store = FlatStore(blocker / "flat")
        with pytest.raises(BackendUnavailable):
            await store.open()
