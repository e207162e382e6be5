"""
Tests for storage backends and atomic units of work
"""

import pytest
import tempfile
import os
from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass

from bms_core.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "active": True,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestStorageOperations:
    """Basic CRUD against every local backend"""

    def test_basic_operations(self, storage):
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other", "active": False})
        assert len(storage.load_all("test_table")) == 2
        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.load("test_table", "record_1") is None

    def test_find_with_filters(self, storage):
        storage.save("t", "a", {"id": "a", "owner": "u1", "active": True})
        storage.save("t", "b", {"id": "b", "owner": "u1", "active": False})
        storage.save("t", "c", {"id": "c", "owner": "u2", "active": False})

        assert {r["id"] for r in storage.find("t", {"owner": "u1"})} == {"a", "b"}
        assert [r["id"] for r in storage.find("t", {"owner": "u1", "active": False})] == ["b"]
        assert storage.find("t", {"owner": "nobody"}) == []

    def test_save_replaces_in_place(self, storage):
        storage.save("t", "a", {"id": "a", "v": 1})
        storage.save("t", "b", {"id": "b", "v": 1})
        storage.save("t", "a", {"id": "a", "v": 2})

        assert storage.count("t") == 2
        assert storage.load("t", "a")["v"] == 2
        assert {r["id"] for r in storage.find("t", {})} == {"a", "b"}

    def test_empty_table(self, storage):
        assert storage.count("never_written") == 0
        assert storage.load_all("never_written") == []
        assert not storage.exists("never_written", "x")

    def test_loaded_records_are_copies(self, storage):
        storage.save("t", "a", {"id": "a", "tags": ["x"]})
        loaded = storage.load("t", "a")
        loaded["tags"].append("y")
        assert storage.load("t", "a")["tags"] == ["x"]


class TestAtomic:
    """Units of work commit together or not at all"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a", "v": 1})
            storage.save("t", "b", {"id": "b", "v": 2})
        assert storage.count("t") == 2

    def test_rollback_on_exception(self, storage):
        storage.save("t", "a", {"id": "a", "v": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a", "v": 99})
                storage.save("t", "b", {"id": "b", "v": 2})
                raise RuntimeError("boom")

        assert storage.load("t", "a")["v"] == 1
        assert storage.load("t", "b") is None
        assert not storage.in_transaction

    def test_rollback_of_first_write_to_new_table(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh", "a", {"id": "a"})
                raise RuntimeError("boom")

        assert storage.load("fresh", "a") is None
        storage.save("fresh", "a", {"id": "a"})
        assert storage.count("fresh") == 1

    def test_nested_blocks_join_outer(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a"})
                with storage.atomic():
                    storage.save("t", "b", {"id": "b"})
                assert storage.in_transaction
                raise ValueError("outer fails")

        assert storage.count("t") == 0


class TestSQLiteFile:

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "bms.db")
            storage = SQLiteStorage(path)
            storage.save("t", "a", {"id": "a", "amount": "1.00"})
            storage.close()

            reopened = SQLiteStorage(path)
            assert reopened.load("t", "a") == {"id": "a", "amount": "1.00"}
            reopened.close()


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_urls(self):
        assert isinstance(create_storage("sqlite://"), SQLiteStorage)
        assert create_storage("sqlite://").db_path == ":memory:"
        with tempfile.TemporaryDirectory() as tmp:
            storage = create_storage(f"sqlite:///{tmp}/x.db")
            assert storage.db_path == f"{tmp}/x.db"
            storage.close()

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            create_storage("mongodb://localhost")


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    business_date: date


class TestStorageRecord:

    def test_to_dict_serializes_values(self):
        now = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)
        record = SampleRecord(
            id="r1", created_at=now, updated_at=now,
            amount=Decimal("12.50"), business_date=date(2026, 3, 2)
        )

        data = record.to_dict()

        assert data["amount"] == "12.50"
        assert data["business_date"] == "2026-03-02"
        assert data["created_at"] == now.isoformat()
