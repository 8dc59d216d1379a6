"""
Tests for storage backends and atomic units
"""

import pytest
import tempfile
from decimal import Decimal
from datetime import datetime, date, timezone
from pathlib import Path
from dataclasses import dataclass

from village_sacco.errors import StorageFailure
from village_sacco.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage, parse_datetime
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


class TestStorageInterface:
    """Test base storage interface functionality"""

    def test_in_memory_storage_basic_operations(self):
        """Test basic operations with InMemoryStorage"""
        storage = InMemoryStorage()

        storage.save("test_table", "record_1", test_data)
        loaded = storage.load("test_table", "record_1")
        assert loaded == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
        assert len(storage.load_all("test_table")) == 2

        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

        assert storage.count("test_table") == 2

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

        storage.close()

    def test_in_memory_loaded_records_are_copies(self):
        """Mutating a loaded record must not change stored state"""
        storage = InMemoryStorage()
        storage.save("t", "r1", {"id": "r1", "balance": "10.00"})

        loaded = storage.load("t", "r1")
        loaded["balance"] = "999.00"

        assert storage.load("t", "r1")["balance"] == "10.00"

    def test_sqlite_storage_basic_operations(self):
        """Test basic operations with SQLiteStorage"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "test.db"
            storage = SQLiteStorage(db_path)

            storage.save("test_table", "record_1", test_data)
            assert storage.load("test_table", "record_1") == test_data
            assert storage.exists("test_table", "record_1")

            storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
            assert storage.count("test_table") == 2
            assert sorted(r["id"] for r in storage.load_all("test_table")) == sorted([test_data["id"], "record_2"])

            results = storage.find("test_table", {"data": "test"})
            assert len(results) == 1

            storage.close()

    def test_sqlite_persists_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "persist.db"
            storage = SQLiteStorage(db_path)
            storage.save("loans", "L1", {"id": "L1", "status": "PENDING"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("loans", "L1") == {"id": "L1", "status": "PENDING"}
            reopened.close()

    def test_find_matches_booleans(self):
        storage = InMemoryStorage()
        storage.save("accounts", "a1", {"id": "a1", "is_active": True})
        storage.save("accounts", "a2", {"id": "a2", "is_active": False})

        assert [r["id"] for r in storage.find("accounts", {"is_active": True})] == ["a1"]


class TestAtomicUnits:
    """Test commit and rollback of atomic units"""

    def test_in_memory_atomic_commits(self):
        storage = InMemoryStorage()

        with storage.atomic():
            storage.save("test_table", "record_1", {"id": "record_1"})
            storage.save("test_table", "record_2", {"id": "record_2"})

        assert storage.count("test_table") == 2
        assert not storage.in_atomic

    def test_in_memory_atomic_rolls_back_on_error(self):
        storage = InMemoryStorage()
        storage.save("test_table", "existing", {"id": "existing", "value": "1"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("test_table", "existing", {"id": "existing", "value": "2"})
                storage.save("test_table", "new", {"id": "new"})
                raise RuntimeError("injected failure")

        assert storage.load("test_table", "existing")["value"] == "1"
        assert not storage.exists("test_table", "new")

    def test_nested_units_join_the_outermost(self):
        """An inner unit's work is undone when the outer unit fails"""
        storage = InMemoryStorage()

        with pytest.raises(ValueError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                assert storage.exists("t", "inner")
                raise ValueError("outer failure")

        assert not storage.exists("t", "inner")

    def test_sqlite_atomic_commits(self):
        storage = SQLiteStorage()

        with storage.atomic():
            storage.save("test_table", "record_1", {"id": "record_1"})
            storage.save("test_table", "record_2", {"id": "record_2"})

        assert storage.count("test_table") == 2
        storage.close()

    def test_sqlite_atomic_rolls_back_on_error(self):
        storage = SQLiteStorage()
        storage.save("test_table", "existing", {"id": "existing", "value": "1"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("test_table", "existing", {"id": "existing", "value": "2"})
                storage.save("test_table", "new", {"id": "new"})
                raise RuntimeError("injected failure")

        assert storage.load("test_table", "existing")["value"] == "1"
        assert not storage.exists("test_table", "new")

        # The connection is usable again after the rollback
        storage.save("test_table", "after", {"id": "after"})
        assert storage.exists("test_table", "after")
        storage.close()

    def test_sqlite_backend_errors_become_storage_failure(self):
        storage = SQLiteStorage()

        with pytest.raises(StorageFailure):
            with storage.atomic():
                storage.save("not a valid table", "r1", {"id": "r1"})

        assert not storage.in_atomic
        storage.close()


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    due: date


class TestStorageRecord:
    """Test StorageRecord serialization"""

    def test_to_dict_stringifies_money_and_dates(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        record = SampleRecord(id="r1", created_at=now, updated_at=now,
                              amount=Decimal('12.30'), due=date(2024, 2, 1))

        data = record.to_dict()

        assert data["amount"] == "12.30"
        assert data["due"] == "2024-02-01"
        assert data["created_at"] == now.isoformat()

    def test_parse_datetime_treats_naive_as_utc(self):
        parsed = parse_datetime("2024-01-01T00:00:00")
        assert parsed.tzinfo == timezone.utc
        assert parse_datetime(None) is None


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self):
        storage = create_storage("sqlite:///:memory:")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/sacco")
