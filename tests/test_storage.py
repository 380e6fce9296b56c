"""
Tests for storage backends: CRUD, versioned writes, create-if-absent inserts
and atomic rollback
"""

import pytest
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from microfinance.storage import InMemoryStorage, SQLiteStorage
from microfinance.exceptions import ConcurrentModification


test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Each test runs against both backends"""
    if request.param == "memory":
        store = InMemoryStorage()
        yield store
        store.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = SQLiteStorage(Path(temp_dir) / "test.db")
            yield store
            store.close()


class TestBasicOperations:
    """Test CRUD operations"""

    def test_save_and_load(self, storage):
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data
        assert storage.load("test_table", "missing") is None

    def test_exists_count_delete(self, storage):
        storage.save("test_table", "record_1", test_data)
        storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")
        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    def test_find(self, storage):
        storage.save("t", "a", {"id": "a", "loan_id": "L1", "is_read": False})
        storage.save("t", "b", {"id": "b", "loan_id": "L1", "is_read": True})
        storage.save("t", "c", {"id": "c", "loan_id": "L2", "is_read": False})

        assert {r["id"] for r in storage.find("t", {"loan_id": "L1"})} == {"a", "b"}
        assert [r["id"] for r in storage.find("t", {"loan_id": "L1", "is_read": False})] == ["a"]
        assert len(storage.find("t", {})) == 3

    def test_loaded_records_are_copies(self, storage):
        storage.save("t", "a", {"id": "a", "value": 1})
        loaded = storage.load("t", "a")
        loaded["value"] = 2
        assert storage.load("t", "a")["value"] == 1


class TestVersionedWrites:
    """Test optimistic version checks"""

    def test_create_with_version_zero(self, storage):
        version = storage.save_versioned("t", "a", {"id": "a"}, 0)
        assert version == 1
        assert storage.load("t", "a")["version"] == 1

    def test_create_twice_conflicts(self, storage):
        storage.save_versioned("t", "a", {"id": "a"}, 0)
        with pytest.raises(ConcurrentModification):
            storage.save_versioned("t", "a", {"id": "a"}, 0)

    def test_update_bumps_version(self, storage):
        storage.save_versioned("t", "a", {"id": "a", "n": 1}, 0)
        version = storage.save_versioned("t", "a", {"id": "a", "n": 2}, 1)
        assert version == 2
        loaded = storage.load("t", "a")
        assert loaded["n"] == 2
        assert loaded["version"] == 2

    def test_stale_version_rejected(self, storage):
        storage.save_versioned("t", "a", {"id": "a", "n": 1}, 0)
        storage.save_versioned("t", "a", {"id": "a", "n": 2}, 1)

        with pytest.raises(ConcurrentModification) as exc_info:
            storage.save_versioned("t", "a", {"id": "a", "n": 3}, 1)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert storage.load("t", "a")["n"] == 2

    def test_update_of_missing_record_rejected(self, storage):
        with pytest.raises(ConcurrentModification):
            storage.save_versioned("t", "missing", {"id": "missing"}, 3)


class TestInsert:
    """Test create-if-absent"""

    def test_insert_once(self, storage):
        assert storage.insert("t", "fence", {"id": "fence", "n": 1})
        assert not storage.insert("t", "fence", {"id": "fence", "n": 2})
        assert storage.load("t", "fence")["n"] == 1


class TestAtomic:
    """Test atomic blocks"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save_versioned("t", "a", {"id": "a"}, 0)
            storage.save("t", "b", {"id": "b"})
        assert storage.exists("t", "a")
        assert storage.exists("t", "b")

    def test_rollback_on_exception(self, storage):
        storage.save_versioned("t", "a", {"id": "a", "n": 1}, 0)

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save_versioned("t", "a", {"id": "a", "n": 2}, 1)
                storage.save("t", "b", {"id": "b"})
                raise RuntimeError("boom")

        loaded = storage.load("t", "a")
        assert loaded["n"] == 1
        assert loaded["version"] == 1
        assert not storage.exists("t", "b")

    def test_conflict_rolls_back_earlier_writes(self, storage):
        storage.save_versioned("t", "term", {"id": "term"}, 0)
        storage.save_versioned("t", "term", {"id": "term"}, 1)

        with pytest.raises(ConcurrentModification):
            with storage.atomic():
                storage.save_versioned("t", "payment", {"id": "payment"}, 0)
                storage.save_versioned("t", "term", {"id": "term"}, 1)

        assert not storage.exists("t", "payment")

    def test_nested_blocks_commit_with_outer(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                raise RuntimeError("outer fails")
        assert not storage.exists("t", "inner")


class TestSQLitePersistence:
    """Test that SQLite data survives reopening"""

    def test_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "persist.db"
            storage = SQLiteStorage(db_path)
            storage.save_versioned("loans", "L1", {"id": "L1", "status": "ACTIVE"}, 0)
            storage.close()

            reopened = SQLiteStorage(db_path)
            loaded = reopened.load("loans", "L1")
            assert loaded["status"] == "ACTIVE"
            assert reopened.save_versioned("loans", "L1", loaded, loaded["version"]) == 2
            reopened.close()
