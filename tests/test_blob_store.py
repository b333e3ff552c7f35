"""
Contract tests for the blob storage backends.
"""
from unittest.mock import Mock

import pytest

from config.settings import SupabaseConfig
from src.booking_store.blob_store import FileBlobStore, InMemoryBlobStore
from src.booking_store.supabase_store import SupabaseBlobStore
from src.utils.errors import ConcurrentModificationError, ConfigurationError, StorageError


class BlobStoreContract:
    """Behaviour every BlobStore must share; subclasses provide ``store``."""

    def test_missing_key(self, store):
        assert store.get("nope") is None
        assert store.get_json("nope") is None

    def test_put_get_versions(self, store):
        assert store.put("a/b.json", "one") == 1
        assert store.put("a/b.json", "two") == 2
        blob = store.get("a/b.json")
        assert blob.body == "two"
        assert blob.version == 2

    def test_conditional_put(self, store):
        version = store.put("k", "v1")
        assert store.put("k", "v2", expected_version=version) == version + 1
        with pytest.raises(ConcurrentModificationError):
            store.put("k", "v3", expected_version=version)
        assert store.get("k").body == "v2"

    def test_must_not_exist(self, store):
        store.put("k", "first", must_not_exist=True)
        with pytest.raises(ConcurrentModificationError):
            store.put("k", "second", must_not_exist=True)

    def test_expected_version_on_missing_key_conflicts(self, store):
        with pytest.raises(ConcurrentModificationError):
            store.put("ghost", "x", expected_version=1)

    def test_json_round_trip(self, store):
        version = store.put_json("doc.json", {"a": 1})
        assert store.get_json("doc.json") == ({"a": 1}, version)

    def test_delete_and_list(self, store):
        store.put("bookings/airbnb/A.json", "a")
        store.put("bookings/vrbo/B.json", "b")
        store.put("workflows/active/x", "x")

        assert store.list_keys("bookings/") == ["bookings/airbnb/A.json", "bookings/vrbo/B.json"]

        store.delete("bookings/airbnb/A.json")
        store.delete("bookings/airbnb/A.json")
        assert store.list_keys("bookings/") == ["bookings/vrbo/B.json"]


class TestInMemoryBlobStore(BlobStoreContract):

    @pytest.fixture
    def store(self):
        return InMemoryBlobStore()


class TestFileBlobStore(BlobStoreContract):

    @pytest.fixture
    def store(self, tmp_path):
        return FileBlobStore(str(tmp_path / "state"))

    def test_survives_reopen(self, tmp_path):
        FileBlobStore(str(tmp_path)).put("bookings/x.json", "kept")

        assert FileBlobStore(str(tmp_path)).get("bookings/x.json").body == "kept"

    def test_key_cannot_escape_root(self, store):
        with pytest.raises(StorageError):
            store.put("../outside.json", "x")

    def test_corrupt_file_raises(self, tmp_path):
        store = FileBlobStore(str(tmp_path))
        (tmp_path / "broken.json").write_text("{not json")

        with pytest.raises(StorageError):
            store.get("broken.json")

    def test_failed_write_leaves_no_temp_file(self, tmp_path, mocker):
        store = FileBlobStore(str(tmp_path))
        store.put("bookings/x.json", "kept")
        mocker.patch("src.booking_store.blob_store.os.replace", side_effect=OSError("disk full"))

        with pytest.raises(StorageError):
            store.put("bookings/x.json", "lost")

        assert list((tmp_path / "bookings").glob(".tmp-*")) == []
        assert store.get("bookings/x.json").body == "kept"


class TestSupabaseBlobStore:

    @pytest.fixture
    def client(self):
        client = Mock()
        table = Mock()
        client.table.return_value = table
        for method in ("select", "eq", "limit", "update", "insert", "upsert", "delete", "like", "order"):
            getattr(table, method).return_value = table
        return client

    @pytest.fixture
    def store(self, client):
        return SupabaseBlobStore(SupabaseConfig(state_table="turnover_state"), client=client)

    def _rows(self, client, rows):
        client.table.return_value.execute.return_value = Mock(data=rows)

    def test_requires_configuration(self):
        with pytest.raises(ConfigurationError):
            SupabaseBlobStore(SupabaseConfig())

    def test_get(self, store, client):
        self._rows(client, [{"body": "{}", "version": 3}])

        blob = store.get("k")

        assert blob.version == 3
        client.table.assert_called_with("turnover_state")

    def test_conditional_update_conflict(self, store, client):
        self._rows(client, [])

        with pytest.raises(ConcurrentModificationError):
            store.put("k", "body", expected_version=2)

    def test_conditional_update_success(self, store, client):
        self._rows(client, [{"key": "k", "version": 3}])

        assert store.put("k", "body", expected_version=2) == 3
        client.table.return_value.eq.assert_any_call("version", 2)

    def test_insert_unique_violation_is_conflict(self, store, client):
        error = Exception("duplicate key value violates unique constraint")
        error.code = "23505"
        client.table.return_value.execute.side_effect = error

        with pytest.raises(ConcurrentModificationError):
            store.put("k", "body", must_not_exist=True)

    def test_read_failure_is_storage_error(self, store, client):
        client.table.return_value.execute.side_effect = Exception("network down")

        with pytest.raises(StorageError):
            store.get("k")
