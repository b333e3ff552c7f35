"""
Supabase-backed blob storage.

Expects a table (default ``turnover_state``)::

    create table turnover_state (
        key text primary key,
        body text not null,
        version integer not null,
        updated_at timestamptz
    );

Conditional writes filter the update on the version that was read, so a
lost race shows up as an update touching no rows.
"""
from datetime import datetime, timezone
from typing import List, Optional

from supabase import create_client

from .blob_store import BlobStore, StoredBlob
from ..utils.errors import ConcurrentModificationError, ConfigurationError, StorageError
from ..utils.logger import get_logger
from config.settings import SupabaseConfig

UNIQUE_VIOLATION = "23505"


def _is_unique_violation(error: Exception) -> bool:
    return getattr(error, "code", None) == UNIQUE_VIOLATION or UNIQUE_VIOLATION in str(error)


class SupabaseBlobStore(BlobStore):
    """Blob storage on a Supabase (PostgREST) table."""

    def __init__(self, config: SupabaseConfig, client=None):
        self.logger = get_logger("supabase_blob_store")
        self.table_name = config.state_table
        if client is None:
            auth_key = config.get_auth_key()
            if not config.url or not auth_key:
                raise ConfigurationError("Supabase configuration missing (SUPABASE_URL / key)")
            client = create_client(config.url, auth_key)
            self.logger.info("Supabase client initialized successfully", url=config.url)
        self.client = client

    def _table(self):
        return self.client.table(self.table_name)

    def get(self, key: str) -> Optional[StoredBlob]:
        try:
            response = self._table().select("body, version").eq("key", key).limit(1).execute()
        except Exception as e:
            self.logger.error("Supabase read failed", key=key, error=str(e))
            raise StorageError(f"Cannot read {key}: {e}") from e
        rows = response.data or []
        if not rows:
            return None
        return StoredBlob(body=rows[0]["body"], version=int(rows[0]["version"]))

    def put(self, key: str, body: str, expected_version: Optional[int] = None,
            must_not_exist: bool = False) -> int:
        row = {"key": key, "body": body, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            if expected_version is not None:
                version = expected_version + 1
                response = (
                    self._table()
                    .update({**row, "version": version})
                    .eq("key", key)
                    .eq("version", expected_version)
                    .execute()
                )
                if not response.data:
                    raise ConcurrentModificationError(key, expected_version)
                return version

            if must_not_exist:
                self._table().insert({**row, "version": 1}).execute()
                return 1

            current = self.get(key)
            version = current.version + 1 if current else 1
            self._table().upsert({**row, "version": version}, on_conflict="key").execute()
            return version
        except (ConcurrentModificationError, StorageError):
            raise
        except Exception as e:
            if _is_unique_violation(e):
                raise ConcurrentModificationError(key, expected_version) from e
            self.logger.error("Supabase write failed", key=key, error=str(e))
            raise StorageError(f"Cannot write {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._table().delete().eq("key", key).execute()
        except Exception as e:
            self.logger.error("Supabase delete failed", key=key, error=str(e))
            raise StorageError(f"Cannot delete {key}: {e}") from e

    def list_keys(self, prefix: str) -> List[str]:
        try:
            response = self._table().select("key").like("key", f"{prefix}%").execute()
        except Exception as e:
            self.logger.error("Supabase list failed", prefix=prefix, error=str(e))
            raise StorageError(f"Cannot list {prefix}: {e}") from e
        return sorted(row["key"] for row in response.data or [])
