"""
Durable key/value blob storage used for booking state and workflow records.

Every stored blob carries an integer version. Writers can make a write
conditional on the version they read (or on the key not existing yet),
which gives compare-and-swap semantics across processes.
"""
import fcntl
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..utils.errors import ConcurrentModificationError, StorageError
from ..utils.logger import get_logger


@dataclass(frozen=True)
class StoredBlob:
    body: str
    version: int


class BlobStore(ABC):
    """Port: versioned key/value blob storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[StoredBlob]:
        """Return the blob, or None when the key does not exist."""

    @abstractmethod
    def put(self, key: str, body: str, expected_version: Optional[int] = None,
            must_not_exist: bool = False) -> int:
        """
        Write a blob and return its new version.

        Args:
            key: Storage key
            body: Serialized content
            expected_version: Only write if the stored version still equals this
            must_not_exist: Only write if the key is absent

        Raises:
            ConcurrentModificationError: when a condition does not hold
            StorageError: on I/O failure
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    @abstractmethod
    def list_keys(self, prefix: str) -> List[str]:
        """Keys starting with prefix, sorted."""

    def get_json(self, key: str) -> Optional[Tuple[dict, int]]:
        blob = self.get(key)
        if blob is None:
            return None
        return json.loads(blob.body), blob.version

    def put_json(self, key: str, payload: dict, expected_version: Optional[int] = None,
                 must_not_exist: bool = False) -> int:
        return self.put(key, json.dumps(payload, sort_keys=True), expected_version, must_not_exist)


def _check_conditions(key: str, current: Optional[int], expected_version: Optional[int],
                      must_not_exist: bool) -> None:
    if must_not_exist and current is not None:
        raise ConcurrentModificationError(key, expected_version)
    if expected_version is not None and current != expected_version:
        raise ConcurrentModificationError(key, expected_version)


class InMemoryBlobStore(BlobStore):
    """Process-local store for tests and dry runs."""

    def __init__(self):
        self._blobs: Dict[str, StoredBlob] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[StoredBlob]:
        with self._lock:
            return self._blobs.get(key)

    def put(self, key: str, body: str, expected_version: Optional[int] = None,
            must_not_exist: bool = False) -> int:
        with self._lock:
            current = self._blobs.get(key)
            _check_conditions(key, current.version if current else None, expected_version, must_not_exist)
            version = (current.version if current else 0) + 1
            self._blobs[key] = StoredBlob(body=body, version=version)
            return version

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def list_keys(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._blobs if k.startswith(prefix))


class FileBlobStore(BlobStore):
    """
    Blobs as JSON envelopes under a root directory.

    Writes go through a temp file and ``os.replace``; conditional writes hold
    an exclusive ``flock`` on ``.lock`` so concurrent processes on one host
    serialize their read-compare-write.
    """

    def __init__(self, root: str):
        self.logger = get_logger("file_blob_store")
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.root}: {e}") from e
        self._lock_path = self.root / ".lock"
        self._thread_lock = threading.RLock()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._thread_lock:
            with open(self._lock_path, "a") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)

    def _read(self, key: str) -> Optional[StoredBlob]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                envelope = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {key}: {e}") from e
        return StoredBlob(body=envelope["body"], version=int(envelope["version"]))

    def get(self, key: str) -> Optional[StoredBlob]:
        return self._read(key)

    def put(self, key: str, body: str, expected_version: Optional[int] = None,
            must_not_exist: bool = False) -> int:
        path = self._path(key)
        with self._exclusive():
            current = self._read(key)
            _check_conditions(key, current.version if current else None, expected_version, must_not_exist)
            version = (current.version if current else 0) + 1
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            except OSError as e:
                raise StorageError(f"Cannot write {key}: {e}") from e
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump({"version": version, "body": body}, fh)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as e:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
                raise StorageError(f"Cannot write {key}: {e}") from e
        self.logger.debug("Blob written", key=key, version=version)
        return version

    def delete(self, key: str) -> None:
        with self._exclusive():
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                return
            except OSError as e:
                raise StorageError(f"Cannot delete {key}: {e}") from e

    def list_keys(self, prefix: str) -> List[str]:
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)
