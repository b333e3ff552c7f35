"""
Booking state store with change detection.

One record per (platform, booking reference) holds the last booking seen and,
once a cleaner confirms, the assignment. Reads and writes for a key are
serialized by a per-key lock in this process and by conditional blob writes
across processes.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from .blob_store import BlobStore
from ..utils.errors import ConcurrentModificationError, StorageError
from ..utils.logger import get_logger
from ..utils.models import Booking, BookingRecord, CleaningAssignment, Platform, utc_now


@dataclass
class BookingClaim:
    """Proof that this caller won the right to coordinate a booking."""
    key: str
    booking: Booking
    execution_id: str
    version: int
    previous: Optional[BookingRecord] = None

    @property
    def previous_execution_id(self) -> Optional[str]:
        return self.previous.execution_id if self.previous else None


def sanitize_reference(reference: str) -> str:
    return reference.replace("/", "_").replace("\\", "_")


class BookingStore:
    """Persists the last known booking per key and detects material changes."""

    def __init__(self, blob_store: BlobStore, key_prefix: str = "bookings/", max_write_attempts: int = 5):
        self.logger = get_logger("booking_store")
        self.blob_store = blob_store
        self.key_prefix = key_prefix
        self.max_write_attempts = max_write_attempts
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def storage_key(self, platform, reference: str) -> str:
        if isinstance(platform, str):
            platform = Platform.from_name(platform)
        if not reference:
            raise ValueError("Booking reference must not be empty")
        return f"{self.key_prefix}{platform.value}/{sanitize_reference(reference)}.json"

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def _load(self, key: str) -> Tuple[Optional[BookingRecord], Optional[int]]:
        stored = self.blob_store.get_json(key)
        if stored is None:
            return None, None
        payload, version = stored
        return BookingRecord.from_dict(payload), version

    def get_record(self, platform, reference: str) -> Optional[BookingRecord]:
        record, _ = self._load(self.storage_key(platform, reference))
        return record

    def get(self, platform, reference: str) -> Optional[Booking]:
        """Return the stored booking, or None when it has never been seen."""
        record = self.get_record(platform, reference)
        return record.booking if record else None

    def has_changed(self, candidate: Booking) -> bool:
        """
        True when the booking is new or differs in a material field.

        Storage failures propagate; they are never read as "unchanged".
        """
        key = self.storage_key(candidate.platform, candidate.booking_reference)
        with self._key_lock(key):
            record, _ = self._load(key)
        if record is None:
            self.logger.info("No stored booking, treating as new", key=key)
            return True
        changed = record.booking.material_fields() != candidate.material_fields()
        if changed:
            self.logger.info("Booking changed", key=key,
                             stored=record.booking.to_dict(), candidate=candidate.to_dict())
        return changed

    def save(self, booking: Booking) -> bool:
        """
        Upsert a booking. Returns False when the stored copy is already identical.

        A material change drops any recorded assignment, which belonged to the
        old dates.
        """
        key = self.storage_key(booking.platform, booking.booking_reference)
        with self._key_lock(key):
            for _ in range(self.max_write_attempts):
                record, version = self._load(key)
                if record is not None and record.booking.to_dict() == booking.to_dict():
                    return False

                keep = record is not None and record.booking.material_fields() == booking.material_fields()
                updated = BookingRecord(
                    booking=booking,
                    execution_id=record.execution_id if record else None,
                    assignment=record.assignment if keep else None,
                )
                try:
                    self.blob_store.put_json(key, updated.to_dict(),
                                             expected_version=version,
                                             must_not_exist=version is None)
                except ConcurrentModificationError:
                    self.logger.debug("Booking save raced, retrying", key=key)
                    continue
                self.logger.info("Booking saved", key=key)
                return True
        raise StorageError(f"Could not save {key} after {self.max_write_attempts} attempts")

    def claim(self, candidate: Booking, execution_id: str) -> Optional[BookingClaim]:
        """
        Atomically record a new or changed booking as owned by an execution.

        Returns None when the booking is unchanged or another writer updated
        the key between our read and write.
        """
        key = self.storage_key(candidate.platform, candidate.booking_reference)
        with self._key_lock(key):
            record, version = self._load(key)
            if record is not None and record.booking.material_fields() == candidate.material_fields():
                return None

            claimed = BookingRecord(booking=candidate, execution_id=execution_id)
            try:
                new_version = self.blob_store.put_json(key, claimed.to_dict(),
                                                       expected_version=version,
                                                       must_not_exist=version is None)
            except ConcurrentModificationError:
                self.logger.warning("Booking claimed by another writer", key=key)
                return None

        self.logger.info("Booking claimed", key=key, execution_id=execution_id)
        return BookingClaim(key=key, booking=candidate, execution_id=execution_id,
                            version=new_version, previous=record)

    def release(self, claim: BookingClaim) -> None:
        """Undo a claim whose workflow never started, so the next run retries it."""
        with self._key_lock(claim.key):
            current = self.blob_store.get(claim.key)
            if current is None or current.version != claim.version:
                self.logger.warning("Claim superseded before release", key=claim.key)
                return
            if claim.previous is None:
                self.blob_store.delete(claim.key)
            else:
                try:
                    self.blob_store.put_json(claim.key, claim.previous.to_dict(),
                                             expected_version=claim.version)
                except ConcurrentModificationError:
                    self.logger.warning("Claim superseded before release", key=claim.key)
                    return
        self.logger.info("Booking claim released", key=claim.key)

    def record_assignment(self, platform, reference: str, assignment: CleaningAssignment) -> bool:
        """Attach the confirmed cleaner to the booking owned by the assignment's execution."""
        key = self.storage_key(platform, reference)
        with self._key_lock(key):
            for _ in range(self.max_write_attempts):
                record, version = self._load(key)
                if record is None:
                    self.logger.warning("Cannot record assignment, booking missing", key=key)
                    return False
                if assignment.execution_id and record.execution_id not in (None, assignment.execution_id):
                    self.logger.warning("Booking now owned by a newer execution",
                                        key=key, execution_id=assignment.execution_id)
                    return False
                record.assignment = assignment
                record.updated_at = utc_now()
                try:
                    self.blob_store.put_json(key, record.to_dict(), expected_version=version)
                except ConcurrentModificationError:
                    continue
                self.logger.info("Assignment recorded", key=key, cleaner=assignment.cleaner_name)
                return True
        raise StorageError(f"Could not record assignment on {key}")

    def delete(self, platform, reference: str) -> None:
        key = self.storage_key(platform, reference)
        with self._key_lock(key):
            self.blob_store.delete(key)
        self.logger.info("Booking deleted", key=key)
