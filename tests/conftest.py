"""
Shared fixtures for the turnover automation tests.
"""
from datetime import date, datetime, timezone

import pytest

from config.settings import WorkflowConfig
from src.booking_store.blob_store import InMemoryBlobStore
from src.booking_store.store import BookingStore
from src.utils.models import (
    Booking, CleanerContact, Platform, PropertyConfig, PropertyMetadata
)


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def booking_store(blob_store):
    return BookingStore(blob_store)


@pytest.fixture
def workflow_config():
    return WorkflowConfig(
        response_timeout_hours=12,
        dispatch_retry_budget=3,
        dispatch_retry_delay_seconds=0,
        cleaning_time="12:00",
        default_timezone="America/New_York",
        callback_base_url="https://turnover.example.com",
    )


@pytest.fixture
def lake_house():
    """Property with cleaners listed out of rank order."""
    return PropertyConfig(
        property_id="lake-house",
        platform_ids={"airbnb": "12345678", "vrbo": "87654321"},
        address="1 Lake Rd, Mineral, VA",
        cleaners=[
            CleanerContact(name="Bob", email="bob@example.com", phone="+15550002", rank=2),
            CleanerContact(name="Alice", email="alice@example.com", phone="+15550001", rank=1),
        ],
        metadata=PropertyMetadata(
            property_name="Lake House",
            bedrooms=3,
            bathrooms=2,
            cleaning_duration="2-3 hours",
            access_instructions="Lockbox code 1234",
            owner_name="Pat Owner",
            owner_email="pat@example.com",
        ),
    )


@pytest.fixture
def sample_booking():
    return Booking(
        platform=Platform.AIRBNB,
        booking_reference="HM123456789",
        property_id="12345678",
        check_in_date=date(2026, 1, 15),
        check_out_date=date(2026, 1, 18),
        guest_name="John Smith",
        number_of_guests=2,
        raw_source_digest="abc",
        email_id="101",
    )


@pytest.fixture
def fixed_now():
    return datetime(2026, 1, 10, 15, 0, tzinfo=timezone.utc)
