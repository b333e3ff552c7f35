"""
Exception hierarchy for the Rental Turnover Automation system.
"""
from typing import List, Optional


class TurnoverError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(TurnoverError):
    """Required configuration or secrets could not be loaded."""


class StorageError(TurnoverError):
    """Durable storage could not be read or written."""


class ConcurrentModificationError(StorageError):
    """A conditional write lost against another writer."""

    def __init__(self, key: str, expected_version: Optional[int] = None):
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"Concurrent modification of {key} (expected version {expected_version})")


class PropertyNotFoundError(TurnoverError):
    """A booking's listing id matches no configured property."""

    def __init__(self, platform: str, listing_id: str, known_properties: Optional[List[str]] = None):
        self.platform = platform
        self.listing_id = listing_id
        self.known_properties = known_properties or []
        super().__init__(f"No property configuration found for {platform} property {listing_id}")


class CallbackError(TurnoverError):
    """A cleaner response could not be accepted."""


class UnknownTokenError(CallbackError):
    """The resumption token was never issued."""

    def __init__(self, token: str):
        self.token = token
        super().__init__("Unknown or expired response token")


class InvalidResponseError(CallbackError):
    """The response value was not yes or no."""

    def __init__(self, response: str):
        self.response = response
        super().__init__(f"Invalid response '{response}'. Expected 'yes' or 'no'")


class MailboxError(TurnoverError):
    """The mailbox could not be reached or searched."""
