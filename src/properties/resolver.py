"""
Maps a platform listing id to a configured property.
"""
from typing import Iterable, List, Optional

from ..utils.logger import get_logger
from ..utils.models import Platform, PropertyConfig


def normalize_platform(platform) -> str:
    """Canonical platform key: "booking.com" and "bookingcom" both become "bookingcom"."""
    if isinstance(platform, Platform):
        return platform.value
    try:
        return Platform.from_name(platform).value
    except ValueError:
        return (platform or "").strip().lower()


class PropertyResolver:
    """Read-only lookup over the properties loaded for one run."""

    def __init__(self, properties: Iterable[PropertyConfig]):
        self.logger = get_logger("property_resolver")
        self.properties: List[PropertyConfig] = list(properties)
        self._warn_duplicates()

    def _warn_duplicates(self):
        seen = {}
        for prop in self.properties:
            for platform, listing_id in prop.platform_ids.items():
                pair = (normalize_platform(platform), str(listing_id).lower())
                if pair in seen:
                    self.logger.warning("Listing id configured for more than one property",
                                        platform=pair[0], listing_id=listing_id,
                                        first=seen[pair], duplicate=prop.property_id)
                else:
                    seen[pair] = prop.property_id

    def resolve(self, platform, listing_id: str) -> Optional[PropertyConfig]:
        """
        Find the property whose id on this platform equals listing_id.

        Args:
            platform: Platform enum or name (aliases accepted)
            listing_id: Platform-local listing id, compared case-insensitively

        Returns:
            First matching property in configuration order, or None
        """
        canonical = normalize_platform(platform)
        wanted = (listing_id or "").strip().lower()
        if not wanted:
            return None

        for prop in self.properties:
            for name, configured_id in prop.platform_ids.items():
                if normalize_platform(name) == canonical and str(configured_id).strip().lower() == wanted:
                    self.logger.debug("Property resolved", platform=canonical,
                                      listing_id=listing_id, property_id=prop.property_id)
                    return prop

        self.logger.warning("No property configured for listing",
                            platform=canonical, listing_id=listing_id)
        return None

    def get_all_properties(self) -> List[PropertyConfig]:
        return list(self.properties)

    def describe_known(self) -> List[str]:
        """One line per property for diagnosing configuration mismatches."""
        return [
            f"{prop.property_id}: " + ", ".join(f"{k}={v}" for k, v in prop.platform_ids.items())
            for prop in self.properties
        ]
