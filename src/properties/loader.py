"""
Loads the property and cleaner configuration document.

The document is JSON, either inline in ``PROPERTIES_CONFIG`` or in the file
named by ``PROPERTIES_CONFIG_FILE``::

    {
      "properties": [
        {
          "propertyId": "lake-house",
          "platformIds": {"airbnb": "12345678", "vrbo": "87654321"},
          "address": "1 Lake Rd, Mineral, VA",
          "cleaners": [{"name": "Alice", "email": "alice@example.com", "phone": "+15550001", "rank": 1}],
          "metadata": {"propertyName": "Lake House", "cleaningDuration": "2-3 hours"}
        }
      ],
      "emailFilters": {"bookingPlatformFromAddresses": ["airbnb.com"], "subjectPatterns": ["Reservation confirmed"]}
    }

Keys may be camelCase or snake_case.
"""
import json
from pathlib import Path

from ..utils.errors import ConfigurationError
from ..utils.logger import get_logger
from ..utils.models import PropertiesConfiguration
from config.settings import AppConfig

logger = get_logger("properties_loader")


def parse_properties(document: str) -> PropertiesConfiguration:
    try:
        data = json.loads(document)
    except ValueError as e:
        raise ConfigurationError(f"Properties configuration is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError("Properties configuration must be a JSON object")
    try:
        configuration = PropertiesConfiguration.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid properties configuration: {e}") from e

    for prop in configuration.properties:
        if not prop.property_id:
            raise ConfigurationError("Every property needs a propertyId")
    return configuration


def load_properties(app_config: AppConfig) -> PropertiesConfiguration:
    """
    Load the properties configuration named by the app settings.

    Raises:
        ConfigurationError: when no source is configured or it cannot be parsed
    """
    if app_config.properties_config:
        configuration = parse_properties(app_config.properties_config)
        source = "PROPERTIES_CONFIG"
    elif app_config.properties_config_file:
        path = Path(app_config.properties_config_file)
        try:
            document = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read properties file {path}: {e}") from e
        configuration = parse_properties(document)
        source = str(path)
    else:
        raise ConfigurationError("No properties configuration (set PROPERTIES_CONFIG or PROPERTIES_CONFIG_FILE)")

    logger.info("Loaded property configuration", source=source,
                properties=len(configuration.properties))
    return configuration
