"""Python backend bridging the eWeLink smart-plug cloud to a web frontend."""

from ewbridge.client import Client
from ewbridge.devices import Device, normalize_devices
from ewbridge.exceptions import (
    AuthenticationError,
    BridgeError,
    ConfigurationError,
    NotAuthenticatedError,
    TransportError,
    ValidationError,
    VendorError,
)
from ewbridge.overrides import OverrideTable, Strategy
from ewbridge.session import Session, SessionStore

__all__ = [
    "AuthenticationError",
    "BridgeError",
    "Client",
    "ConfigurationError",
    "Device",
    "NotAuthenticatedError",
    "OverrideTable",
    "Session",
    "SessionStore",
    "Strategy",
    "TransportError",
    "ValidationError",
    "VendorError",
    "normalize_devices",
]
