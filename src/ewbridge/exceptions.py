"""ewbridge exceptions."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base exception for ewbridge errors."""


class ConfigurationError(BridgeError):
    """Required application credentials are missing."""


class AuthenticationError(BridgeError):
    """The vendor rejected credentials, an OAuth code or a signature."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.error_code: int | None = kwargs.get("error_code")
        super().__init__(*args)

    def __str__(self) -> str:
        err_code = f" (error={self.error_code})" if self.error_code is not None else ""
        return super().__str__() + err_code


class NotAuthenticatedError(AuthenticationError):
    """No usable session: never logged in, logged out, or expired."""


class VendorError(BridgeError):
    """The vendor answered an authenticated call with a non-zero error."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.error_code: int | None = kwargs.get("error_code")
        super().__init__(*args)

    def __str__(self) -> str:
        err_code = f" (error={self.error_code})" if self.error_code is not None else ""
        return super().__str__() + err_code


class TransportError(VendorError):
    """The vendor could not be reached or answered with an HTTP error."""


class ValidationError(ValueError, BridgeError):
    """Caller input is malformed; raised before any outbound call."""
