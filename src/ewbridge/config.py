"""Runtime settings, read from the environment (and a ``.env`` file)."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import load_dotenv

from ewbridge._constants import API_BASE, DEFAULT_REGION
from ewbridge.exceptions import ConfigurationError

_LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_ALLOWED_ORIGINS = ("http://localhost:5500",)

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_id: str | None = None
    app_secret: str | None = None
    region: str = DEFAULT_REGION
    redirect_url: str | None = None
    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    device_overrides: str | None = None
    """Inline JSON object, or path to a JSON file, of per-device overrides."""

    family_scoped: bool = False
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read settings from *environ*, or from ``os.environ`` after loading ``.env``."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        region = environ.get("EWELINK_REGION", DEFAULT_REGION).strip().lower() or DEFAULT_REGION
        if region not in API_BASE:
            raise ConfigurationError(
                f"EWELINK_REGION must be one of {', '.join(API_BASE)}, got '{region}'."
            )

        origins = environ.get("EWBRIDGE_ALLOWED_ORIGINS")
        allowed = (
            tuple(o.strip() for o in origins.split(",") if o.strip())
            if origins is not None
            else DEFAULT_ALLOWED_ORIGINS
        )

        port_raw = environ.get("PORT", str(DEFAULT_PORT))
        try:
            port = int(port_raw)
        except ValueError:
            raise ConfigurationError(f"PORT must be an integer, got '{port_raw}'.") from None

        return cls(
            app_id=environ.get("EWELINK_APP_ID") or None,
            app_secret=environ.get("EWELINK_APP_SECRET") or None,
            region=region,
            redirect_url=environ.get("EWELINK_REDIRECT_URL") or None,
            allowed_origins=allowed,
            device_overrides=environ.get("EWBRIDGE_DEVICE_OVERRIDES") or None,
            family_scoped=environ.get("EWBRIDGE_FAMILY_SCOPED", "").strip().lower() in _TRUE,
            host=environ.get("HOST", "0.0.0.0"),
            port=port,
            log_level=environ.get("EWBRIDGE_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_id and self.app_secret)

    def require_credentials(self) -> None:
        """Raise :class:`ConfigurationError` if the app id or secret is missing."""
        if not self.has_credentials:
            raise ConfigurationError("EWELINK_APP_ID and EWELINK_APP_SECRET must be set.")

    def warn_if_incomplete(self) -> None:
        """Log (but do not fail on) missing settings at startup."""
        if not self.has_credentials:
            _LOGGER.error(
                "EWELINK_APP_ID or EWELINK_APP_SECRET not set; vendor calls will fail"
            )
        if not self.redirect_url:
            _LOGGER.warning("EWELINK_REDIRECT_URL not set; OAuth login is disabled")
