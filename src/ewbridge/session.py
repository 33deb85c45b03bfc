"""Process-wide credential holder.

A :class:`Session` is immutable; :class:`SessionStore` swaps the whole
record on login, refresh and logout so a request never observes a
half-updated set of tokens.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from ewbridge._constants import TOKEN_EXPIRY_BUFFER


@dataclass(frozen=True)
class Session:
    """Tokens for one authenticated vendor account, pinned to one region."""

    access_token: str
    region: str
    expires_at: float
    """Unix timestamp after which the access token is no longer valid."""

    refresh_token: str | None = None
    apikey: str | None = None
    """Vendor user key, reported by the direct login flow only."""

    def is_expired(self, now: float | None = None, margin: float = TOKEN_EXPIRY_BUFFER) -> bool:
        """Whether the access token is within *margin* seconds of expiry."""
        if now is None:
            now = time.time()
        return now >= self.expires_at - margin


class SessionStore:
    """Holds the current :class:`Session`, if any.

    ``lock`` serialises token refresh so callers refresh-then-use and
    never interleave with another refresh.
    """

    def __init__(self, session: Session | None = None) -> None:
        self._session = session
        self.lock = asyncio.Lock()

    @property
    def current(self) -> Session | None:
        return self._session

    @property
    def authenticated(self) -> bool:
        return self._session is not None

    def replace(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None
