"""eWeLink cloud API client.

Wraps the vendor's v2 HTTP API: signed login and OAuth token exchange,
token refresh, device listing and switch commands.  The :class:`Client`
owns a :class:`~ewbridge.session.SessionStore`; every authenticated call
goes through :meth:`Client.ensure_fresh` first::

    import asyncio
    from ewbridge import Client

    client = Client("app-id", "app-secret", region="eu")
    await client.login("email@example.com", "password")
    devices = await client.fetch_devices()
    await client.toggle(devices[0].id, "on")
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib.parse import urlencode

import aiohttp

from ewbridge._constants import (
    ACCESS_TOKEN_TTL,
    API_BASE,
    DEFAULT_REGION,
    ERROR_OK,
    ERROR_WRONG_REGION,
    FAMILY_PATH,
    LOGIN_PATH,
    OAUTH_PAGE,
    OAUTH_TOKEN_PATH,
    REFRESH_PATH,
    THING_PATH,
    THING_STATUS_PATH,
    THING_TYPE_DEVICE,
    TOKEN_ERRORS,
)
from ewbridge._crypto import make_nonce, make_seq, sign, sign_header
from ewbridge.config import Settings
from ewbridge.devices import Device, first_family_id, normalize_devices
from ewbridge.exceptions import (
    AuthenticationError,
    BridgeError,
    ConfigurationError,
    NotAuthenticatedError,
    TransportError,
    ValidationError,
    VendorError,
)
from ewbridge.overrides import (
    OverrideTable,
    ShadowStore,
    Strategy,
    validate_outlets,
    validate_state,
)
from ewbridge.session import Session, SessionStore

_LOGGER = logging.getLogger(__name__)


class Client:
    """eWeLink cloud client bound to one application id/secret.

    Holds at most one :class:`~ewbridge.session.Session`.  Logging in
    again, completing an OAuth exchange or refreshing replaces it whole;
    :meth:`logout` drops it.
    """

    def __init__(
        self,
        app_id: str | None,
        app_secret: str | None,
        *,
        region: str = DEFAULT_REGION,
        redirect_url: str | None = None,
        store: SessionStore | None = None,
        overrides: OverrideTable | None = None,
        shadows: ShadowStore | None = None,
        family_scoped: bool = False,
    ) -> None:
        self.app_id = app_id or ""
        self.app_secret = app_secret or ""
        self.region = region if region in API_BASE else DEFAULT_REGION
        self.redirect_url = redirect_url
        self.store = store if store is not None else SessionStore()
        self.overrides = overrides if overrides is not None else OverrideTable()
        self.shadows = shadows if shadows is not None else ShadowStore()
        self.family_scoped = family_scoped

    @classmethod
    def from_settings(cls, settings: Settings) -> Client:
        """Build a client from environment-derived :class:`~ewbridge.config.Settings`."""
        return cls(
            settings.app_id,
            settings.app_secret,
            region=settings.region,
            redirect_url=settings.redirect_url,
            overrides=OverrideTable.load(settings.device_overrides),
            family_scoped=settings.family_scoped,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        """The current session, or ``None`` when logged out."""
        return self.store.current

    @property
    def authenticated(self) -> bool:
        return self.store.authenticated

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str, region: str | None = None) -> Session:
        """Log in with account credentials (signed request).

        If the vendor reports the account lives in another region, the
        login is retried once against that region.  Accounts starting with
        ``+`` are sent as phone numbers.
        """
        self._require_credentials()
        if not email or not password:
            raise ValidationError("Email and password are required.")
        region = self._resolve_region(region)
        account_key = "phoneNumber" if email.startswith("+") else "email"
        payload = {account_key: email, "password": password}

        async with aiohttp.ClientSession() as http:
            body = await self._signed_post(http, region, LOGIN_PATH, payload)
            redirect = _wrong_region(body)
            if redirect is not None:
                _LOGGER.info("Account is in region %s, retrying login there", redirect)
                region = redirect
                body = await self._signed_post(http, region, LOGIN_PATH, payload)

        code = _error_code(body)
        if code != ERROR_OK:
            raise AuthenticationError(f"Login failed: {_error_message(body)}", error_code=code)

        data = _data(body)
        access_token = data.get("at")
        if not access_token:
            raise AuthenticationError("Login failed: no access token in response")
        user = data.get("user")
        session = Session(
            access_token=str(access_token),
            region=region,
            expires_at=time.time() + ACCESS_TOKEN_TTL,
            refresh_token=str(data["rt"]) if data.get("rt") else None,
            apikey=str(user["apikey"]) if isinstance(user, dict) and user.get("apikey") else None,
        )
        self.store.replace(session)
        _LOGGER.info("Logged in, region %s", region)
        return session

    def oauth_url(self, state: str, *, nonce: str | None = None, seq: str | None = None) -> str:
        """URL of the vendor's hosted login page for the OAuth2 code flow."""
        self._require_credentials()
        if not self.redirect_url:
            raise ConfigurationError("Redirect URL is not configured.")
        seq = seq or make_seq()
        query = {
            "clientId": self.app_id,
            "seq": seq,
            "authorization": sign(self.app_secret, f"{self.app_id}_{seq}"),
            "redirectUrl": self.redirect_url,
            "grantType": "authorization_code",
            "state": state,
            "nonce": nonce or make_nonce(),
            "showQRCode": "false",
        }
        return f"{OAUTH_PAGE}?{urlencode(query)}"

    async def exchange_code(self, code: str, region: str | None = None) -> Session:
        """Exchange an OAuth2 authorization *code* for tokens (signed request)."""
        self._require_credentials()
        if not code:
            raise ValidationError("Authorization code is required.")
        region = self._resolve_region(region)
        payload = {
            "code": code,
            "redirectUrl": self.redirect_url or "",
            "grantType": "authorization_code",
        }
        async with aiohttp.ClientSession() as http:
            body = await self._signed_post(http, region, OAUTH_TOKEN_PATH, payload)

        error = _error_code(body)
        if error != ERROR_OK:
            raise AuthenticationError(
                f"Code exchange failed: {_error_message(body)}", error_code=error
            )
        data = _data(body)
        access_token = data.get("accessToken")
        if not access_token:
            raise AuthenticationError("Code exchange failed: no access token in response")
        now = time.time()
        session = Session(
            access_token=str(access_token),
            region=region,
            expires_at=_expiry(data.get("atExpiredTime"), now),
            refresh_token=str(data["refreshToken"]) if data.get("refreshToken") else None,
        )
        self.store.replace(session)
        _LOGGER.info("OAuth code exchanged, region %s", region)
        return session

    async def refresh(self) -> Session:
        """Refresh the access token now.

        Raises :class:`~ewbridge.exceptions.NotAuthenticatedError` when there
        is nothing to refresh; the session, if any, is kept.  If the vendor
        rejects the refresh the session is cleared.
        """
        async with self.store.lock:
            current = self.store.current
            if current is None:
                raise NotAuthenticatedError("Not authenticated")
            if not current.refresh_token:
                raise NotAuthenticatedError("Session has no refresh token")
            return await self._refresh(current)

    async def ensure_fresh(self) -> Session:
        """Return a usable session, refreshing it first if it has expired.

        Raises :class:`~ewbridge.exceptions.NotAuthenticatedError` without
        contacting the vendor when there is no session, or when it has
        expired and carries no refresh token.
        """
        current = self.store.current
        if current is None:
            raise NotAuthenticatedError("Not authenticated")
        if not current.is_expired():
            return current

        async with self.store.lock:
            # Another task may have refreshed while we waited.
            current = self.store.current
            if current is None:
                raise NotAuthenticatedError("Not authenticated")
            if not current.is_expired():
                return current
            if not current.refresh_token:
                self.store.clear()
                raise NotAuthenticatedError("Session expired")
            return await self._refresh(current)

    def logout(self) -> None:
        """Forget the current session and any remembered shadow states."""
        self.store.clear()
        self.shadows.clear()
        _LOGGER.info("Logged out")

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def fetch_families(self) -> dict[str, Any]:
        """Raw ``/v2/family`` response."""
        body = await self._authorized("GET", FAMILY_PATH)
        return body if isinstance(body, dict) else {}

    async def fetch_devices(
        self, *, family_scoped: bool | None = None, include_groups: bool = False
    ) -> list[Device]:
        """List the account's devices as flat :class:`~ewbridge.devices.Device` records.

        When *family_scoped* (default: the client setting) the first family
        is resolved and the listing is restricted to it.  Group entries are
        dropped unless *include_groups*.
        """
        if family_scoped is None:
            family_scoped = self.family_scoped
        params = {"num": "0"}
        if family_scoped:
            family_id = first_family_id(await self.fetch_families())
            if family_id is not None:
                params["familyid"] = family_id
            else:
                _LOGGER.debug("No family found, listing devices unscoped")

        body = await self._authorized("GET", THING_PATH, params=params)
        devices = [self.shadows.apply(d) for d in normalize_devices(body, include_groups=include_groups)]
        _LOGGER.debug("Retrieved %d devices", len(devices))
        return devices

    async def send_command(self, device_id: str, params: dict[str, object]) -> None:
        """Send a raw ``params`` update to one device.  Never retried."""
        payload = {"type": THING_TYPE_DEVICE, "id": device_id, "params": params}
        _LOGGER.debug("Sending command to device %s: %s", device_id, params)
        await self._authorized("POST", THING_STATUS_PATH, payload=payload)

    async def toggle(
        self, device_id: str, state: str, outlets: list[int] | None = None
    ) -> dict[str, object]:
        """Switch a device (or some of its outlets) on or off.

        The request is validated before any outbound call and shaped by
        the device's override.  Returns the ``params`` that were sent.
        """
        if not isinstance(device_id, str) or not device_id:
            raise ValidationError("deviceId is required.")
        state = validate_state(state)
        checked = validate_outlets(outlets) if outlets is not None else None

        params = self.overrides.build_params(device_id, state, checked)
        await self.send_command(device_id, params)
        if self.overrides.resolve(device_id).strategy is Strategy.SHADOW:
            self.shadows.record(device_id, params)
        return params

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _require_credentials(self) -> None:
        if not self.app_id or not self.app_secret:
            raise ConfigurationError("Application id/secret are not configured.")

    def _resolve_region(self, region: str | None) -> str:
        if not region:
            return self.region
        if region not in API_BASE:
            raise ValidationError(
                f"Unknown region '{region}'. Expected: {' | '.join(API_BASE)}"
            )
        return region

    async def _signed_post(
        self,
        http: aiohttp.ClientSession,
        region: str,
        path: str,
        payload: dict[str, object],
    ) -> dict[str, Any]:
        body = _dumps(payload)
        headers = {
            "Content-Type": "application/json",
            "Authorization": sign_header(self.app_secret, body),
            "X-CK-Appid": self.app_id,
        }
        result = await _request_json(http, "POST", f"{API_BASE[region]}{path}", headers=headers, data=body)
        if not isinstance(result, dict):
            raise VendorError(f"Unexpected response from {path}")
        return result

    async def _refresh(self, current: Session) -> Session:
        """Exchange the refresh token.  Caller holds ``store.lock``."""
        assert current.refresh_token is not None
        try:
            self._require_credentials()
            async with aiohttp.ClientSession() as http:
                body = await self._signed_post(
                    http, current.region, REFRESH_PATH, {"rt": current.refresh_token}
                )
        except BridgeError as e:
            _LOGGER.warning("Token refresh failed: %s", e)
            self.store.clear()
            raise NotAuthenticatedError(f"Token refresh failed: {e}") from e

        code = _error_code(body)
        data = _data(body)
        if code != ERROR_OK or not data.get("at"):
            _LOGGER.warning("Token refresh rejected (error=%s)", code)
            self.store.clear()
            raise NotAuthenticatedError(
                f"Token refresh failed: {_error_message(body)}", error_code=code
            )

        session = Session(
            access_token=str(data["at"]),
            region=current.region,
            expires_at=time.time() + ACCESS_TOKEN_TTL,
            refresh_token=str(data.get("rt") or current.refresh_token),
            apikey=current.apikey,
        )
        self.store.replace(session)
        _LOGGER.info("Access token refreshed")
        return session

    async def _authorized(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, object] | None = None,
    ) -> Any:
        """Bearer-authenticated call; returns the decoded body."""
        self._require_credentials()
        session = await self.ensure_fresh()
        headers = {
            "Authorization": f"Bearer {session.access_token}",
            "X-CK-Appid": self.app_id,
        }
        kwargs: dict[str, Any] = {}
        if params is not None:
            kwargs["params"] = params
        if payload is not None:
            headers["Content-Type"] = "application/json"
            kwargs["data"] = _dumps(payload)

        url = f"{API_BASE[session.region]}{path}"
        async with aiohttp.ClientSession() as http:
            body = await _request_json(http, method, url, headers=headers, **kwargs)

        code = _error_code(body)
        if code in TOKEN_ERRORS:
            # Only drop the session we used; a concurrent login may have replaced it.
            if self.store.current is session:
                self.store.clear()
            raise NotAuthenticatedError(
                f"Access token rejected: {_error_message(body)}", error_code=code
            )
        if code != ERROR_OK:
            raise VendorError(f"{path} failed: {_error_message(body)}", error_code=code)
        return body


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _dumps(payload: object) -> bytes:
    """Compact JSON; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


async def _request_json(
    http: aiohttp.ClientSession, method: str, url: str, **kwargs: Any
) -> Any:
    """Issue one request and decode its JSON body.

    Network and HTTP-status failures become
    :class:`~ewbridge.exceptions.TransportError`.
    """
    try:
        async with http.request(method, url, **kwargs) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)
    except aiohttp.ClientError as e:
        raise TransportError(f"{method} {url} failed: {e}") from e
    except ValueError as e:
        raise VendorError(f"{method} {url} returned invalid JSON") from e


def _error_code(body: object) -> int:
    """Vendor ``error`` field; bodies without one count as success."""
    if not isinstance(body, dict):
        return ERROR_OK
    code = body.get("error", ERROR_OK)
    try:
        return int(code)
    except (TypeError, ValueError):
        return -1


def _error_message(body: dict[str, Any]) -> str:
    return str(body.get("msg") or "unknown error")


def _data(body: dict[str, Any]) -> dict[str, Any]:
    data = body.get("data")
    return data if isinstance(data, dict) else {}


def _wrong_region(body: dict[str, Any]) -> str | None:
    """Region to retry a login against, if the vendor redirected us."""
    if _error_code(body) != ERROR_WRONG_REGION:
        return None
    region = _data(body).get("region")
    if isinstance(region, str) and region in API_BASE:
        return region
    return None


def _expiry(value: object, now: float) -> float:
    """Unix expiry from an ``atExpiredTime`` value.

    The vendor reports an epoch in milliseconds; epoch seconds and plain
    durations in seconds are also accepted.  Missing values fall back to
    the default token lifetime.
    """
    try:
        number = float(str(value))
    except ValueError:
        return now + ACCESS_TOKEN_TTL
    if number > 1e11:
        return number / 1000
    if number > 1e9:
        return number
    if number > 0:
        return now + number
    return now + ACCESS_TOKEN_TTL
