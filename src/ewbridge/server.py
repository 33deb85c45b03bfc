"""aiohttp web application exposing the bridge to the frontend.

Every response is a JSON envelope.  Success is ``{"ok": true, ...}``;
failures are ``{"ok": false, "error": <code>, "message": <text>}`` with
an HTTP status chosen by error class (see :data:`ERROR_STATUS`).
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

from aiohttp import web

from ewbridge.client import Client
from ewbridge.config import Settings
from ewbridge.exceptions import (
    AuthenticationError,
    BridgeError,
    ConfigurationError,
    NotAuthenticatedError,
    TransportError,
    ValidationError,
    VendorError,
)

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

SETTINGS_KEY = web.AppKey("settings", Settings)
CLIENT_KEY = web.AppKey("client", Client)
OAUTH_STATES_KEY = web.AppKey("oauth_states", dict)

_MAX_PENDING_STATES = 64
_TRUTHY = frozenset({"1", "true", "yes"})

# Most specific first.
ERROR_STATUS: tuple[tuple[type[BridgeError], int, str], ...] = (
    (ValidationError, 400, "invalid_request"),
    (NotAuthenticatedError, 401, "not_authenticated"),
    (AuthenticationError, 401, "authentication_failed"),
    (ConfigurationError, 500, "configuration_error"),
    (TransportError, 503, "vendor_unreachable"),
    (VendorError, 502, "vendor_error"),
)


def error_response(exc: BridgeError) -> web.Response:
    """Map an ewbridge exception onto an ``ok: false`` envelope."""
    for cls, status, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return _fail(status, code, str(exc))
    return _fail(500, "internal_error", str(exc))


def _fail(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": code, "message": message}, status=status)


# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except NotAuthenticatedError as e:
        _LOGGER.info("%s %s: %s", request.method, request.path, e)
        return error_response(e)
    except (ValidationError, AuthenticationError) as e:
        _LOGGER.info("%s %s rejected: %s", request.method, request.path, e)
        return error_response(e)
    except BridgeError as e:
        _LOGGER.warning("%s %s failed: %s", request.method, request.path, e)
        return error_response(e)


def cors_middleware(allowed_origins: tuple[str, ...]) -> Callable[..., Awaitable[web.StreamResponse]]:
    """Allow-list CORS.  Requests without an ``Origin`` header pass through."""

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        origin = request.headers.get("Origin")
        if origin is None:
            return await handler(request)
        if origin not in allowed_origins:
            _LOGGER.warning("Rejected request from origin %s", origin)
            return _fail(403, "forbidden_origin", f"Origin not allowed: {origin}")

        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=204)
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = request.headers.get(
                "Access-Control-Request-Headers", "Content-Type"
            )
        else:
            response = await handler(request)
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
        return response

    return middleware


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _json_body(request: web.Request) -> dict[str, object]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON.") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _devices_payload(devices: list) -> list[dict[str, object]]:
    return [d.as_dict() for d in devices]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def api_login(request: web.Request) -> web.Response:
    """Direct login, answered with the account's device list."""
    request.app[SETTINGS_KEY].require_credentials()
    body = await _json_body(request)
    email = body.get("email")
    password = body.get("password")
    region = body.get("region")
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        raise ValidationError("Email and password are required.")
    if region is not None and not isinstance(region, str):
        raise ValidationError("Region must be a string.")

    client = request.app[CLIENT_KEY]
    await client.login(email, password, region or None)
    devices = await client.fetch_devices()
    return web.json_response({"ok": True, "devices": _devices_payload(devices)})


async def oauth_login(request: web.Request) -> web.Response:
    """Redirect the browser to the vendor's hosted login page."""
    settings = request.app[SETTINGS_KEY]
    return_url = request.query.get("returnUrl") or None
    if return_url is not None and _origin_of(return_url) not in settings.allowed_origins:
        raise ValidationError("returnUrl is not an allowed origin.")

    state = secrets.token_urlsafe(16)
    url = request.app[CLIENT_KEY].oauth_url(state)

    pending = request.app[OAUTH_STATES_KEY]
    while len(pending) >= _MAX_PENDING_STATES:
        pending.pop(next(iter(pending)))
    pending[state] = return_url
    raise web.HTTPFound(url)


async def oauth_callback(request: web.Request) -> web.Response:
    """Complete the OAuth code flow started by :func:`oauth_login`."""
    query = request.query
    error = query.get("error")
    if error:
        raise AuthenticationError(f"OAuth login failed: {error}")

    state = query.get("state", "")
    pending = request.app[OAUTH_STATES_KEY]
    if state not in pending:
        raise ValidationError("Unknown or expired OAuth state.")
    return_url = pending.pop(state)

    code = query.get("code")
    if not code:
        raise ValidationError("Missing authorization code.")

    await request.app[CLIENT_KEY].exchange_code(code, query.get("region") or None)
    if return_url:
        raise web.HTTPFound(return_url)
    return web.json_response({"ok": True})


async def logout(request: web.Request) -> web.Response:
    request.app[CLIENT_KEY].logout()
    return web.json_response({"ok": True})


async def list_devices(request: web.Request) -> web.Response:
    include_groups = request.query.get("includeGroups", "").lower() in _TRUTHY
    devices = await request.app[CLIENT_KEY].fetch_devices(include_groups=include_groups)
    return web.json_response({"ok": True, "devices": _devices_payload(devices)})


async def toggle(request: web.Request) -> web.Response:
    body = await _json_body(request)
    await request.app[CLIENT_KEY].toggle(body.get("deviceId"), body.get("state"))  # type: ignore[arg-type]
    return web.json_response({"ok": True})


async def toggle_multi(request: web.Request) -> web.Response:
    body = await _json_body(request)
    if "outlets" not in body:
        raise ValidationError("Outlets are required.")
    await request.app[CLIENT_KEY].toggle(
        body.get("deviceId"),  # type: ignore[arg-type]
        body.get("state"),  # type: ignore[arg-type]
        body["outlets"],  # type: ignore[arg-type]
    )
    return web.json_response({"ok": True})


async def health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "authenticated": request.app[CLIENT_KEY].authenticated})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, client: Client | None = None) -> web.Application:
    """Build the web application.

    The server starts even without application credentials; requests
    that need them answer with ``configuration_error``.
    """
    if settings is None:
        settings = Settings.from_env()
    settings.warn_if_incomplete()
    if client is None:
        client = Client.from_settings(settings)

    app = web.Application(middlewares=[cors_middleware(settings.allowed_origins), error_middleware])
    app[SETTINGS_KEY] = settings
    app[CLIENT_KEY] = client
    app[OAUTH_STATES_KEY] = {}

    app.router.add_post("/api/login", api_login)
    app.router.add_get("/login", oauth_login)
    app.router.add_get("/oauth/callback", oauth_callback)
    app.router.add_post("/logout", logout)
    app.router.add_post("/api/logout", logout)
    app.router.add_get("/api/devices", list_devices)
    app.router.add_post("/api/toggle", toggle)
    app.router.add_post("/api/toggle-multi", toggle_multi)
    app.router.add_get("/health", health)
    return app


def run(settings: Settings | None = None) -> None:
    """Serve the application until interrupted."""
    if settings is None:
        settings = Settings.from_env()
    _LOGGER.info("Starting ewbridge on %s:%d", settings.host, settings.port)
    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None)
