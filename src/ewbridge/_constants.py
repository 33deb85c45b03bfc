"""Internal constants for the eWeLink (CoolKit) v2 cloud API."""

from __future__ import annotations

API_BASE: dict[str, str] = {
    "cn": "https://cn-apia.coolkit.cn",
    "as": "https://as-apia.coolkit.cc",
    "us": "https://us-apia.coolkit.cc",
    "eu": "https://eu-apia.coolkit.cc",
}

DEFAULT_REGION = "eu"

OAUTH_PAGE = "https://c2ccdn.coolkit.cc/oauth/index.html"

LOGIN_PATH = "/v2/user/login"
OAUTH_TOKEN_PATH = "/v2/user/oauth/token"
REFRESH_PATH = "/v2/user/refresh"
FAMILY_PATH = "/v2/family"
THING_PATH = "/v2/device/thing"
THING_STATUS_PATH = "/v2/device/thing/status"

# Vendor error codes
ERROR_OK = 0
ERROR_WRONG_REGION = 10004
TOKEN_ERRORS = frozenset({401, 402})

# thingList itemType values
ITEM_DEVICE = 1
ITEM_SHARED_DEVICE = 2
ITEM_GROUP = 3

# Command payload type for a single device
THING_TYPE_DEVICE = 1

SWITCH_STATES = ("on", "off")

ACCESS_TOKEN_TTL = 30 * 86400  # seconds; login responses carry no expiry
TOKEN_EXPIRY_BUFFER = 300  # seconds before expiry to treat the token as stale
