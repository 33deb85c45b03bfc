"""Device records and vendor envelope normalisation.

The vendor (and the libraries wrapping it) return device lists in several
shapes.  Each known shape is an envelope class; :func:`detect_envelope`
tries them in a fixed order and the first match wins::

    [ {...}, ... ]                                        BareList
    {"data": [ {...}, ... ]}                              DataList
    {"data": {"thingList": [{"itemType": 1, "itemData": {...}}]}}   ThingList
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Union

from ewbridge._constants import ITEM_GROUP
from ewbridge.exceptions import VendorError

SwitchState = Union[str, list[dict[str, Any]], None]


@dataclass(frozen=True)
class Device:
    """A flat device record as served to the frontend."""

    id: str
    name: str
    online: bool
    switch_state: SwitchState = None
    """``"on"``/``"off"``, a per-outlet list, or ``None`` if not reported."""

    @classmethod
    def from_vendor(cls, raw: dict[str, Any]) -> Device:
        device_id = str(raw.get("deviceid") or raw.get("id") or "")
        params = raw.get("params")
        if not isinstance(params, dict):
            params = {}
        return cls(
            id=device_id,
            name=str(raw.get("name") or device_id),
            online=bool(raw.get("online", False)),
            switch_state=_switch_state(params),
        )

    def with_switch_state(self, state: SwitchState) -> Device:
        return dataclasses.replace(self, switch_state=state)

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "online": self.online,
            "switchState": self.switch_state,
        }


def _switch_state(params: dict[str, Any]) -> SwitchState:
    switches = params.get("switches")
    if isinstance(switches, list):
        return [
            {"outlet": s.get("outlet"), "switch": s.get("switch")}
            for s in switches
            if isinstance(s, dict)
        ]
    state = params.get("switch")
    if isinstance(state, str):
        return state
    return None


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BareList:
    """A top-level JSON array of device objects."""

    items: list[Any]

    @classmethod
    def detect(cls, payload: object) -> BareList | None:
        if isinstance(payload, list):
            return cls(payload)
        return None

    def entries(self, include_groups: bool) -> list[dict[str, Any]]:
        return _plain_entries(self.items, include_groups)


@dataclass(frozen=True)
class DataList:
    """An object whose ``data`` member is an array of device objects."""

    items: list[Any]

    @classmethod
    def detect(cls, payload: object) -> DataList | None:
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return cls(payload["data"])
        return None

    def entries(self, include_groups: bool) -> list[dict[str, Any]]:
        return _plain_entries(self.items, include_groups)


@dataclass(frozen=True)
class ThingList:
    """The v2 ``/device/thing`` shape; each item wraps the device in ``itemData``."""

    items: list[Any]

    @classmethod
    def detect(cls, payload: object) -> ThingList | None:
        if not isinstance(payload, dict):
            return None
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("thingList"), list):
            return cls(data["thingList"])
        return None

    def entries(self, include_groups: bool) -> list[dict[str, Any]]:
        result = []
        for item in self.items:
            if not isinstance(item, dict) or not isinstance(item.get("itemData"), dict):
                continue
            if item.get("itemType") == ITEM_GROUP and not include_groups:
                continue
            result.append(item["itemData"])
        return result


Envelope = Union[BareList, DataList, ThingList]

ENVELOPE_PRECEDENCE: tuple[type[BareList] | type[DataList] | type[ThingList], ...] = (
    BareList,
    DataList,
    ThingList,
)


def _plain_entries(items: list[Any], include_groups: bool) -> list[dict[str, Any]]:
    return [
        item
        for item in items
        if isinstance(item, dict) and (include_groups or item.get("itemType") != ITEM_GROUP)
    ]


def detect_envelope(payload: object) -> Envelope:
    """Return the first envelope variant that matches *payload*.

    Raises :class:`~ewbridge.exceptions.VendorError` for unrecognised shapes.
    """
    for variant in ENVELOPE_PRECEDENCE:
        envelope = variant.detect(payload)
        if envelope is not None:
            return envelope
    raise VendorError("Unrecognised device list payload")


def extract_devices(payload: object, *, include_groups: bool = False) -> list[dict[str, Any]]:
    """Return the raw vendor device objects contained in *payload*."""
    return detect_envelope(payload).entries(include_groups)


def normalize_devices(payload: object, *, include_groups: bool = False) -> list[Device]:
    """Flatten *payload* into :class:`Device` records.

    Pure function of its input: normalising the same payload twice gives
    equal lists.
    """
    return [Device.from_vendor(raw) for raw in extract_devices(payload, include_groups=include_groups)]


def first_family_id(payload: object) -> str | None:
    """First family id from a ``/v2/family`` response, or ``None``."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    families = data.get("familyList")
    if not isinstance(families, list):
        return None
    for family in families:
        if isinstance(family, dict) and family.get("id"):
            return str(family["id"])
    return None
