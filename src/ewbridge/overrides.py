"""Per-device command shaping.

Most devices take the plain ``{"switch": state}`` command.  A few need
special treatment, configured by device id::

    {
        "1000abcdef": "pulse",
        "1000fedcba": {"strategy": "shadow"},
        "10001234ab": {"strategy": "multi", "outlets": [0, 1]}
    }

``pulse``
    Momentary actuator: always sends ``switch: on``, whatever was asked.
``shadow``
    The vendor does not report the real state, so the last commanded state
    is remembered locally and reported in its place.
``multi``
    Multi-channel device: commands use the ``switches`` form over the
    configured outlets.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ewbridge._constants import SWITCH_STATES
from ewbridge.devices import Device, SwitchState
from ewbridge.exceptions import ConfigurationError, ValidationError


class Strategy(str, Enum):
    DEFAULT = "default"
    PULSE = "pulse"
    SHADOW = "shadow"
    MULTI = "multi"


@dataclass(frozen=True)
class Override:
    strategy: Strategy = Strategy.DEFAULT
    outlets: tuple[int, ...] = (0,)
    """Outlets addressed by the ``multi`` strategy when none are given."""


DEFAULT_OVERRIDE = Override()


def validate_state(state: object) -> str:
    """Return *state* if it is exactly ``"on"`` or ``"off"``."""
    if not isinstance(state, str) or state not in SWITCH_STATES:
        raise ValidationError(
            f"Invalid state {state!r}. Expected: {' | '.join(SWITCH_STATES)}"
        )
    return state


def validate_outlets(outlets: object) -> tuple[int, ...]:
    """Return *outlets* as a tuple of non-negative ints."""
    if not isinstance(outlets, (list, tuple)) or not outlets:
        raise ValidationError("Outlets must be a non-empty list of numbers.")
    result = []
    for outlet in outlets:
        # bool is an int subclass; true/false are not outlet numbers
        if isinstance(outlet, bool) or not isinstance(outlet, int) or outlet < 0:
            raise ValidationError(f"Invalid outlet {outlet!r}.")
        result.append(outlet)
    return tuple(result)


def _switches(outlets: Iterable[int], state: str) -> dict[str, object]:
    return {"switches": [{"outlet": outlet, "switch": state} for outlet in outlets]}


class OverrideTable:
    """Lookup from device id to :class:`Override`, defaulting to plain switch."""

    def __init__(self, overrides: Mapping[str, Override] | None = None) -> None:
        self._overrides: dict[str, Override] = dict(overrides or {})

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> OverrideTable:
        overrides = {}
        for device_id, spec in raw.items():
            overrides[str(device_id)] = _parse_override(device_id, spec)
        return cls(overrides)

    @classmethod
    def from_json(cls, text: str) -> OverrideTable:
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Device overrides are not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError("Device overrides must be a JSON object.")
        return cls.from_mapping(raw)

    @classmethod
    def load(cls, source: str | None) -> OverrideTable:
        """Build a table from inline JSON, a path to a JSON file, or nothing."""
        if not source:
            return cls()
        if source.lstrip().startswith("{"):
            return cls.from_json(source)
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Device overrides file not found: {path}")
        return cls.from_json(path.read_text())

    def __len__(self) -> int:
        return len(self._overrides)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._overrides

    def resolve(self, device_id: str) -> Override:
        return self._overrides.get(device_id, DEFAULT_OVERRIDE)

    def build_params(
        self, device_id: str, state: str, outlets: Iterable[int] | None = None
    ) -> dict[str, object]:
        """Command ``params`` for *device_id*.

        Explicit *outlets* always produce the ``switches`` form.
        """
        override = self.resolve(device_id)
        if override.strategy is Strategy.PULSE:
            if outlets is not None:
                return _switches(outlets, "on")
            return {"switch": "on"}
        if outlets is not None:
            return _switches(outlets, state)
        if override.strategy is Strategy.MULTI:
            return _switches(override.outlets, state)
        return {"switch": state}


def _parse_override(device_id: object, spec: object) -> Override:
    if isinstance(spec, str):
        spec = {"strategy": spec}
    if not isinstance(spec, dict):
        raise ConfigurationError(f"Override for {device_id} must be a name or an object.")
    try:
        strategy = Strategy(spec.get("strategy", Strategy.DEFAULT.value))
    except ValueError:
        names = ", ".join(s.value for s in Strategy)
        raise ConfigurationError(
            f"Unknown strategy {spec.get('strategy')!r} for {device_id}. Expected one of: {names}"
        ) from None
    outlets = spec.get("outlets")
    if outlets is None:
        return Override(strategy)
    try:
        return Override(strategy, validate_outlets(outlets))
    except ValidationError as e:
        raise ConfigurationError(f"Override for {device_id}: {e}") from e


@dataclass
class ShadowStore:
    """Last commanded switch state for devices using the ``shadow`` strategy."""

    states: dict[str, SwitchState] = field(default_factory=dict)

    def record(self, device_id: str, params: Mapping[str, object]) -> None:
        """Remember the state commanded by *params*.

        A ``switches`` command updates only the outlets it names; a plain
        ``switch`` command replaces whatever was remembered.
        """
        switches = params.get("switches")
        if isinstance(switches, list):
            previous = self.states.get(device_id)
            merged = {}
            if isinstance(previous, list):
                merged = {s.get("outlet"): dict(s) for s in previous}
            for s in switches:
                merged[s.get("outlet")] = dict(s)
            self.states[device_id] = sorted(merged.values(), key=lambda s: s.get("outlet", 0))
        else:
            state = params.get("switch")
            self.states[device_id] = state if isinstance(state, str) else None

    def apply(self, device: Device) -> Device:
        if device.id not in self.states:
            return device
        return device.with_switch_state(self.states[device.id])

    def clear(self) -> None:
        self.states.clear()
