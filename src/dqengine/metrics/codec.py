"""State serialization.

Every persistable state type registers itself under a stable type name.
Encoded states are plain JSON-compatible envelopes::

    {"type": "mean", "version": 1, "data": {"total": 60.0, "count": 3}}

Envelopes of types this process does not know about can be carried
around untouched; only ``decode_state`` needs the type to be registered.

JSON has no literal for NaN or the infinities, so payloads write non-finite
floats as the strings ``"nan"``, ``"inf"`` and ``"-inf"`` (``json_float``);
``float()`` reads them back.
"""

from __future__ import annotations

import binascii
import math
from typing import Any, TypeVar

from dqengine.core.errors import ConfigurationError, StoreCorruptionError

STATE_FORMAT_VERSION = 1

_STATE_TYPES: dict[str, type[Any]] = {}

T = TypeVar("T", bound=type)


def register_state(cls: T) -> T:
    """Class decorator registering a state type under ``cls.state_type``."""
    name = cls.state_type  # type: ignore[attr-defined]
    existing = _STATE_TYPES.get(name)
    if existing is not None and existing is not cls:
        raise ConfigurationError(f"State type name already registered: {name}")
    _STATE_TYPES[name] = cls
    return cls


def json_float(value: float | None) -> float | str | None:
    if value is None or math.isfinite(value):
        return value
    return str(value)


def registered_state_types() -> list[str]:
    _load_builtin_states()
    return sorted(_STATE_TYPES)


def encode_state(state: Any) -> dict[str, Any]:
    """Encode a registered state into a versioned envelope."""
    name = getattr(state, "state_type", None)
    if name is None or name not in _STATE_TYPES:
        raise ConfigurationError(f"Unregistered state type: {type(state).__name__}")
    return {"type": name, "version": STATE_FORMAT_VERSION, "data": state.to_payload()}


def decode_state(envelope: dict[str, Any]) -> Any:
    """Decode an envelope produced by ``encode_state``.

    Raises:
        StoreCorruptionError: the envelope is malformed, of an unknown type
            or version, or its payload cannot be decoded.
    """
    _load_builtin_states()
    try:
        name = envelope["type"]
        version = envelope["version"]
        data = envelope["data"]
    except (KeyError, TypeError) as e:
        raise StoreCorruptionError(f"Malformed state envelope: {e!r}") from e

    cls = _STATE_TYPES.get(name)
    if cls is None:
        raise StoreCorruptionError(f"Unknown state type: {name}")
    if version != STATE_FORMAT_VERSION:
        raise StoreCorruptionError(f"Unsupported version {version} for state type {name}")

    try:
        return cls.from_payload(data)
    except (KeyError, TypeError, ValueError, binascii.Error, ConfigurationError) as e:
        raise StoreCorruptionError(f"Cannot decode {name} state: {e}") from e


def _load_builtin_states() -> None:
    # Importing the modules registers their state types
    from dqengine.metrics import state as _state  # noqa: F401
    from dqengine.sketches import hyperloglog as _hll  # noqa: F401
    from dqengine.sketches import kll as _kll  # noqa: F401
    from dqengine.sketches import reservoir as _reservoir  # noqa: F401
