"""Stable 64-bit hashing of column values.

Python's built-in ``hash`` is salted per process, so sketches that are
persisted and merged across runs need their own hash. Values are first
mapped to a canonical byte encoding (tagged by type, so ``"1"`` and ``1``
never collide) and then hashed with keyed BLAKE2b truncated to 8 bytes.
"""

from __future__ import annotations

import hashlib
import struct
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

_MASK_64 = (1 << 64) - 1


def canonical_bytes(value: Any) -> bytes:
    """Type-tagged byte encoding of a scalar value."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return b"b\x01" if value else b"b\x00"
    if isinstance(value, int):
        return b"i" + str(value).encode("ascii")
    if isinstance(value, float):
        if value.is_integer():
            return b"i" + str(int(value)).encode("ascii")
        return b"f" + struct.pack(">d", value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return b"i" + str(int(value)).encode("ascii")
        return b"d" + str(value.normalize()).encode("ascii")
    if isinstance(value, str):
        return b"s" + value.encode("utf-8")
    if isinstance(value, bytes | bytearray | memoryview):
        return b"x" + bytes(value)
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return b"t" + value.isoformat().encode("ascii")
    if isinstance(value, date):
        return b"D" + value.isoformat().encode("ascii")
    if isinstance(value, time):
        return b"T" + value.isoformat().encode("ascii")
    if isinstance(value, uuid.UUID):
        return b"u" + value.bytes
    return b"r" + repr(value).encode("utf-8")


def hash64(value: Any, seed: int = 0) -> int:
    """Seeded, process-independent 64-bit hash of a value."""
    key = (seed & _MASK_64).to_bytes(8, "little")
    digest = hashlib.blake2b(canonical_bytes(value), digest_size=8, key=key).digest()
    return int.from_bytes(digest, "big")
