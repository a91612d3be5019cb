from __future__ import annotations

import os
import time
import uuid

_VERSION_BITS = 0x7 << 76
_VARIANT_BITS = 0x2 << 62


def generate_uuid7() -> str:
    """
    Time-ordered UUIDv7 string, used as the primary key of ledger rows
    and audit events so that ids sort in creation order.

    Layout: 48-bit Unix ms timestamp | version 7 | 12 random bits |
    variant 0b10 | 62 random bits.
    """
    ts_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")
    rand_a = (rand >> 62) & 0xFFF
    rand_b = rand & ((1 << 62) - 1)
    value = (ts_ms & ((1 << 48) - 1)) << 80 | _VERSION_BITS | rand_a << 64 | _VARIANT_BITS | rand_b
    return str(uuid.UUID(int=value))


def uuid7_timestamp_ms(value: str) -> int:
    """Return the millisecond timestamp embedded in a UUIDv7 string."""
    return uuid.UUID(value).int >> 80
