from __future__ import annotations

import re

from .errors import MalformedInput

_SEPARATORS = re.compile(r"[\s:\-.]+")
_HEX = re.compile(r"^[0-9a-fA-F]+$")


def normalize(native_id: str) -> str:
    """Hardware id without separators, upper-case ("60:01:94:cc:5e:44" -> "600194CC5E44")."""
    s = _SEPARATORS.sub("", str(native_id or ""))
    if not s:
        raise MalformedInput("empty device identifier")
    if not _HEX.match(s):
        raise MalformedInput(f"device identifier is not hex: {native_id!r}")
    if len(s) > 16:
        raise MalformedInput(f"device identifier longer than 8 bytes: {native_id!r}")
    return s.upper()


def to_ieee_address(native_id: str) -> str:
    # Z2M expects a 64-bit IEEE address: MACs are left-padded with zeros.
    return "0x" + normalize(native_id).lower().rjust(16, "0")


def to_network_address(native_id: str) -> int:
    s = normalize(native_id)
    if len(s) < 4:
        raise MalformedInput(f"device identifier shorter than 2 bytes: {native_id!r}")
    return int(s[-4:], 16)
