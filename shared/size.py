from __future__ import annotations

import math
import re

_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024 ** 2,
    "g": 1024 ** 3,
    "t": 1024 ** 4,
}

_READABLE_SIZE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([bkmgt])?$")


def parse_size(size: str) -> str:
    """Convert a human size ("10g", "512m", "1024") into a byte count string."""
    text = str(size or "").strip().lower()
    if not text:
        return ""

    match = _READABLE_SIZE.match(text)
    if not match:
        raise ValueError(f"Unrecognized size value {size}")

    value, unit = match.groups()
    multiplier = _UNITS[unit or "b"]
    return str(int(float(value) * multiplier))


def convert_size(size: str) -> tuple[str, str]:
    """Return (bytes, whole GiB rounded up) for a human size string."""
    size_bytes = parse_size(size) or "0"
    size_gb = math.ceil(int(size_bytes) / _UNITS["g"])
    return size_bytes, str(size_gb)
