"""Human-readable byte sizes.

Sizes in configuration are written as strings such as ``"64MB"``,
``"5 GiB"`` or ``"1024"``. Decimal and binary suffixes are both read as
powers of 1024, matching how object stores document part limits.
"""

from __future__ import annotations

import re

from object_transfer.domain.exceptions import InvalidArgumentError


KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB
TIB = 1024 * GIB

_UNITS = {
    "": 1,
    "B": 1,
    "K": KIB,
    "KB": KIB,
    "KIB": KIB,
    "M": MIB,
    "MB": MIB,
    "MIB": MIB,
    "G": GIB,
    "GB": GIB,
    "GIB": GIB,
    "T": TIB,
    "TB": TIB,
    "TIB": TIB,
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")

_LABELS = ["B", "KB", "MB", "GB", "TB", "PB"]


def parse_size(value: str | int) -> int:
    """Parse a size string into a byte count.

    Args:
        value: Integer byte count or a string like ``"5MB"``.

    Returns:
        Size in bytes.

    Raises:
        InvalidArgumentError: If the value cannot be parsed or is negative.

    Example:
        >>> parse_size("64MB")
        67108864
    """
    if isinstance(value, bool):
        raise InvalidArgumentError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise InvalidArgumentError(f"Size cannot be negative: {value}")
        return value

    match = _SIZE_RE.match(value)
    if not match:
        raise InvalidArgumentError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    multiplier = _UNITS.get(unit.upper())
    if multiplier is None:
        raise InvalidArgumentError(f"Unknown size unit {unit!r} in {value!r}")
    return int(float(number) * multiplier)


def format_bytes(size: float) -> str:
    """Format a byte count for display, e.g. ``12.00 MB``."""
    if size < KIB:
        return f"{int(size)} B"
    value = float(size)
    index = 0
    while value >= KIB and index < len(_LABELS) - 1:
        value /= KIB
        index += 1
    return f"{value:.2f} {_LABELS[index]}"


def format_rate(bytes_per_second: float) -> str:
    """Format a throughput figure, e.g. ``3.50 MB/s``."""
    return f"{format_bytes(max(bytes_per_second, 0.0))}/s"
