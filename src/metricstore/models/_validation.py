"""Shared validation helpers for frozen dataclass models.

Private module -- not part of the public API. Used by ``__post_init__``
methods in sibling model modules so invalid instances never escape the
constructor.
"""

from __future__ import annotations

import math
from typing import Any


_INT64_MIN: int = -(2**63)
_INT64_MAX: int = 2**63 - 1


def validate_name(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")
    if not value:
        raise ValueError(f"{name} must not be empty")


def validate_int64(value: Any, name: str) -> None:
    """Raise if *value* is not an ``int`` (``bool`` excluded) within BIGINT range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"{name} is out of the signed 64-bit range")


def validate_float(value: Any, name: str) -> None:
    """Raise if *value* is not a finite real number (``bool`` excluded).

    ``int`` is accepted and later stored as DOUBLE PRECISION.
    """
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise TypeError(f"{name} must be a float, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite")
