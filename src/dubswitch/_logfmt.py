"""Helpers for compact debug logging.

Every datagram to and from the console is logged at DEBUG level.  OSC
arguments can carry blobs and long strings, so this module shortens them
before they reach the log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def summarize_args(value: Any, *, max_string: int = 64, _depth: int = 0) -> Any:
    """Return a shortened copy of *value* suitable for debug logs."""
    if _depth > 8:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<blob:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(k): summarize_args(v, max_string=max_string, _depth=_depth + 1) for k, v in value.items()
        }

    if isinstance(value, Sequence):
        return [summarize_args(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
