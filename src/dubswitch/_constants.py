"""Internal constants shared across the library."""

from __future__ import annotations

import re

DEVICE_OSC_PORT = 10023
LOCAL_OSC_PORT = 9001
DEFAULT_HTTP_PORT = 3000
GLOBAL_BROADCAST = "255.255.255.255"

CHANNEL_COUNT = 32
INFO_ADDRESS = "/xinfo"

MATRIX_FILENAME = "matrix.json"
PORT_FILENAME = "server.port"

# ------------------------------------------------------------------
# Routing blocks  (one per group of 8 input channels)
# ------------------------------------------------------------------

ROUTING_ADDRESSES: tuple[str, ...] = (
    "/config/routing/IN/1-8",
    "/config/routing/IN/9-16",
    "/config/routing/IN/17-24",
    "/config/routing/IN/25-32",
)
BLOCK_COUNT = len(ROUTING_ADDRESSES)

#: Routing value that selects the user-routable inputs for each block.
USER_IN_VALUES: tuple[int, ...] = (20, 21, 22, 23)
#: Routing value that selects the local preamps for each block.
LOCAL_IN_VALUES: tuple[int, ...] = (0, 1, 2, 3)

# ------------------------------------------------------------------
# Per-channel attribute addresses
# ------------------------------------------------------------------

NAME_RE = re.compile(r"^/ch/(\d{2})/config/name$")
COLOR_RE = re.compile(r"^/ch/(\d{2})/config/color$")
USER_PATCH_RE = re.compile(r"^/config/userrout/in/(\d{2})$")
_TRAILING_NUMBER_RE = re.compile(r"/(\d+)$")


def channel_id(channel: int) -> str:
    """Two-digit, zero-padded channel id (``7`` -> ``"07"``)."""
    return f"{channel:02d}"


def name_address(channel: int) -> str:
    return f"/ch/{channel_id(channel)}/config/name"


def color_address(channel: int) -> str:
    return f"/ch/{channel_id(channel)}/config/color"


def user_patch_address(channel: int) -> str:
    return f"/config/userrout/in/{channel_id(channel)}"


def pad_trailing_channel(address: str) -> str:
    """Zero-pad a trailing channel number to two digits.

    ``/config/userrout/in/5`` becomes ``/config/userrout/in/05``.  Only a
    number forming the whole last path segment is padded, so
    ``/config/routing/IN/1-8`` is left alone.
    """
    return _TRAILING_NUMBER_RE.sub(lambda m: "/" + m.group(1).zfill(2), address)


# ------------------------------------------------------------------
# User patch source ranges  (value -> input family)
# ------------------------------------------------------------------

LOCAL_RANGE = range(1, 33)
AES50A_RANGE = range(33, 81)
AES50B_RANGE = range(81, 129)
DAW_RANGE = range(129, 161)
