"""Session protocol messages (JSON records over the WebSocket).

Inbound messages are parsed into a discriminated union keyed by ``type``;
outbound messages are small models serialized with :meth:`to_wire`.
"""

from __future__ import annotations

import ipaddress
import json
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from dubswitch._constants import BLOCK_COUNT
from dubswitch.exceptions import InvalidMessageError
from dubswitch.models._base import DubswitchModel

# ------------------------------------------------------------------
# Inbound (session -> engine)
# ------------------------------------------------------------------


class LoadRoutingMessage(DubswitchModel):
    type: Literal["load_routing"]


class SetDeviceIpMessage(DubswitchModel):
    """Manual device address override (``set_x32_ip``)."""

    type: Literal["set_x32_ip"]
    ip: str

    @field_validator("ip")
    @classmethod
    def _validate_ip(cls, value: str) -> str:
        text = value.strip()
        try:
            return str(ipaddress.IPv4Address(text))
        except ValueError as exc:
            raise ValueError(f"not an IPv4 address: {value!r}") from exc


class ToggleInputsMessage(DubswitchModel):
    """Routing value for every block, in block order."""

    type: Literal["toggle_inputs"]
    targets: list[int] = Field(min_length=BLOCK_COUNT, max_length=BLOCK_COUNT)


class ToggleInputsBlockMessage(DubswitchModel):
    type: Literal["toggle_inputs_block"]
    block: int = Field(ge=0, lt=BLOCK_COUNT)
    target: int


class ClpMessage(DubswitchModel):
    """Generic passthrough: empty ``args`` is a read, otherwise a write."""

    type: Literal["clp"]
    address: str
    args: list[Any] = Field(default_factory=list)

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"address must start with '/': {value!r}")
        return value


class PingMessage(DubswitchModel):
    type: Literal["ping"]


class GetMatrixMessage(DubswitchModel):
    type: Literal["get_matrix"]


class SetMatrixMessage(DubswitchModel):
    type: Literal["set_matrix"]
    matrix: dict[str, Any]


SessionMessage = Annotated[
    LoadRoutingMessage
    | SetDeviceIpMessage
    | ToggleInputsMessage
    | ToggleInputsBlockMessage
    | ClpMessage
    | PingMessage
    | GetMatrixMessage
    | SetMatrixMessage,
    Field(discriminator="type"),
]

_SESSION_MESSAGE_ADAPTER: TypeAdapter[SessionMessage] = TypeAdapter(SessionMessage)


def parse_session_message(raw: str | bytes) -> SessionMessage:
    """Parse one session frame.

    Raises :class:`InvalidMessageError` for unparseable JSON, unknown
    ``type`` values and field validation failures.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidMessageError(f"invalid JSON: {exc.msg}", raw=text[:200]) from exc
    if not isinstance(data, dict):
        raise InvalidMessageError("message must be a JSON object", raw=text[:200])
    try:
        return _SESSION_MESSAGE_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise InvalidMessageError(
            f"invalid {data.get('type')!r} message: {exc.error_count()} error(s)",
            raw=text[:200],
        ) from exc


# ------------------------------------------------------------------
# Outbound (engine -> session)
# ------------------------------------------------------------------


class PingNotice(DubswitchModel):
    type: Literal["ping"] = "ping"
    sender: str = Field(alias="from")


class RoutingUpdate(DubswitchModel):
    """Routing snapshot; ``None`` marks a block that did not answer."""

    type: Literal["routing"] = "routing"
    values: list[int | None]


class ChannelNames(DubswitchModel):
    type: Literal["channel_names"] = "channel_names"
    names: dict[str, str]


class ClpReply(DubswitchModel):
    type: Literal["clp"] = "clp"
    address: str
    args: list[Any]


class MatrixUpdate(DubswitchModel):
    type: Literal["matrix_update"] = "matrix_update"
    matrix: dict[str, Any]


class MatrixSnapshot(DubswitchModel):
    type: Literal["matrix"] = "matrix"
    matrix: dict[str, Any]
