"""Data models for session messages and HTTP payloads."""

from dubswitch.models._base import DubswitchModel
from dubswitch.models.messages import (
    ChannelNames,
    ClpMessage,
    ClpReply,
    GetMatrixMessage,
    LoadRoutingMessage,
    MatrixSnapshot,
    MatrixUpdate,
    PingMessage,
    PingNotice,
    RoutingUpdate,
    SessionMessage,
    SetDeviceIpMessage,
    SetMatrixMessage,
    ToggleInputsBlockMessage,
    ToggleInputsMessage,
    parse_session_message,
)
from dubswitch.models.sources import PatchSource, SourceKind, classify_patch
from dubswitch.models.status import ProbeCounters, StatusSnapshot

__all__ = [
    "ChannelNames",
    "ClpMessage",
    "ClpReply",
    "DubswitchModel",
    "GetMatrixMessage",
    "LoadRoutingMessage",
    "MatrixSnapshot",
    "MatrixUpdate",
    "PatchSource",
    "PingMessage",
    "PingNotice",
    "ProbeCounters",
    "RoutingUpdate",
    "SessionMessage",
    "SetDeviceIpMessage",
    "SetMatrixMessage",
    "SourceKind",
    "StatusSnapshot",
    "ToggleInputsBlockMessage",
    "ToggleInputsMessage",
    "classify_patch",
    "parse_session_message",
]
