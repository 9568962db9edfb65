from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from dubswitch.config import DubswitchConfig


@dataclass
class FakeTransport:
    """Records every send instead of touching the network."""

    sent: list[tuple[str, list[Any], tuple[str, int]]] = field(default_factory=list)

    def send(self, address: str, args: Sequence[Any], destination: tuple[str, int]) -> None:
        self.sent.append((address, list(args), destination))

    def addresses(self, destination: str | None = None) -> list[str]:
        return [address for address, _args, dest in self.sent if destination is None or dest[0] == destination]

    def clear(self) -> None:
        self.sent.clear()


@dataclass
class FakeSession:
    """Stands in for an aiohttp WebSocketResponse."""

    frames: list[str] = field(default_factory=list)
    closed: bool = False

    async def send_str(self, data: str) -> None:
        self.frames.append(data)

    def messages(self, message_type: str | None = None) -> list[dict[str, Any]]:
        decoded = [json.loads(frame) for frame in self.frames]
        if message_type is None:
            return decoded
        return [message for message in decoded if message.get("type") == message_type]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_session() -> Callable[[], FakeSession]:
    return FakeSession


@pytest.fixture
def fast_config(tmp_path: Path) -> DubswitchConfig:
    return DubswitchConfig(
        data_dir=tmp_path,
        query_timeout=0.05,
        discovery_timeout=0.05,
        keepalive_interval=60.0,
        resync_delay=0.01,
        refresh_delay=0.01,
        restart_delay=0.01,
    )
