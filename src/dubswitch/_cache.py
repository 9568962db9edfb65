"""In-memory cache of last-known console attributes."""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from dubswitch._constants import BLOCK_COUNT, CHANNEL_COUNT, channel_id


@dataclass
class ChannelAttributes:
    """Last-known attributes of one input channel."""

    name: str | None = None
    color: Any = None
    patch: int | None = None


class AttributeCache:
    """Channel attributes and the last routing snapshot.

    Single writer (the engine's inbound path), many readers.  Readers get
    copies so a snapshot handed to a session never changes under it.
    """

    def __init__(self, channel_count: int = CHANNEL_COUNT, block_count: int = BLOCK_COUNT) -> None:
        self._channel_count = channel_count
        self._channels: dict[int, ChannelAttributes] = {}
        self._routing: list[int | None] = [None] * block_count

    def _entry(self, channel: int) -> ChannelAttributes:
        if not 1 <= channel <= self._channel_count:
            raise ValueError(f"channel must be between 1 and {self._channel_count}, got {channel}")
        entry = self._channels.get(channel)
        if entry is None:
            entry = ChannelAttributes()
            self._channels[channel] = entry
        return entry

    def set_name(self, channel: int, name: str) -> dict[str, str]:
        """Store a channel name and return the full name map."""
        self._entry(channel).name = name
        return self.names()

    def set_color(self, channel: int, color: Any) -> None:
        self._entry(channel).color = color

    def set_patch(self, channel: int, patch: int | None) -> None:
        self._entry(channel).patch = patch

    def set_routing(self, values: Sequence[int | None]) -> list[int | None]:
        """Merge a routing snapshot; missing (``None``) slots keep old values."""
        for index, value in enumerate(values[: len(self._routing)]):
            if value is not None:
                self._routing[index] = value
        return self.routing()

    def names(self) -> dict[str, str]:
        """Two-digit channel id -> name, for channels with a known name."""
        return {
            channel_id(channel): entry.name
            for channel, entry in sorted(self._channels.items())
            if entry.name is not None
        }

    def patches(self) -> dict[int, int | None]:
        return {channel: entry.patch for channel, entry in sorted(self._channels.items())}

    def channel(self, channel: int) -> ChannelAttributes:
        entry = self._channels.get(channel)
        return copy.deepcopy(entry) if entry is not None else ChannelAttributes()

    def routing(self) -> list[int | None]:
        return list(self._routing)

    @property
    def has_routing(self) -> bool:
        return any(value is not None for value in self._routing)
