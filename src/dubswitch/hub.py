"""Fan-out of engine messages to connected UI sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

_logger = logging.getLogger(__name__)


class SessionChannel(Protocol):
    """What the hub needs from a session (satisfied by aiohttp's WebSocketResponse)."""

    @property
    def closed(self) -> bool:
        ...

    async def send_str(self, data: str) -> None:
        ...


class SessionHub:
    """Tracks live sessions and delivers messages to them.

    Delivery is live only: closed sessions are skipped, nothing is queued
    for later and failed sends are not retried.
    """

    def __init__(self) -> None:
        self._sessions: list[SessionChannel] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def count(self) -> int:
        return sum(1 for session in self._sessions if not session.closed)

    def sessions(self) -> list[SessionChannel]:
        return list(self._sessions)

    def attach(self, session: SessionChannel) -> None:
        if any(existing is session for existing in self._sessions):
            return
        self._sessions.append(session)
        _logger.info("Session attached (%d active)", self.count)

    def detach(self, session: SessionChannel) -> None:
        before = len(self._sessions)
        self._sessions = [existing for existing in self._sessions if existing is not session]
        if len(self._sessions) != before:
            _logger.info("Session detached (%d active)", self.count)

    def send(self, session: SessionChannel, message: Mapping[str, Any]) -> bool:
        """Schedule delivery of *message* to one session."""
        if session.closed:
            return False
        self._schedule(session, json.dumps(message, separators=(",", ":")))
        return True

    def broadcast(self, message: Mapping[str, Any]) -> int:
        """Schedule delivery to every open session; returns the recipient count."""
        payload = json.dumps(message, separators=(",", ":"))
        delivered = 0
        for session in list(self._sessions):
            if session.closed:
                continue
            self._schedule(session, payload)
            delivered += 1
        return delivered

    async def drain(self) -> None:
        """Wait for scheduled sends to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, session: SessionChannel, payload: str) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(session, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, session: SessionChannel, payload: str) -> None:
        if session.closed:
            return
        try:
            await session.send_str(payload)
        except (ConnectionError, RuntimeError) as exc:
            _logger.debug("Session send failed: %s", exc)
        except Exception:
            _logger.exception("Unexpected error sending to session")
