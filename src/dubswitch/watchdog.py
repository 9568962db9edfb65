"""Periodic keep-alive probing of the registered device."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass

from dubswitch._constants import INFO_ADDRESS
from dubswitch.correlation import CorrelationEngine, QueryResult
from dubswitch.registry import DeviceRegistry

_logger = logging.getLogger(__name__)


@dataclass
class ProbeStats:
    sent: int = 0
    answered: int = 0
    missed: int = 0
    resets: int = 0
    last_answer_at: float | None = None

    def as_dict(self) -> dict[str, int | float | None]:
        return {
            "sent": self.sent,
            "answered": self.answered,
            "missed": self.missed,
            "resets": self.resets,
            "lastAnswerAt": self.last_answer_at,
        }


class LivenessWatchdog:
    """Sends a one-part ``/xinfo`` query to the device every *interval* seconds.

    The reply itself is handled by the discovery path, which re-confirms the
    registry or migrates it when the answer comes from a new address.  The
    watchdog only keeps the probe going and counts answers and misses.
    """

    def __init__(
        self,
        *,
        correlator: CorrelationEngine,
        registry: DeviceRegistry,
        interval: float = 5.0,
    ) -> None:
        self._correlator = correlator
        self._registry = registry
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self.stats = ProbeStats()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        """Restart the interval from now."""
        self._cancel()
        self.stats.resets += 1
        self._task = asyncio.get_running_loop().create_task(self._run())
        _logger.debug("Keep-alive interval reset (every %.1fs)", self._interval)

    async def stop(self) -> None:
        task = self._task
        self._cancel()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def probe(self) -> int | None:
        address = self._registry.current_address()
        if address is None:
            return None
        query_id = self._correlator.issue([INFO_ADDRESS], self._on_result, destination=address)
        if query_id is not None:
            self.stats.sent += 1
        return query_id

    def _cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.probe()

    def _on_result(self, result: QueryResult) -> None:
        if result.complete:
            self.stats.answered += 1
            self.stats.last_answer_at = time.time()
            return
        self.stats.missed += 1
        _logger.warning("Device %s did not answer keep-alive probe", self._registry.current_address())
