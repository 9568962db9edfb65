"""Single-slot registry of the controlled device's network address."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

_logger = logging.getLogger(__name__)

#: ``listener(new_address, previous_address, reason)``
AddressListener = Callable[[str, str | None, str], None]


class DeviceRegistry:
    """Owns the current device address.

    All mutation goes through :meth:`update` so the change side effects
    (re-sync, watchdog reset) run exactly once per genuine change.  The
    most recently observed replying address always wins.
    """

    def __init__(self, address: str | None = None) -> None:
        self._address = address
        self._version = 0
        self._listeners: list[AddressListener] = []
        self._waiters: list[asyncio.Event] = []

    def current_address(self) -> str | None:
        return self._address

    @property
    def version(self) -> int:
        """Number of genuine address changes so far."""
        return self._version

    def add_listener(self, listener: AddressListener) -> None:
        self._listeners.append(listener)

    def update(self, new_address: str, reason: str = "discovery") -> bool:
        """Register *new_address*; returns ``True`` when it changed."""
        if not new_address:
            return False
        if new_address == self._address:
            _logger.debug("Device address unchanged (%s, reason=%s)", new_address, reason)
            return False

        previous = self._address
        self._address = new_address
        self._version += 1
        _logger.info("Device address %s -> %s (reason=%s)", previous, new_address, reason)

        for listener in list(self._listeners):
            try:
                listener(new_address, previous, reason)
            except Exception:
                _logger.exception("Device address listener failed")

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.set()
        return True

    async def wait_for_change(self, timeout: float, *, baseline: int | None = None) -> bool:
        """Wait until the address changes after *baseline* (default: now).

        Returns ``False`` on timeout.
        """
        start = self._version if baseline is None else baseline
        if self._version != start:
            return True
        if timeout <= 0:
            return False

        waiter = asyncio.Event()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter.wait(), timeout)
            return True
        except TimeoutError:
            return False
        finally:
            self._waiters = [cand for cand in self._waiters if cand is not waiter]
