"""Multi-part query correlation.

The console answers every read with an unsolicited-looking message on the
same address pattern; there is no request id on the wire.  Each logical
query is therefore tracked as a :class:`PendingQuery` holding the address
patterns it expects.  Every inbound message is offered to every pending
query and fills each unfilled slot whose pattern matches exactly.

A query resolves exactly once: either when all slots are filled or when
its timer fires, in which case the sink receives the partial values with
``None`` for the missing slots.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from dubswitch._transport import Transport, unwrap_arg
from dubswitch.exceptions import NoDeviceError
from dubswitch.registry import DeviceRegistry

_logger = logging.getLogger(__name__)


class QueryOutcome(enum.StrEnum):
    FULFILLED = "fulfilled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Terminal result of one query, always shaped like its parts."""

    query_id: int
    parts: tuple[str, ...]
    values: tuple[Any, ...]
    outcome: QueryOutcome

    @property
    def complete(self) -> bool:
        return self.outcome == QueryOutcome.FULFILLED


QuerySink = Callable[[QueryResult], None]


@dataclass(slots=True)
class PendingQuery:
    """Mutable in-flight state of one query, owned by the engine."""

    id: int
    parts: tuple[str, ...]
    sink: QuerySink
    deadline: float
    coerce: Callable[[Any], Any] | None = None
    values: list[Any] = field(default_factory=list)
    filled: list[bool] = field(default_factory=list)
    fulfilled: int = 0
    timer: asyncio.TimerHandle | None = None

    def __post_init__(self) -> None:
        self.values = [None] * len(self.parts)
        self.filled = [False] * len(self.parts)

    @property
    def is_complete(self) -> bool:
        return self.fulfilled == len(self.parts)

    def offer(self, address: str, args: Sequence[Any]) -> int:
        """Fill every unfilled slot matching *address*; returns slots filled."""
        if not args:
            return 0
        matched = 0
        for index, pattern in enumerate(self.parts):
            if self.filled[index] or pattern != address:
                continue
            value = unwrap_arg(args[0])
            if self.coerce is not None:
                value = self.coerce(value)
            self.values[index] = value
            self.filled[index] = True
            self.fulfilled += 1
            matched += 1
        return matched

    def result(self, outcome: QueryOutcome) -> QueryResult:
        return QueryResult(
            query_id=self.id,
            parts=self.parts,
            values=tuple(self.values),
            outcome=outcome,
        )


class CorrelationEngine:
    """Issues multi-part reads and matches replies back to them."""

    def __init__(
        self,
        *,
        transport: Transport,
        registry: DeviceRegistry,
        device_port: int,
        timeout: float = 2.0,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._device_port = device_port
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingQuery] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, query_id: int) -> bool:
        return query_id in self._pending

    def issue(
        self,
        parts: Sequence[str],
        sink: QuerySink,
        *,
        destination: str | None = None,
        timeout: float | None = None,
        coerce: Callable[[Any], Any] | None = None,
    ) -> int | None:
        """Send one read per part and track the replies.

        Returns the query id, or ``None`` when no destination is known (the
        read is dropped and the sink is never called).
        """
        target = destination or self._registry.current_address()
        if target is None:
            _logger.warning("Query dropped, no device address known parts=%s", list(parts))
            return None

        loop = asyncio.get_running_loop()
        effective_timeout = self._timeout if timeout is None else timeout
        query = PendingQuery(
            id=next(self._ids),
            parts=tuple(parts),
            sink=sink,
            deadline=loop.time() + effective_timeout,
            coerce=coerce,
        )
        self._pending[query.id] = query
        query.timer = loop.call_later(effective_timeout, self._expire, query.id)

        for part in query.parts:
            self._transport.send(part, [], (target, self._device_port))
        _logger.debug("Query %d issued to %s parts=%d", query.id, target, len(query.parts))
        return query.id

    def feed(self, address: str, args: Sequence[Any]) -> int:
        """Offer one inbound message to every pending query."""
        total = 0
        completed: list[PendingQuery] = []
        for query in list(self._pending.values()):
            matched = query.offer(address, args)
            if not matched:
                continue
            total += matched
            if query.is_complete:
                completed.append(query)

        for query in completed:
            self._resolve(query, QueryOutcome.FULFILLED)
        return total

    async def request(
        self,
        parts: Sequence[str],
        *,
        destination: str | None = None,
        timeout: float | None = None,
        coerce: Callable[[Any], Any] | None = None,
    ) -> QueryResult:
        """Issue a query and wait for its single resolution.

        Raises :class:`NoDeviceError` when no destination is known.
        """
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[QueryResult] = loop.create_future()

        def _sink(result: QueryResult) -> None:
            if not fut.done():
                fut.set_result(result)

        query_id = self.issue(parts, _sink, destination=destination, timeout=timeout, coerce=coerce)
        if query_id is None:
            raise NoDeviceError("No device address known")
        return await fut

    def cancel_all(self) -> None:
        """Drop every pending query without resolving it (shutdown only)."""
        for query in self._pending.values():
            if query.timer is not None:
                query.timer.cancel()
        self._pending.clear()

    def _expire(self, query_id: int) -> None:
        query = self._pending.get(query_id)
        if query is None:
            return
        _logger.debug(
            "Query %d timed out with %d/%d parts",
            query_id,
            query.fulfilled,
            len(query.parts),
        )
        self._resolve(query, QueryOutcome.TIMED_OUT)

    def _resolve(self, query: PendingQuery, outcome: QueryOutcome) -> None:
        # Removal from the pending table is what guarantees a single resolution.
        if self._pending.pop(query.id, None) is None:
            return
        if query.timer is not None:
            query.timer.cancel()
            query.timer = None
        try:
            query.sink(query.result(outcome))
        except Exception:
            _logger.exception("Query %d sink failed", query.id)
