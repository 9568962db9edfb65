from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from dubswitch._constants import ROUTING_ADDRESSES
from dubswitch._normalize import safe_int
from dubswitch.correlation import CorrelationEngine, QueryOutcome, QueryResult
from dubswitch.exceptions import NoDeviceError
from dubswitch.registry import DeviceRegistry

if TYPE_CHECKING:
    from conftest import FakeTransport


def _engine(transport: FakeTransport, address: str | None = "10.0.0.5", timeout: float = 0.05) -> CorrelationEngine:
    return CorrelationEngine(
        transport=transport,
        registry=DeviceRegistry(address),
        device_port=10023,
        timeout=timeout,
    )


@pytest.mark.asyncio
async def test_issue_sends_one_empty_read_per_part(transport: FakeTransport) -> None:
    engine = _engine(transport)

    query_id = engine.issue(ROUTING_ADDRESSES, lambda _result: None)

    assert query_id is not None
    assert engine.is_pending(query_id)
    assert transport.sent == [(address, [], ("10.0.0.5", 10023)) for address in ROUTING_ADDRESSES]
    engine.cancel_all()
    assert engine.pending_count == 0


@pytest.mark.asyncio
async def test_full_match_resolves_exactly_once(transport: FakeTransport) -> None:
    engine = _engine(transport)
    results: list[QueryResult] = []

    engine.issue(ROUTING_ADDRESSES, results.append, coerce=safe_int)
    # Replies arrive out of order.
    for address, value in zip(reversed(ROUTING_ADDRESSES), (23, 22, 21, 20), strict=True):
        engine.feed(address, [value])

    assert len(results) == 1
    assert results[0].outcome == QueryOutcome.FULFILLED
    assert results[0].complete
    assert results[0].values == (20, 21, 22, 23)
    assert engine.pending_count == 0

    # A duplicate reply and the timer window passing must not resolve again.
    assert engine.feed(ROUTING_ADDRESSES[0], [1]) == 0
    await asyncio.sleep(0.1)
    assert len(results) == 1


@pytest.mark.asyncio
async def test_timeout_yields_partial_values(transport: FakeTransport) -> None:
    engine = _engine(transport)
    results: list[QueryResult] = []

    engine.issue(ROUTING_ADDRESSES, results.append, coerce=safe_int)
    for address, value in zip(ROUTING_ADDRESSES[:3], (20, 1, 22), strict=True):
        engine.feed(address, [value])
    assert results == []

    await asyncio.sleep(0.1)

    assert len(results) == 1
    assert results[0].outcome == QueryOutcome.TIMED_OUT
    assert not results[0].complete
    assert results[0].values == (20, 1, 22, None)


@pytest.mark.asyncio
async def test_late_reply_after_timeout_is_ignored(transport: FakeTransport) -> None:
    engine = _engine(transport)
    results: list[QueryResult] = []

    engine.issue([ROUTING_ADDRESSES[0]], results.append)
    await asyncio.sleep(0.1)
    assert [result.outcome for result in results] == [QueryOutcome.TIMED_OUT]

    assert engine.feed(ROUTING_ADDRESSES[0], [20]) == 0
    assert len(results) == 1


@pytest.mark.asyncio
async def test_reply_fills_every_matching_pending_query(transport: FakeTransport) -> None:
    engine = _engine(transport)
    first: list[QueryResult] = []
    second: list[QueryResult] = []

    engine.issue(["/xinfo"], first.append)
    engine.issue(["/xinfo"], second.append)

    assert engine.feed("/xinfo", ["10.0.0.5", "X32", "X32", "4.06"]) == 2
    assert first[0].values == ("10.0.0.5",)
    assert second[0].values == ("10.0.0.5",)


@pytest.mark.asyncio
async def test_reply_without_arguments_fills_nothing(transport: FakeTransport) -> None:
    engine = _engine(transport)
    engine.issue(["/ch/01/config/name"], lambda _result: None)

    assert engine.feed("/ch/01/config/name", []) == 0
    assert engine.pending_count == 1
    engine.cancel_all()


@pytest.mark.asyncio
async def test_tagged_arguments_are_unwrapped_and_coerced(transport: FakeTransport) -> None:
    engine = _engine(transport)
    results: list[QueryResult] = []

    engine.issue(ROUTING_ADDRESSES[:2], results.append, coerce=safe_int)
    engine.feed(ROUTING_ADDRESSES[0], [{"type": "i", "value": 21}])
    engine.feed(ROUTING_ADDRESSES[1], ["3"])

    assert results[0].values == (21, 3)


@pytest.mark.asyncio
async def test_issue_without_device_is_dropped(transport: FakeTransport) -> None:
    engine = _engine(transport, address=None)
    results: list[QueryResult] = []

    assert engine.issue(ROUTING_ADDRESSES, results.append) is None
    assert transport.sent == []
    assert engine.pending_count == 0
    await asyncio.sleep(0.1)
    assert results == []


@pytest.mark.asyncio
async def test_explicit_destination_overrides_registry(transport: FakeTransport) -> None:
    engine = _engine(transport, address=None)

    engine.issue(["/xinfo"], lambda _result: None, destination="192.168.1.40")

    assert transport.sent == [("/xinfo", [], ("192.168.1.40", 10023))]
    engine.cancel_all()


@pytest.mark.asyncio
async def test_failing_sink_does_not_break_feed(transport: FakeTransport) -> None:
    engine = _engine(transport)
    results: list[QueryResult] = []

    def _broken(_result: QueryResult) -> None:
        raise RuntimeError("boom")

    engine.issue(["/xinfo"], _broken)
    engine.issue(["/xinfo"], results.append)

    assert engine.feed("/xinfo", ["10.0.0.5"]) == 2
    assert len(results) == 1
    assert engine.pending_count == 0


@pytest.mark.asyncio
async def test_request_awaits_result(transport: FakeTransport) -> None:
    engine = _engine(transport)

    task = asyncio.create_task(engine.request(["/ch/01/config/name"]))
    await asyncio.sleep(0)
    engine.feed("/ch/01/config/name", ["Kick"])

    result = await task
    assert result.complete
    assert result.values == ("Kick",)


@pytest.mark.asyncio
async def test_request_without_device_raises(transport: FakeTransport) -> None:
    engine = _engine(transport, address=None)

    with pytest.raises(NoDeviceError):
        await engine.request(ROUTING_ADDRESSES)
