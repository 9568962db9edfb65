from __future__ import annotations

import asyncio

import pytest

from dubswitch.registry import DeviceRegistry


def test_update_same_address_is_noop() -> None:
    registry = DeviceRegistry("10.0.0.5")
    calls: list[tuple[str, str | None, str]] = []
    registry.add_listener(lambda new, old, reason: calls.append((new, old, reason)))

    assert registry.update("10.0.0.5") is False
    assert registry.update("") is False
    assert calls == []
    assert registry.version == 0


def test_update_new_address_notifies_once() -> None:
    registry = DeviceRegistry()
    calls: list[tuple[str, str | None, str]] = []
    registry.add_listener(lambda new, old, reason: calls.append((new, old, reason)))

    assert registry.update("10.0.0.5", reason="initial-discovery") is True
    assert registry.update("10.0.0.6", reason="discovery-reply") is True

    assert registry.current_address() == "10.0.0.6"
    assert registry.version == 2
    assert calls == [
        ("10.0.0.5", None, "initial-discovery"),
        ("10.0.0.6", "10.0.0.5", "discovery-reply"),
    ]


def test_failing_listener_does_not_block_others() -> None:
    registry = DeviceRegistry()
    seen: list[str] = []

    def _broken(_new: str, _old: str | None, _reason: str) -> None:
        raise RuntimeError("boom")

    registry.add_listener(_broken)
    registry.add_listener(lambda new, _old, _reason: seen.append(new))

    assert registry.update("10.0.0.5") is True
    assert seen == ["10.0.0.5"]


@pytest.mark.asyncio
async def test_wait_for_change_wakes_on_update() -> None:
    registry = DeviceRegistry()

    waiter = asyncio.create_task(registry.wait_for_change(1.0))
    await asyncio.sleep(0)
    registry.update("10.0.0.5")

    assert await waiter is True


@pytest.mark.asyncio
async def test_wait_for_change_times_out() -> None:
    registry = DeviceRegistry("10.0.0.5")

    assert await registry.wait_for_change(0.02) is False


@pytest.mark.asyncio
async def test_wait_for_change_sees_change_after_baseline() -> None:
    registry = DeviceRegistry()
    baseline = registry.version
    registry.update("10.0.0.5")

    assert await registry.wait_for_change(0.0, baseline=baseline) is True
