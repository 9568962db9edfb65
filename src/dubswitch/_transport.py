"""OSC-over-UDP transport bound to a single local socket."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

import psutil
from pythonosc.osc_message_builder import BuildError, OscMessageBuilder
from pythonosc.osc_packet import OscPacket, ParseError

from dubswitch._constants import GLOBAL_BROADCAST
from dubswitch._logfmt import summarize_args
from dubswitch.exceptions import DubswitchTransportError

_logger = logging.getLogger(__name__)

Destination = tuple[str, int]
MessageHandler = Callable[[str, list[Any], str], None]

_TYPE_TAGS: frozenset[str] = frozenset({"i", "f", "s"})


class Transport(Protocol):
    """Structural transport interface used by the engine components.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`OscTransport`) concrete.
    """

    def send(self, address: str, args: Sequence[Any], destination: Destination) -> None:
        ...


def unwrap_arg(arg: Any) -> Any:
    """Return the plain value of a typed argument.

    Tagged ``{"type": ..., "value": ...}`` records yield ``value``;
    anything else is returned unchanged.
    """
    if isinstance(arg, Mapping) and "value" in arg:
        return arg["value"]
    return arg


def to_osc_args(values: Sequence[Any]) -> list[tuple[Any, str]]:
    """Map session-supplied values to ``(value, type_tag)`` pairs.

    Integers become ``i``, other numbers ``f`` and everything else is sent
    as a string.  Already-tagged records keep their tag when it is one the
    console understands.
    """
    typed: list[tuple[Any, str]] = []
    for raw in values:
        if isinstance(raw, Mapping) and raw.get("type") in _TYPE_TAGS and "value" in raw:
            tag = str(raw["type"])
            value = raw["value"]
        elif isinstance(raw, int):
            tag, value = "i", int(raw)
        elif isinstance(raw, float):
            tag, value = ("i", int(raw)) if raw.is_integer() else ("f", raw)
        else:
            tag, value = "s", str(raw)
        if tag == "i":
            value = int(value)
        elif tag == "f":
            value = float(value)
        else:
            value = str(value)
        typed.append((value, tag))
    return typed


def encode_message(address: str, args: Sequence[Any] = ()) -> bytes:
    """Encode one OSC message; *args* are plain or tagged values."""
    builder = OscMessageBuilder(address=address)
    for value, tag in to_osc_args(args):
        builder.add_arg(value, arg_type=tag)
    return builder.build().dgram


def decode_datagram(data: bytes) -> list[tuple[str, list[Any]]]:
    """Decode a datagram (message or bundle) into ``(address, args)`` pairs.

    Raises :class:`pythonosc.osc_packet.ParseError` for malformed input.
    """
    packet = OscPacket(data)
    return [(timed.message.address, list(timed.message.params)) for timed in packet.messages]


def compute_broadcast_address() -> str:
    """Directed broadcast address of the first non-loopback IPv4 interface.

    Falls back to the global broadcast address when no usable interface is
    found.
    """
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error):
        _logger.warning("Could not enumerate network interfaces", exc_info=True)
        return GLOBAL_BROADCAST

    for name, addresses in interfaces.items():
        for snic in addresses:
            if snic.family != socket.AF_INET or not snic.netmask:
                continue
            try:
                ip = ipaddress.IPv4Address(snic.address)
                network = ipaddress.IPv4Network(f"{snic.address}/{snic.netmask}", strict=False)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            _logger.debug("Broadcast derived from interface=%s address=%s", name, snic.address)
            return str(network.broadcast_address)
    return GLOBAL_BROADCAST


class _OscDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, on_datagram: Callable[[bytes, Destination], None]) -> None:
        self._on_datagram = on_datagram

    def datagram_received(self, data: bytes, addr: Destination) -> None:
        self._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        _logger.warning("UDP OSC error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            _logger.warning("UDP OSC socket closed: %s", exc)


class OscTransport:
    """Fire-and-forget OSC sender/receiver on one bound UDP socket."""

    def __init__(
        self,
        *,
        on_message: MessageHandler,
        local_port: int,
        local_host: str = "0.0.0.0",
    ) -> None:
        self._on_message = on_message
        self._local_host = local_host
        self._local_port = local_port
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def local_port(self) -> int:
        """Bound port (the real one when ``0`` was requested)."""
        if self._transport is not None:
            sockname = self._transport.get_extra_info("sockname")
            if sockname:
                return int(sockname[1])
        return self._local_port

    async def start(self) -> None:
        """Bind the local socket with broadcast enabled."""
        if self.is_open:
            return
        loop = asyncio.get_running_loop()
        try:
            transport, _protocol = await loop.create_datagram_endpoint(
                lambda: _OscDatagramProtocol(self._on_datagram),
                local_addr=(self._local_host, self._local_port),
                allow_broadcast=True,
            )
        except OSError as exc:
            raise DubswitchTransportError(
                f"Could not bind UDP {self._local_host}:{self._local_port}: {exc}",
                local_port=self._local_port,
            ) from exc
        self._transport = transport
        _logger.info("OSC socket bound on %s:%d", self._local_host, self.local_port)

    def close(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is not None:
            transport.close()

    def send(self, address: str, args: Sequence[Any], destination: Destination) -> None:
        """Send one message; errors are logged, never raised."""
        transport = self._transport
        if transport is None or transport.is_closing():
            _logger.warning("OSC send skipped (socket not open) address=%s", address)
            return
        try:
            data = encode_message(address, args)
        except (BuildError, TypeError, ValueError) as exc:
            _logger.warning("Could not encode OSC message address=%s: %s", address, exc)
            return
        try:
            transport.sendto(data, destination)
        except OSError as exc:
            _logger.error("OSC send to %s:%d failed: %s", destination[0], destination[1], exc)
            return
        _logger.debug("OSC -> %s:%d %s %s", destination[0], destination[1], address, summarize_args(list(args)))

    def _on_datagram(self, data: bytes, addr: Destination) -> None:
        try:
            messages = decode_datagram(data)
        except ParseError:
            _logger.debug("Dropping unparseable datagram from %s (%d bytes)", addr[0], len(data))
            return
        for address, args in messages:
            _logger.debug("OSC <- %s %s %s", addr[0], address, summarize_args(args))
            try:
                self._on_message(address, args, addr[0])
            except Exception:
                _logger.exception("Inbound handler failed for address=%s", address)
