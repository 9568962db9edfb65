"""Routing engine: wires the transport, registry, correlator and sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from dubswitch._cache import AttributeCache
from dubswitch._constants import (
    CHANNEL_COUNT,
    COLOR_RE,
    INFO_ADDRESS,
    LOCAL_IN_VALUES,
    NAME_RE,
    ROUTING_ADDRESSES,
    USER_IN_VALUES,
    USER_PATCH_RE,
    channel_id,
    color_address,
    name_address,
    pad_trailing_channel,
    user_patch_address,
)
from dubswitch._normalize import safe_int, safe_str
from dubswitch._transport import OscTransport, Transport, compute_broadcast_address, unwrap_arg
from dubswitch.config import DubswitchConfig
from dubswitch.correlation import CorrelationEngine, QueryResult
from dubswitch.exceptions import InvalidMatrixError, InvalidMessageError, NoDeviceError, PersistenceError
from dubswitch.hub import SessionChannel, SessionHub
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
from dubswitch.models.sources import PatchSource, classify_patch
from dubswitch.models.status import ProbeCounters, StatusSnapshot
from dubswitch.persistence import MatrixStore, PortStore, SaveResult
from dubswitch.registry import DeviceRegistry
from dubswitch.watchdog import LivenessWatchdog

_logger = logging.getLogger(__name__)


def _wire_arg(value: Any) -> Any:
    """Make a decoded OSC argument JSON-serializable."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


class RoutingEngine:
    """Owns every runtime component and routes traffic between them.

    Usage::

        async with RoutingEngine(config) as engine:
            ...

    Inbound datagrams go through :meth:`handle_message`; session frames go
    through :meth:`handle_session_text`.  Both run on the event loop only.
    """

    def __init__(
        self,
        config: DubswitchConfig,
        *,
        transport: Transport | None = None,
        broadcast_address: str | None = None,
    ) -> None:
        self._config = config
        self.registry = DeviceRegistry()
        self.cache = AttributeCache()
        self.hub = SessionHub()
        self.matrix_store = MatrixStore(config.matrix_path)
        self.port_store = PortStore(config.port_path)

        self._socket: OscTransport | None = None
        if transport is None:
            self._socket = OscTransport(on_message=self.handle_message, local_port=config.local_osc_port)
            transport = self._socket
        self._transport: Transport = transport

        self.correlator = CorrelationEngine(
            transport=self._transport,
            registry=self.registry,
            device_port=config.device_port,
            timeout=config.query_timeout,
        )
        self.watchdog = LivenessWatchdog(
            correlator=self.correlator,
            registry=self.registry,
            interval=config.keepalive_interval,
        )
        self._broadcast_address = (
            broadcast_address or config.broadcast_address or compute_broadcast_address()
        )
        self._resync_handle: asyncio.TimerHandle | None = None
        self._deferred: set[asyncio.TimerHandle] = set()
        self.registry.add_listener(self._on_device_changed)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RoutingEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def config(self) -> DubswitchConfig:
        return self._config

    @property
    def broadcast_address(self) -> str:
        return self._broadcast_address

    async def start(self) -> None:
        """Load persisted state, bind the socket and start discovery."""
        self.matrix_store.load()
        if self._socket is not None:
            await self._socket.start()
        if self._config.device_ip:
            self.registry.update(self._config.device_ip, reason="configured")
        self.send_discovery()
        _logger.info("Engine started (broadcast=%s)", self._broadcast_address)

    async def stop(self) -> None:
        if self._resync_handle is not None:
            self._resync_handle.cancel()
            self._resync_handle = None
        for handle in list(self._deferred):
            handle.cancel()
        self._deferred.clear()
        await self.watchdog.stop()
        self.correlator.cancel_all()
        await self.hub.drain()
        if self._socket is not None:
            self._socket.close()
        _logger.info("Engine stopped")

    # ------------------------------------------------------------------
    # Outbound helpers
    # ------------------------------------------------------------------

    def send_discovery(self) -> None:
        """Broadcast one ``/xinfo`` probe on the local network."""
        self._transport.send(INFO_ADDRESS, [], (self._broadcast_address, self._config.device_port))

    def _send_to_device(self, address: str, args: Sequence[Any] = ()) -> bool:
        device = self.registry.current_address()
        if device is None:
            _logger.warning("No device address known, dropping %s", address)
            return False
        self._transport.send(address, list(args), (device, self._config.device_port))
        return True

    def _defer(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._deferred.discard(handle)
            callback(*args)

        handle = loop.call_later(delay, _fire)
        self._deferred.add(handle)
        return handle

    def request_channel_names(self) -> None:
        for channel in range(1, CHANNEL_COUNT + 1):
            self._send_to_device(name_address(channel))

    def request_channel_attributes(self) -> None:
        """Read user patch, name and color of every channel."""
        for channel in range(1, CHANNEL_COUNT + 1):
            self._send_to_device(user_patch_address(channel))
            self._send_to_device(name_address(channel))
            self._send_to_device(color_address(channel))

    def read_routing(self, session: SessionChannel | None = None) -> int | None:
        """Read all routing blocks; deliver to *session*, or every session."""

        def _sink(result: QueryResult) -> None:
            values = list(result.values)
            self.cache.set_routing(values)
            message = RoutingUpdate(values=values).to_wire()
            if session is None:
                self.hub.broadcast(message)
            else:
                self.hub.send(session, message)

        return self.correlator.issue(ROUTING_ADDRESSES, _sink, coerce=safe_int)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, address: str, args: list[Any], sender: str) -> None:
        """Dispatch one inbound OSC message to every consumer."""
        self._consume_discovery(address, sender)
        self.correlator.feed(address, args)
        self._consume_attributes(address, args)

    def _consume_discovery(self, address: str, sender: str) -> None:
        if address != INFO_ADDRESS:
            return
        reason = "initial-discovery" if self.registry.current_address() is None else "discovery-reply"
        self.registry.update(sender, reason=reason)
        self.hub.broadcast(PingNotice(sender=sender).to_wire())

    def _consume_attributes(self, address: str, args: list[Any]) -> None:
        match = NAME_RE.match(address)
        if match is not None:
            channel = self._channel_of(match.group(1))
            if channel is None or not args:
                return
            name = safe_str(unwrap_arg(args[0])) or ""
            names = self.cache.set_name(channel, name)
            self.hub.broadcast(ChannelNames(names=names).to_wire())
            return

        match = COLOR_RE.match(address)
        if match is not None:
            channel = self._channel_of(match.group(1))
            if channel is None:
                return
            if args:
                self.cache.set_color(channel, _wire_arg(unwrap_arg(args[0])))
            self._forward(address, args)
            return

        match = USER_PATCH_RE.match(address)
        if match is not None:
            channel = self._channel_of(match.group(1))
            if channel is None:
                return
            if args:
                self.cache.set_patch(channel, safe_int(unwrap_arg(args[0])))
            self._forward(address, args)

    @staticmethod
    def _channel_of(text: str) -> int | None:
        channel = int(text)
        if not 1 <= channel <= CHANNEL_COUNT:
            _logger.debug("Ignoring attribute for channel %s", text)
            return None
        return channel

    def _forward(self, address: str, args: list[Any]) -> None:
        reply = ClpReply(address=address, args=[_wire_arg(unwrap_arg(arg)) for arg in args])
        self.hub.broadcast(reply.to_wire())

    def _on_device_changed(self, address: str, previous: str | None, reason: str) -> None:
        self.request_channel_names()
        if self._resync_handle is not None:
            self._resync_handle.cancel()
        loop = asyncio.get_running_loop()
        self._resync_handle = loop.call_later(self._config.resync_delay, self._resync)
        self.watchdog.reset()

    def _resync(self) -> None:
        self._resync_handle = None
        self.read_routing(None)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def attach_session(self, session: SessionChannel) -> None:
        """Register a session and bring it up to date."""
        self.hub.attach(session)
        self.hub.send(session, ChannelNames(names=self.cache.names()).to_wire())
        if self.cache.has_routing:
            self.hub.send(session, RoutingUpdate(values=self.cache.routing()).to_wire())
        self.hub.send(session, MatrixSnapshot(matrix=self.matrix_store.document).to_wire())

        if self.registry.current_address() is None:
            self.send_discovery()
            return
        self._send_to_device(INFO_ADDRESS)
        self.read_routing(session)
        self.request_channel_attributes()

    def detach_session(self, session: SessionChannel) -> None:
        self.hub.detach(session)

    def handle_session_text(self, session: SessionChannel, raw: str | bytes) -> None:
        """Parse and apply one session frame; invalid frames are dropped."""
        try:
            message = parse_session_message(raw)
        except InvalidMessageError as exc:
            _logger.warning("Dropping session message: %s", exc)
            return
        self.handle_session_message(session, message)

    def handle_session_message(self, session: SessionChannel, message: SessionMessage) -> None:
        if isinstance(message, LoadRoutingMessage):
            self.read_routing(session)
        elif isinstance(message, SetDeviceIpMessage):
            self.registry.update(message.ip, reason="manual")
            self._send_to_device(INFO_ADDRESS)
            self.read_routing(session)
        elif isinstance(message, ToggleInputsMessage):
            self._write_routing(session, list(enumerate(message.targets)))
        elif isinstance(message, ToggleInputsBlockMessage):
            self._write_routing(session, [(message.block, message.target)])
        elif isinstance(message, ClpMessage):
            self._send_to_device(pad_trailing_channel(message.address), message.args)
        elif isinstance(message, PingMessage):
            if not self._send_to_device(INFO_ADDRESS):
                self.send_discovery()
        elif isinstance(message, GetMatrixMessage):
            self.hub.send(session, MatrixSnapshot(matrix=self.matrix_store.document).to_wire())
        elif isinstance(message, SetMatrixMessage):
            try:
                self.save_matrix(message.matrix)
            except (InvalidMatrixError, PersistenceError) as exc:
                _logger.warning("Matrix update from session rejected: %s", exc)

    def _write_routing(self, session: SessionChannel, writes: list[tuple[int, int]]) -> None:
        sent = False
        for block, target in writes:
            sent = self._send_to_device(ROUTING_ADDRESSES[block], [target]) or sent
        if sent:
            self._defer(self._config.refresh_delay, self.read_routing, session)

    # ------------------------------------------------------------------
    # HTTP operations
    # ------------------------------------------------------------------

    async def discover(self) -> str | None:
        """Broadcast a probe and wait for the device address to change.

        Returns the new address as soon as it changes, otherwise the current
        address (``None`` when nothing ever answered).
        """
        baseline = self.registry.version
        self.send_discovery()
        await self.registry.wait_for_change(self._config.discovery_timeout, baseline=baseline)
        return self.registry.current_address()

    async def enumerate_sources(self) -> dict[str, PatchSource]:
        """Read every channel's user patch and classify it.

        Raises :class:`NoDeviceError` when no device address is known.
        """
        if self.registry.current_address() is None:
            raise NoDeviceError("No device address known")
        parts = [user_patch_address(channel) for channel in range(1, CHANNEL_COUNT + 1)]
        result = await self.correlator.request(parts, coerce=safe_int)
        sources: dict[str, PatchSource] = {}
        for channel, value in enumerate(result.values, start=1):
            if value is not None:
                self.cache.set_patch(channel, value)
            sources[channel_id(channel)] = classify_patch(value)
        return sources

    def save_matrix(self, patch: Any) -> SaveResult:
        result = self.matrix_store.save(patch)
        self.hub.broadcast(MatrixUpdate(matrix=result.matrix).to_wire())
        return result

    def save_port(self, port: int) -> int:
        return self.port_store.save(port)

    def routing_modes(self) -> list[str | None]:
        """Label each cached routing block by the input set it selects."""
        modes: list[str | None] = []
        for block, value in enumerate(self.cache.routing()):
            if value is None:
                modes.append(None)
            elif value == USER_IN_VALUES[block]:
                modes.append("user")
            elif value == LOCAL_IN_VALUES[block]:
                modes.append("local")
            else:
                modes.append("other")
        return modes

    def status(self) -> StatusSnapshot:
        return StatusSnapshot(
            device=self.registry.current_address(),
            routing=self.routing_modes(),
            sessions=self.hub.count,
            pending_queries=self.correlator.pending_count,
            probes=ProbeCounters.model_validate(self.watchdog.stats.as_dict()),
            broadcast=self._broadcast_address,
            http_port=self._config.http_port,
        )
