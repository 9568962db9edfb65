"""Command-line entry point: ``python -m dubswitch``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

from aiohttp import web

from dubswitch.config import DubswitchConfig
from dubswitch.engine import RoutingEngine
from dubswitch.exceptions import DubswitchConfigError, DubswitchTransportError
from dubswitch.server import create_app

_logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Routing-state server for X32-family mixing consoles.",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="HTTP/WebSocket listen address (default 0.0.0.0 or DUBSWITCH_HOST).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="HTTP/WebSocket port (default: port file, then PORT, then 3000).",
    )
    parser.add_argument(
        "--osc-port",
        type=int,
        default=None,
        help="Local UDP port for OSC traffic (default 9001).",
    )
    parser.add_argument(
        "--x32-ip",
        default=None,
        help="Register this console address at startup instead of waiting for discovery.",
    )
    parser.add_argument(
        "--broadcast",
        default=None,
        help="Broadcast address used for discovery (default: derived from interfaces).",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding matrix.json and server.port.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args(argv)


async def _serve(config: DubswitchConfig) -> int:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop_event.set)

    async with RoutingEngine(config) as engine:
        runner = web.AppRunner(create_app(engine, stop_event=stop_event))
        await runner.setup()
        site = web.TCPSite(runner, config.http_host, config.http_port)
        try:
            await site.start()
        except OSError as exc:
            _logger.error("Could not listen on %s:%d: %s", config.http_host, config.http_port, exc)
            await runner.cleanup()
            return 1
        _logger.info("Listening on http://%s:%d", config.http_host, config.http_port)
        try:
            await stop_event.wait()
        finally:
            await runner.cleanup()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = DubswitchConfig.from_env(
            http_host=args.host,
            http_port=args.port,
            local_osc_port=args.osc_port,
            device_ip=args.x32_ip,
            broadcast_address=args.broadcast,
            data_dir=Path(args.data_dir) if args.data_dir else None,
        )
    except DubswitchConfigError as exc:
        _logger.error("Invalid configuration: %s", exc)
        return 2

    try:
        return asyncio.run(_serve(config))
    except DubswitchTransportError as exc:
        _logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
