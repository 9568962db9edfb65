"""Server configuration for dubswitch."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dubswitch._constants import (
    DEFAULT_HTTP_PORT,
    DEVICE_OSC_PORT,
    LOCAL_OSC_PORT,
    MATRIX_FILENAME,
    PORT_FILENAME,
)
from dubswitch.exceptions import DubswitchConfigError
from dubswitch.persistence import PortStore


def _env_float(env: Mapping[str, str], key: str) -> float | None:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise DubswitchConfigError(f"{key} must be a number, got {value!r}") from exc


def _env_port(env: Mapping[str, str], key: str) -> int | None:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    try:
        port = int(value)
    except ValueError as exc:
        raise DubswitchConfigError(f"{key} must be an integer port, got {value!r}") from exc
    if not 0 < port <= 65535:
        raise DubswitchConfigError(f"{key} out of range: {port}")
    return port


@dataclasses.dataclass(frozen=True)
class DubswitchConfig:
    """Server configuration.

    Parameters
    ----------
    device_port : int
        UDP port the mixing console listens on.
    local_osc_port : int
        Local UDP port bound for sending and receiving OSC.
    http_host : str
        Interface for the HTTP/WebSocket surface.
    http_port : int
        Port for the HTTP/WebSocket surface.  A persisted preferred port
        (see ``port_file``) takes precedence when built via
        :meth:`from_env`.
    data_dir : Path
        Directory holding the persisted matrix document.
    port_file : Path or None
        Plain-text file holding the preferred HTTP port.  Defaults to
        ``data_dir / "server.port"``.
    device_ip : str or None
        Device address to register at startup, skipping discovery.
    broadcast_address : str or None
        Override for the computed directed broadcast address.
    query_timeout : float
        Seconds before a multi-part query resolves with partial results.
    discovery_timeout : float
        Seconds the autodiscover endpoint waits for a reply.
    keepalive_interval : float
        Seconds between keep-alive probes to the registered device.
    resync_delay : float
        Delay before the routing snapshot is re-read after an address change.
    refresh_delay : float
        Delay before routing is re-read after a routing write.
    restart_delay : float
        Delay between answering ``/set-port`` and stopping the server.
    """

    device_port: int = DEVICE_OSC_PORT
    local_osc_port: int = LOCAL_OSC_PORT
    http_host: str = "0.0.0.0"
    http_port: int = DEFAULT_HTTP_PORT
    data_dir: Path = dataclasses.field(default_factory=Path.cwd)
    port_file: Path | None = None
    device_ip: str | None = None
    broadcast_address: str | None = None
    query_timeout: float = 2.0
    discovery_timeout: float = 2.0
    keepalive_interval: float = 5.0
    resync_delay: float = 0.3
    refresh_delay: float = 0.5
    restart_delay: float = 0.2

    @property
    def matrix_path(self) -> Path:
        return Path(self.data_dir) / MATRIX_FILENAME

    @property
    def port_path(self) -> Path:
        if self.port_file is not None:
            return Path(self.port_file)
        return Path(self.data_dir) / PORT_FILENAME

    @classmethod
    def from_env(cls, **overrides: Any) -> DubswitchConfig:
        """Create configuration from environment variables.

        Reads ``DUBSWITCH_*`` variables plus ``PORT``.  The HTTP port is
        resolved as: explicit override, then the persisted port file, then
        ``PORT``, then the default.  Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DubswitchConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "DUBSWITCH_HOST": "http_host",
            "DUBSWITCH_X32_IP": "device_ip",
            "DUBSWITCH_BROADCAST": "broadcast_address",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val.strip()

        data_dir = env.get("DUBSWITCH_DATA_DIR")
        if data_dir:
            config_kwargs["data_dir"] = Path(data_dir)
        port_file = env.get("DUBSWITCH_PORT_FILE")
        if port_file:
            config_kwargs["port_file"] = Path(port_file)

        osc_port = _env_port(env, "DUBSWITCH_OSC_PORT")
        if osc_port is not None:
            config_kwargs["local_osc_port"] = osc_port

        _ENV_FLOAT_MAP = {
            "DUBSWITCH_QUERY_TIMEOUT": "query_timeout",
            "DUBSWITCH_DISCOVERY_TIMEOUT": "discovery_timeout",
            "DUBSWITCH_KEEPALIVE_INTERVAL": "keepalive_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            parsed = _env_float(env, env_key)
            if parsed is not None:
                config_kwargs[field_name] = parsed

        config_kwargs.update({k: v for k, v in overrides.items() if v is not None})

        if "http_port" not in config_kwargs:
            provisional = cls(**config_kwargs)
            persisted = PortStore(provisional.port_path).load()
            env_port = _env_port(env, "PORT")
            if persisted is not None:
                config_kwargs["http_port"] = persisted
            elif env_port is not None:
                config_kwargs["http_port"] = env_port

        return cls(**config_kwargs)
