"""dubswitch - routing-state server for X32-family mixing consoles."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dubswitch")
except PackageNotFoundError:
    __version__ = "0+local"
from dubswitch.config import DubswitchConfig
from dubswitch.correlation import CorrelationEngine, QueryOutcome, QueryResult
from dubswitch.engine import RoutingEngine
from dubswitch.exceptions import (
    DubswitchConfigError,
    DubswitchError,
    DubswitchTransportError,
    InvalidMatrixError,
    InvalidMessageError,
    NoDeviceError,
    PersistenceError,
)
from dubswitch.registry import DeviceRegistry

__all__ = [
    "__version__",
    "CorrelationEngine",
    "DeviceRegistry",
    "DubswitchConfig",
    "DubswitchConfigError",
    "DubswitchError",
    "DubswitchTransportError",
    "InvalidMatrixError",
    "InvalidMessageError",
    "NoDeviceError",
    "PersistenceError",
    "QueryOutcome",
    "QueryResult",
    "RoutingEngine",
]
