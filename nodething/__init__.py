"""nodething - Device/Controller command and status protocol over a shared document store"""

from .config import ThingConfig
from .core import DeviceServer
from .errors import (
    CollectionLookupError,
    CommandFailedError,
    CommandTimeoutError,
    ConfigurationError,
    NodeThingError,
    NotStartedError,
    StaleUpdateError,
    StoreConnectionError,
    StoreReadError,
    StoreWriteError,
    UnhandledCommandError,
    UnknownPropertyError,
)
from .services import Device, PendingCommand, Sentinel, Subscription
from .storage import MemoryStore, connect

__version__ = "0.1.0"

__all__ = [
    'ThingConfig', 'DeviceServer', 'Device', 'Sentinel', 'PendingCommand', 'Subscription',
    'MemoryStore', 'connect',
    'NodeThingError', 'ConfigurationError', 'StoreConnectionError', 'CollectionLookupError',
    'NotStartedError', 'StaleUpdateError', 'StoreWriteError', 'StoreReadError',
    'UnknownPropertyError', 'UnhandledCommandError', 'CommandFailedError', 'CommandTimeoutError',
]
