"""Configuration for nodething Devices and Sentinels"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Load environment variables from .env file
_repo_root = Path(__file__).parent.parent.resolve()
_env_file = _repo_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

DEFAULT_STORE_URI = "memory://"
DEFAULT_DATABASE_NAME = "(default)"
DEFAULT_COMMANDS_SUFFIX = "_queries"
DEFAULT_STATUS_SUFFIX = "_status"
DEFAULT_HEARTBEAT_INTERVAL = 30.0

# camelCase option names accepted alongside the field names
OPTION_ALIASES = {
    "storeUri": "store_uri",
    "databaseName": "database_name",
    "changeFeedSource": "change_feed_source",
    "deviceName": "device_name",
    "commandsSuffix": "commands_suffix",
    "statusSuffix": "status_suffix",
    "projectId": "project_id",
    "commandTimeout": "command_timeout",
    "failUnhandledCommands": "fail_unhandled_commands",
    "heartbeatInterval": "heartbeat_interval",
}


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


@dataclass(frozen=True)
class ThingConfig:
    """Settings shared by a Device and the Sentinels that address it.

    Instances are passed explicitly to the store adapter and the protocol
    services, so several Devices and Sentinels with different settings can
    live in one process.
    """

    # Location of the shared store: memory://, emulator://host:port or a key file path
    store_uri: str = DEFAULT_STORE_URI
    database_name: str = DEFAULT_DATABASE_NAME
    # Database serving the listen streams; None means database_name
    change_feed_source: Optional[str] = None
    device_name: Optional[str] = None
    commands_suffix: str = DEFAULT_COMMANDS_SUFFIX
    status_suffix: str = DEFAULT_STATUS_SUFFIX

    project_id: Optional[str] = None
    command_timeout: Optional[float] = None
    fail_unhandled_commands: bool = False
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ThingConfig":
        """Create settings from environment variables (and .env)."""
        return cls(
            store_uri=os.getenv("STORE_URI", DEFAULT_STORE_URI),
            database_name=os.getenv("DATABASE_NAME", DEFAULT_DATABASE_NAME),
            change_feed_source=os.getenv("CHANGE_FEED_SOURCE") or None,
            device_name=os.getenv("DEVICE_NAME") or None,
            commands_suffix=os.getenv("COMMANDS_SUFFIX", DEFAULT_COMMANDS_SUFFIX),
            status_suffix=os.getenv("STATUS_SUFFIX", DEFAULT_STATUS_SUFFIX),
            project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
            command_timeout=_env_float("COMMAND_TIMEOUT"),
            fail_unhandled_commands=os.getenv("FAIL_UNHANDLED_COMMANDS", "false").lower() == "true",
            heartbeat_interval=_env_float("HEARTBEAT_INTERVAL") or DEFAULT_HEARTBEAT_INTERVAL,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )

    @classmethod
    def from_options(cls, options: Dict[str, Any], base: Optional["ThingConfig"] = None) -> "ThingConfig":
        """Overlay ``options`` on ``base`` (or the defaults).

        Unrecognized options are reported with a warning and ignored.
        """
        known = {f.name for f in fields(cls)}
        accepted = {}
        for attribute, value in options.items():
            name = OPTION_ALIASES.get(attribute, attribute)
            if name in known:
                accepted[name] = value
            else:
                logger.warning(f"The attribute {attribute} is not a configurable property.")
        return replace(base or cls(), **accepted)

    def _require_device(self, device_name: Optional[str]) -> str:
        name = device_name or self.device_name
        if not name:
            logger.error("Could not get the device name. Did you configure device_name?")
            raise ConfigurationError("device_name is not configured")
        return name

    def commands_collection(self, device_name: Optional[str] = None) -> str:
        """Name of the command collection for a device"""
        return self._require_device(device_name) + self.commands_suffix

    def status_collection(self, device_name: Optional[str] = None) -> str:
        """Name of the property collection for a device"""
        return self._require_device(device_name) + self.status_suffix
