"""Core DeviceServer - runs one Device as a long-lived process"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from ..config import ThingConfig
from ..errors import StoreWriteError
from ..services import Device
from ..storage import StoreHandle, connect

logger = logging.getLogger(__name__)


class DeviceServer:
    """Serves a Device: connects to the store, answers built-in commands and
    keeps the ``status``/``lastSeen`` properties current."""

    def __init__(self, config: ThingConfig, store: Optional[StoreHandle] = None):
        logger.info(f"Initializing DeviceServer for {config.device_name}...")
        self.config = config
        self.store = store
        self._owns_store = store is None
        self.device: Optional[Device] = None
        self.heartbeat_count = 0
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    def _register_builtin_commands(self):
        """Register the commands every device answers"""
        self.device.register_command("ping", self._handle_ping)
        self.device.register_command("get_status", self._handle_get_status)

    async def start(self):
        """Connect and start the Device. Returns once it is serving."""
        logger.info("Starting DeviceServer...")
        if self.store is None:
            self.store = connect(self.config)

        self.device = Device(self.store, self.config)
        self.device.start()
        self._register_builtin_commands()

        self.device.update_status("status", "online")
        self._stop_event = asyncio.Event()
        self.running = True
        logger.info(f"DeviceServer started (device: {self.device.device_name})")

    async def run(self):
        """Start, then keep the heartbeat going until stop() is called."""
        await self.start()
        await self._heartbeat_loop()

    async def stop(self):
        """Stop server and cleanup"""
        if not self.running:
            return
        logger.info("Stopping DeviceServer...")
        self.running = False
        self._stop_event.set()
        try:
            self.device.update_status("status", "offline")
        except StoreWriteError as e:
            logger.error(f"Could not publish offline status: {e}")
        self.device.stop()
        if self._owns_store:
            self.store.close()
        logger.info("DeviceServer stopped")

    async def _heartbeat_loop(self):
        """Refresh the lastSeen property every heartbeat_interval seconds"""
        logger.info("Starting heartbeat loop")
        while self.running:
            try:
                self.device.update_status("lastSeen", datetime.now(timezone.utc).isoformat())
                self.heartbeat_count += 1
                logger.debug(f"Heartbeat #{self.heartbeat_count} sent")
            except StoreWriteError as e:
                logger.error(f"Heartbeat failed: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), self.config.heartbeat_interval)
            except asyncio.TimeoutError:
                pass

    # ============ Command Handlers ============

    def _handle_ping(self, complete):
        complete("pong")

    def _handle_get_status(self, *args):
        """get_status([property]) answered from the Device's own store"""
        *arguments, complete = args
        complete(self.device.get_status(arguments[0] if arguments else None))
