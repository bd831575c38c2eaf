"""
Sentinel - Controller-side client of one Device

Issues commands by inserting command documents and correlates their results
through the command change feed; reads and subscribes to the Device's
properties through the status change feed.

Routing (see routing.py):
  command feed, pending == False  → "command:<id>"  (error, result)
  status feed, inserted/updated   → "status:<id>"   value
                                  → "status:*"      (property, value)
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional

from ..config import ThingConfig
from ..errors import (
    CommandFailedError,
    CommandTimeoutError,
    StoreReadError,
    StoreWriteError,
    UnknownPropertyError,
)
from ..models import CommandDocument
from ..storage.base import Collection, StoreHandle
from .change_feed import ChangeFeedListener
from .device import read_status
from .routing import WILDCARD_STATUS, EventRouter, command_channel, status_channel

logger = logging.getLogger(__name__)

CommandCallback = Callable[[Optional[Exception], Any], None]


class PendingCommand:
    """Pending-call record of one issued command.

    Resolves exactly once: with the Device's result, with an error (insert
    failure, Device-side failure, timeout), or by cancel(). The optional
    callback receives ``(error, result)``; it is not called on cancel().
    """

    def __init__(self, sentinel: "Sentinel", command_id: str, command_name: str,
                 callback: Optional[CommandCallback] = None):
        self.id = command_id
        self.command_name = command_name
        self._sentinel = sentinel
        self._callback = callback
        self._future: Future = Future()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._resolved = False

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: Optional[float] = None) -> Any:
        """Block until the command resolves and return its result.

        Raises the resolution error, concurrent.futures.TimeoutError if
        ``timeout`` elapses first (the command stays pending), or
        CancelledError after cancel().
        """
        return self._future.result(timeout)

    def cancel(self) -> bool:
        """Stop waiting for this command. Returns False if already resolved."""
        if not self._claim():
            return False
        self._sentinel._forget(self)
        self._future.cancel()
        logger.info(f"Command {self.command_name} ({self.id}) cancelled")
        return True

    def _claim(self) -> bool:
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
        if self._timer is not None:
            self._timer.cancel()
        return True

    def _arm_timer(self, timeout: float) -> None:
        self._timer = threading.Timer(timeout, self._expire, args=(timeout,))
        self._timer.daemon = True
        self._timer.start()

    def _expire(self, timeout: float) -> None:
        if not self._claim():
            return
        logger.warning(f"Command {self.command_name} ({self.id}) timed out after {timeout}s")
        self._sentinel._forget(self)
        self._settle(CommandTimeoutError(self.id, timeout), None)

    def _on_completion(self, error: Optional[str], result: Any) -> None:
        if error is not None:
            self._resolve(CommandFailedError(self.id, error), None)
        else:
            self._resolve(None, result)

    def _resolve(self, error: Optional[Exception], result: Any) -> None:
        if not self._claim():
            return
        self._sentinel._discard(self.id)
        self._settle(error, result)

    def _settle(self, error: Optional[Exception], result: Any) -> None:
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(result)
        if self._callback is not None:
            try:
                self._callback(error, result)
            except Exception as e:
                logger.error(f"Error in callback for command {self.command_name} ({self.id}): {e}", exc_info=True)


class Subscription:
    """Handle on one status subscription; cancel() detaches it"""

    def __init__(self, router: EventRouter, channel: str, callback: Callable, property: Optional[str] = None):
        self.channel = channel
        self.property = property
        self._router = router
        self._callback = callback

    @property
    def active(self) -> bool:
        return self._callback is not None

    def cancel(self) -> None:
        if self._callback is not None:
            self._router.off(self.channel, self._callback)
            self._callback = None


class Sentinel:
    """Controller-side client of the Device named ``device_name``.

    Creating a Sentinel starts tailing the Device's command and status
    collections; close() stops both tails. Pending commands and
    subscriptions live as long as the Sentinel.
    """

    def __init__(self, store: StoreHandle, config: ThingConfig, device_name: Optional[str] = None):
        self.config = config
        self.device_name = device_name or config.device_name
        self.command_collection: Collection = store.get_collection(config.commands_collection(self.device_name))
        self.status_collection: Collection = store.get_collection(config.status_collection(self.device_name))

        self.router = EventRouter()
        self._pending: Dict[str, PendingCommand] = {}
        self._lock = threading.Lock()

        self._command_listener = ChangeFeedListener(
            self.command_collection,
            on_inserted=self._on_command_change,
            on_updated=self._on_command_change,
        )
        self._status_listener = ChangeFeedListener(
            self.status_collection,
            on_inserted=self._on_status_change,
            on_updated=self._on_status_change,
        )
        self._command_listener.tail()
        self._status_listener.tail()
        logger.info(f"Sentinel for {self.device_name} started")

    def close(self) -> None:
        self._command_listener.stop()
        self._status_listener.stop()
        logger.info(f"Sentinel for {self.device_name} closed ({self.pending_commands} commands still pending)")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ----------------------------------------------------------------
    # Feed routing
    # ----------------------------------------------------------------

    def _on_command_change(self, document: Dict[str, Any]) -> None:
        # Still-pending documents are our own commands being observed
        if document.get("pending", True):
            return
        self.router.emit(command_channel(document["id"]), document.get("error"), document.get("result"))

    def _on_status_change(self, document: Dict[str, Any]) -> None:
        value = document.get("value")
        self.router.emit(status_channel(document["id"]), value)
        self.router.emit(WILDCARD_STATUS, document.get("property"), value)

    # ----------------------------------------------------------------
    # Commands
    # ----------------------------------------------------------------

    @property
    def pending_commands(self) -> int:
        with self._lock:
            return len(self._pending)

    def _discard(self, command_id: str) -> None:
        with self._lock:
            self._pending.pop(command_id, None)

    def _forget(self, pending: PendingCommand) -> None:
        self.router.off(command_channel(pending.id), pending._on_completion)
        self._discard(pending.id)

    def issue_command(self, command_name: str, *arguments, callback: Optional[CommandCallback] = None,
                      timeout: Optional[float] = None) -> PendingCommand:
        """Send ``command_name(*arguments)`` to the Device.

        ``callback(error, result)`` is invoked exactly once when the command
        resolves; on insert failure it is invoked immediately with a
        StoreWriteError. ``timeout`` (default: config.command_timeout, None
        waits forever) resolves the command with CommandTimeoutError.
        """
        command = CommandDocument(command_name=command_name, arguments=list(arguments))
        command.id = self.command_collection.new_id()
        pending = PendingCommand(self, command.id, command_name, callback)

        # Listen before inserting so a fast Device cannot complete unobserved
        with self._lock:
            self._pending[command.id] = pending
        self.router.once(command_channel(command.id), pending._on_completion)

        try:
            self.command_collection.insert({"id": command.id, **command.to_document()})
        except StoreWriteError as e:
            logger.error(f"Error while running command {command_name}: {e}")
            self.router.off(command_channel(command.id), pending._on_completion)
            pending._resolve(e, None)
            return pending

        logger.debug(f"Issued command {command_name} ({command.id})")
        if timeout is None:
            timeout = self.config.command_timeout
        if timeout is not None and not pending.done():
            pending._arm_timer(timeout)
        return pending

    def call(self, command_name: str, *arguments, timeout: Optional[float] = None) -> Any:
        """Issue a command and block until its result arrives."""
        return self.issue_command(command_name, *arguments, timeout=timeout).result()

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def get_status(self, property: Optional[str] = None):
        """Same contract as Device.get_status, read directly from the store."""
        return read_status(self.status_collection, property)

    def subscribe(self, property: Optional[str] = None, callback: Optional[Callable] = None) -> Subscription:
        """Call ``callback`` on every future change of the Device's properties.

        With ``property``: ``callback(value)`` for that property only. Its
        document must already exist (UnknownPropertyError otherwise).
        Without: ``callback(property, value)`` for every property.
        """
        if callback is None:
            raise TypeError("subscribe() requires a callback")

        if not property:
            self.router.on(WILDCARD_STATUS, callback)
            return Subscription(self.router, WILDCARD_STATUS, callback)

        try:
            document = self.status_collection.find_one({"property": property})
        except StoreReadError as e:
            logger.error(f"Error getting the status for property {property}: {e}")
            raise
        if document is None:
            logger.error(f"Cannot subscribe to {property}: property does not exist on {self.device_name}")
            raise UnknownPropertyError(property)

        channel = status_channel(document["id"])
        self.router.on(channel, callback)
        logger.debug(f"Subscribed to {property} ({channel})")
        return Subscription(self.router, channel, callback, property)
