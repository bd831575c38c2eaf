"""Device protocol handler - executes queued commands and publishes status"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..config import ThingConfig
from ..errors import NotStartedError, StoreReadError, StoreWriteError, UnhandledCommandError
from ..models import CommandDocument, completion_fields, utcnow
from ..storage.base import Collection, StoreHandle
from .change_feed import ChangeFeedListener

logger = logging.getLogger(__name__)

# Ids of commands already taken, kept to ignore redelivered feed records
MAX_TRACKED_COMMANDS = 4096


class Completion:
    """Continuation passed as the last argument to a command handler.

    Calling it writes the result back to the command document. Only the
    first call has an effect; it may happen from any thread, before or after
    the handler returns.
    """

    def __init__(self, device: "Device", command_id: str, command_name: str):
        self._device = device
        self.command_id = command_id
        self.command_name = command_name
        self._done = False
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._done

    def __call__(self, result: Any = None) -> bool:
        return self._finish(result=result)

    def fail(self, error: Union[str, BaseException]) -> bool:
        """Complete the command with an error instead of a result."""
        return self._finish(error=str(error) or type(error).__name__)

    def _finish(self, result: Any = None, error: Optional[str] = None) -> bool:
        with self._lock:
            if self._done:
                logger.warning(f"Command {self.command_name} ({self.command_id}) already completed; ignoring")
                return False
            self._done = True
        self._device._write_completion(self.command_id, self.command_name, result, error)
        return True


class Device:
    """Serves one Device: runs registered command handlers and owns its
    property documents.

    Flow:
    1. A Sentinel inserts a command document with pending=True
    2. The command feed reports it; the handler registered under
       commandName is called with the arguments plus a Completion
    3. The Completion writes {result, pending: False, lastModified} back
       to the same document

    Every operation requires start() to have completed.
    """

    def __init__(self, store: StoreHandle, config: ThingConfig, device_name: Optional[str] = None):
        self.store = store
        self.config = config
        self.device_name = device_name or config.device_name
        self.command_collection: Optional[Collection] = None
        self.status_collection: Optional[Collection] = None
        self._handlers: Dict[str, Callable] = {}
        self._taken: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()
        self._listener: Optional[ChangeFeedListener] = None

    @property
    def started(self) -> bool:
        return self._listener is not None and self._listener.running

    def start(self) -> None:
        """Look up the Device's collections and start tailing its commands.

        Raises ConfigurationError or CollectionLookupError.
        """
        commands_name = self.config.commands_collection(self.device_name)
        status_name = self.config.status_collection(self.device_name)
        self.command_collection = self.store.get_collection(commands_name)
        self.status_collection = self.store.get_collection(status_name)

        self._listener = ChangeFeedListener(
            self.command_collection,
            on_inserted=self._on_command,
            on_updated=self._on_command,
        )
        self._listener.tail()
        logger.info(f"Device {self.device_name} started (commands: {commands_name}, status: {status_name})")

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
            logger.info(f"Device {self.device_name} stopped")

    def _require_started(self) -> None:
        if not self.started:
            logger.error("The Device collections were not found. Did you run start()?")
            raise NotStartedError(f"Device {self.device_name} has not been started")

    # ----------------------------------------------------------------
    # Commands
    # ----------------------------------------------------------------

    def register_command(self, name: str, handler: Callable) -> None:
        """Route commands named ``name`` to ``handler``.

        The handler is called as ``handler(*arguments, complete)``. A later
        registration under the same name replaces the earlier one.
        """
        self._require_started()
        with self._lock:
            replaced = name in self._handlers
            self._handlers[name] = handler
        if replaced:
            logger.info(f"Replaced handler for command '{name}'")
        else:
            logger.info(f"Registered handler for command '{name}'")

    @property
    def available_commands(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    def _take(self, command_id: str) -> bool:
        with self._lock:
            if command_id in self._taken:
                return False
            self._taken[command_id] = None
            while len(self._taken) > MAX_TRACKED_COMMANDS:
                self._taken.popitem(last=False)
            return True

    def _on_command(self, document: Dict[str, Any]) -> None:
        if not document.get("pending"):
            return
        try:
            command = CommandDocument.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed command document {document.get('id')}: {e}")
            return

        with self._lock:
            handler = self._handlers.get(command.command_name)
        if handler is None:
            error = UnhandledCommandError(command.command_name, self.available_commands)
            logger.warning(f"Command {command.id}: {error}")
            if self.config.fail_unhandled_commands and self._take(command.id):
                self._write_completion(command.id, command.command_name, None, str(error))
            return

        if not self._take(command.id):
            logger.debug(f"Command {command.id} already taken; ignoring redelivery")
            return

        logger.info(f"Executing command: {command.command_name} (ID: {command.id})")
        complete = Completion(self, command.id, command.command_name)
        try:
            handler(*command.arguments, complete)
        except Exception as e:
            logger.error(f"Command {command.command_name} ({command.id}) failed: {e}", exc_info=True)
            if not complete.done:
                complete.fail(e)

    def _write_completion(self, command_id: str, command_name: str, result: Any, error: Optional[str]) -> None:
        try:
            matched = self.command_collection.update_one(
                {"id": command_id},
                completion_fields(result, error),
            )
        except StoreWriteError as e:
            logger.error(
                f"Error while updating the command collection for command {command_name} "
                f"({command_id}) on device {self.device_name}: {e}"
            )
            return
        if not matched:
            logger.error(f"Command {command_name} ({command_id}) vanished before its result was written")
        elif error is None:
            logger.info(f"Command {command_id} executed successfully")
        else:
            logger.info(f"Command {command_id} completed with error: {error}")

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def update_status(self, property: str, value: Any) -> str:
        """Set ``property`` to ``value``, creating its document on first write.

        Returns the property document id. Raises StoreWriteError.
        """
        self._require_started()
        try:
            document_id, created = self.status_collection.upsert(
                "property",
                property,
                {"value": value, "lastModified": utcnow()},
            )
        except StoreWriteError as e:
            logger.error(f"Error while updating status {property} on device {self.device_name}: {e}")
            raise
        logger.debug(f"Status {'created' if created else 'updated'}: {property}={value!r}")
        return document_id

    def get_status(self, property: Optional[str] = None):
        """Value of ``property`` (None if it does not exist), or every
        property document ordered by name when ``property`` is omitted."""
        self._require_started()
        return read_status(self.status_collection, property)


def read_status(collection: Collection, property: Optional[str] = None):
    """Shared read path of Device.get_status and Sentinel.get_status"""
    if property:
        try:
            document = collection.find_one({"property": property})
        except StoreReadError as e:
            logger.error(f"Error getting the status for property {property}: {e}")
            raise
        return document.get("value") if document else None
    try:
        return collection.find(order_by="property")
    except StoreReadError as e:
        logger.error(f"Error getting the status for all properties: {e}")
        raise
