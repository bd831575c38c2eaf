"""Error types raised by the store adapters and the protocol services"""


class NodeThingError(Exception):
    """Base class for every error raised by nodething"""
    pass


class ConfigurationError(NodeThingError):
    """Required configuration (device name, store URI) is missing or invalid"""
    pass


class StoreConnectionError(NodeThingError):
    """The shared store could not be reached"""
    pass


class CollectionLookupError(NodeThingError):
    """A named collection does not exist or is inaccessible"""
    pass


class NotStartedError(NodeThingError):
    """A Device operation was invoked before start() completed"""
    pass


class StaleUpdateError(NodeThingError):
    """A feed update referenced a document that no longer exists"""

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(
            f"Update event for {collection}/{document_id} does not correspond to an existing document"
        )


class StoreWriteError(NodeThingError):
    """An insert or update failed"""
    pass


class StoreReadError(NodeThingError):
    """A find failed"""
    pass


class UnknownPropertyError(StoreReadError):
    """No property document exists for the requested name"""

    def __init__(self, property_name: str):
        self.property_name = property_name
        super().__init__(f"Property '{property_name}' does not exist")


class UnhandledCommandError(NodeThingError):
    """A command arrived for which no handler is registered"""

    def __init__(self, command_name: str, available=()):
        self.command_name = command_name
        self.available = sorted(available)
        super().__init__(
            f"No handler registered for command '{command_name}'. "
            f"Available commands: {', '.join(self.available) or '(none)'}"
        )


class CommandFailedError(NodeThingError):
    """The Device completed a command with an error instead of a result"""

    def __init__(self, command_id: str, message: str):
        self.command_id = command_id
        super().__init__(message)


class CommandTimeoutError(NodeThingError):
    """A pending command was not completed within its deadline"""

    def __init__(self, command_id: str, timeout: float):
        self.command_id = command_id
        self.timeout = timeout
        super().__init__(f"Command {command_id} did not complete within {timeout}s")
