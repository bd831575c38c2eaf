"""Store adapter interfaces shared by the Firestore and in-memory backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class ChangeRecord:
    """One raw change-feed entry.

    Inserts carry the full document; updates carry only the id of the
    changed document, so consumers must re-fetch it.
    """

    type: ChangeType
    document_id: str
    document: Optional[Dict[str, Any]] = None


class Watch(ABC):
    """Handle on a running tail of a collection's change feed"""

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering change records."""
        pass


class Collection(ABC):
    """Capability set of one named collection.

    Filters are dicts of equality matches; the key ``id`` matches the
    document id. Documents are returned as plain dicts including ``id``.
    Reads raise StoreReadError, writes raise StoreWriteError.
    """

    name: str

    @abstractmethod
    def new_id(self) -> str:
        """Allocate a fresh store-side document id without writing."""
        pass

    @abstractmethod
    def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def find(self, filter: Optional[Dict[str, Any]] = None, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def insert(self, document: Dict[str, Any]) -> str:
        """Insert ``document`` and return its id.

        An ``id`` key in ``document`` (from new_id()) is used as the
        document id instead of allocating one.
        """
        pass

    @abstractmethod
    def update_one(self, filter: Dict[str, Any], fields: Dict[str, Any]) -> bool:
        """Set ``fields`` on the first match. Returns False if nothing matched."""
        pass

    @abstractmethod
    def update_many(self, filter: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """Set ``fields`` on every match and return how many were updated."""
        pass

    @abstractmethod
    def upsert(self, key: str, value: Any, fields: Dict[str, Any]) -> Tuple[str, bool]:
        """Atomically update the document whose ``key`` equals ``value``, or
        create it. Returns (document id, created)."""
        pass

    @abstractmethod
    def tail(self, on_change: Callable[[ChangeRecord], None]) -> Watch:
        """Deliver every change made after this call, in feed order."""
        pass


class StoreHandle(ABC):
    """Process-wide connection to the shared store"""

    @abstractmethod
    def get_collection(self, name: str) -> Collection:
        pass

    @abstractmethod
    def close(self) -> None:
        pass
