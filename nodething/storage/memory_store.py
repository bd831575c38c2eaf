"""
In-process document store with an ordered change feed.

Used for local simulation (store_uri "memory://") and by the test suite.
All writes to a collection are serialized by one lock, and every write is
appended to the queue of each active tail while that lock is held, so all
tails observe the same order. Each tail drains its queue on its own daemon
thread, the way Firestore delivers snapshots on listener threads.
"""

import copy
import logging
import queue
import threading
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import CollectionLookupError, StoreWriteError
from .base import ChangeRecord, ChangeType, Collection, StoreHandle, Watch

logger = logging.getLogger(__name__)

_STOP = object()


def _matches(document_id: str, document: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for key, value in filter.items():
        if key == "id":
            if document_id != value:
                return False
        elif document.get(key) != value:
            return False
    return True


def _with_id(document_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(document)
    result["id"] = document_id
    return result


class MemoryWatch(Watch):
    """Daemon thread delivering queued change records to one callback"""

    def __init__(self, collection: "MemoryCollection", on_change: Callable[[ChangeRecord], None]):
        self._collection = collection
        self._on_change = on_change
        self._queue: "queue.Queue" = queue.Queue()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"tail-{collection.name}",
        )
        self._thread.start()

    def push(self, record: ChangeRecord) -> None:
        self._queue.put(record)

    def _run(self):
        while True:
            record = self._queue.get()
            if record is _STOP:
                return
            try:
                self._on_change(record)
            except Exception as e:
                logger.error(f"Error delivering change on {self._collection.name}: {e}", exc_info=True)

    def unsubscribe(self) -> None:
        self._collection._remove_watch(self)
        self._queue.put(_STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=5.0)


class MemoryCollection(Collection):
    """One named collection held in process memory"""

    def __init__(self, name: str):
        self.name = name
        self._documents: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._watches: List[MemoryWatch] = []
        self._lock = threading.RLock()

    def _publish(self, record: ChangeRecord) -> None:
        # Caller holds self._lock
        for watch in self._watches:
            watch.push(record)

    def _remove_watch(self, watch: MemoryWatch) -> None:
        with self._lock:
            if watch in self._watches:
                self._watches.remove(watch)

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def find_one(self, filter):
        with self._lock:
            for document_id, document in self._documents.items():
                if _matches(document_id, document, filter):
                    return _with_id(document_id, document)
        return None

    def find(self, filter=None, order_by=None):
        with self._lock:
            found = [
                _with_id(document_id, document)
                for document_id, document in self._documents.items()
                if _matches(document_id, document, filter or {})
            ]
        if order_by:
            found.sort(key=lambda document: document.get(order_by))
        return found

    def insert(self, document):
        data = copy.deepcopy(dict(document))
        document_id = data.pop("id", None) or self.new_id()
        with self._lock:
            if document_id in self._documents:
                raise StoreWriteError(f"Document {self.name}/{document_id} already exists")
            self._documents[document_id] = data
            self._publish(ChangeRecord(ChangeType.INSERT, document_id, _with_id(document_id, data)))
        return document_id

    def _update(self, document_id: str, fields: Dict[str, Any]) -> None:
        # Caller holds self._lock
        self._documents[document_id].update(copy.deepcopy(fields))
        self._publish(ChangeRecord(ChangeType.UPDATE, document_id))

    def update_one(self, filter, fields):
        with self._lock:
            for document_id, document in self._documents.items():
                if _matches(document_id, document, filter):
                    self._update(document_id, fields)
                    return True
        return False

    def update_many(self, filter, fields):
        with self._lock:
            matched = [
                document_id
                for document_id, document in self._documents.items()
                if _matches(document_id, document, filter)
            ]
            for document_id in matched:
                self._update(document_id, fields)
        return len(matched)

    def upsert(self, key: str, value: Any, fields: Dict[str, Any]) -> Tuple[str, bool]:
        with self._lock:
            for document_id, document in self._documents.items():
                if document.get(key) == value:
                    self._update(document_id, fields)
                    return document_id, False
            return self.insert({key: value, **fields}), True

    def tail(self, on_change):
        with self._lock:
            watch = MemoryWatch(self, on_change)
            self._watches.append(watch)
        return watch


class MemoryStore(StoreHandle):
    """Store handle over in-process collections.

    With ``auto_create`` (the default) collections spring into existence on
    first lookup, as they do in Firestore; otherwise they must be created
    with create_collection() first.
    """

    def __init__(self, auto_create: bool = True):
        self.auto_create = auto_create
        self._collections: Dict[str, MemoryCollection] = {}
        self._lock = threading.Lock()

    def create_collection(self, name: str) -> MemoryCollection:
        with self._lock:
            if name not in self._collections:
                self._collections[name] = MemoryCollection(name)
            return self._collections[name]

    def get_collection(self, name: str) -> MemoryCollection:
        with self._lock:
            collection = self._collections.get(name)
        if collection is not None:
            return collection
        if not self.auto_create:
            logger.error(f"Could not get the collection {name}. Did you create the collection?")
            raise CollectionLookupError(f"Collection '{name}' does not exist")
        return self.create_collection(name)

    def close(self) -> None:
        with self._lock:
            collections = list(self._collections.values())
        for collection in collections:
            for watch in list(collection._watches):
                watch.unsubscribe()
        logger.info("Memory store closed")
