"""Change-feed listener: typed inserted/updated notifications for one collection"""

import logging
from typing import Any, Callable, Dict, Optional

from ..errors import StaleUpdateError, StoreReadError
from ..storage.base import ChangeRecord, ChangeType, Collection, Watch

logger = logging.getLogger(__name__)

DocumentCallback = Callable[[Dict[str, Any]], None]


class ChangeFeedListener:
    """Tail a collection and report every insert and update made after tail().

    Update records only identify the changed document, so the listener
    re-fetches the current document before notifying. An update whose
    document has disappeared is logged as a StaleUpdateError and dropped.
    Notifications for the collection arrive in feed order, on the thread the
    store delivers the feed on.
    """

    def __init__(
        self,
        collection: Collection,
        on_inserted: Optional[DocumentCallback] = None,
        on_updated: Optional[DocumentCallback] = None,
    ):
        self.collection = collection
        self.on_inserted = on_inserted
        self.on_updated = on_updated
        self._watch: Optional[Watch] = None

    @property
    def running(self) -> bool:
        return self._watch is not None

    def tail(self) -> Watch:
        """Start consuming the feed. Returns once the tail is set up."""
        if self._watch is None:
            self._watch = self.collection.tail(self._handle_change)
            logger.debug(f"Tailing change feed of {self.collection.name}")
        return self._watch

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
            logger.debug(f"Stopped tailing {self.collection.name}")

    def _handle_change(self, record: ChangeRecord) -> None:
        if record.type == ChangeType.INSERT:
            self._notify(self.on_inserted, record.document)
        elif record.type == ChangeType.UPDATE:
            try:
                document = self._refetch(record.document_id)
            except StaleUpdateError as e:
                logger.warning(str(e))
                return
            except StoreReadError as e:
                logger.error(f"Could not re-fetch {self.collection.name}/{record.document_id}: {e}")
                return
            self._notify(self.on_updated, document)

    def _refetch(self, document_id: str) -> Dict[str, Any]:
        document = self.collection.find_one({"id": document_id})
        if document is None:
            raise StaleUpdateError(self.collection.name, document_id)
        return document

    def _notify(self, callback: Optional[DocumentCallback], document: Dict[str, Any]) -> None:
        if callback is None:
            return
        try:
            callback(document)
        except Exception as e:
            logger.error(f"Error handling change on {self.collection.name}: {e}", exc_info=True)
