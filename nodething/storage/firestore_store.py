"""
Firestore backend for the document store adapter.

Collections are top-level Firestore collections named
<deviceName><suffix>. Tails use collection on_snapshot listeners:

  - the first snapshot (current contents) is skipped, so a tail only
    reports writes made after it started
  - ADDED changes become insert records carrying the full document
  - MODIFIED changes become update records carrying only the document id
  - REMOVED changes are ignored

Upserts run inside a Firestore transaction so that at most one document
per key value can exist.
"""

import logging
import os
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials
from firebase_admin import firestore as firebase_firestore
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from ..config import ThingConfig
from ..errors import (
    CollectionLookupError,
    StoreConnectionError,
    StoreReadError,
    StoreWriteError,
)
from .base import ChangeRecord, ChangeType, Collection, StoreHandle, Watch

logger = logging.getLogger(__name__)

EMULATOR_SCHEME = "emulator://"
FIRESTORE_SCHEME = "firestore://"


def _to_document(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


class FirestoreWatch(Watch):
    """Wraps the on_snapshot watch returned by the SDK"""

    def __init__(self, watch):
        self._watch = watch

    def unsubscribe(self) -> None:
        if self._watch:
            self._watch.unsubscribe()
            self._watch = None


class FirestoreCollection(Collection):
    """A top-level Firestore collection"""

    def __init__(self, client, feed_client, name: str):
        self.name = name
        self._client = client
        self._ref = client.collection(name)
        self._feed_ref = feed_client.collection(name)

    def _query(self, filter: Dict[str, Any]):
        query = self._ref
        for key, value in filter.items():
            query = query.where(filter=FieldFilter(key, "==", value))
        return query

    def new_id(self) -> str:
        return self._ref.document().id

    def find_one(self, filter):
        try:
            if set(filter) == {"id"}:
                snapshot = self._ref.document(filter["id"]).get()
                return _to_document(snapshot) if snapshot.exists else None
            for snapshot in self._query(filter).limit(1).stream():
                return _to_document(snapshot)
            return None
        except google_exceptions.GoogleAPICallError as e:
            raise StoreReadError(f"find_one on {self.name} failed: {e}") from e

    def find(self, filter=None, order_by=None):
        try:
            query = self._query(filter or {})
            if order_by:
                query = query.order_by(order_by)
            return [_to_document(snapshot) for snapshot in query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            raise StoreReadError(f"find on {self.name} failed: {e}") from e

    def insert(self, document):
        data = dict(document)
        document_id = data.pop("id", None)
        ref = self._ref.document(document_id) if document_id else self._ref.document()
        try:
            ref.create(data)
        except google_exceptions.GoogleAPICallError as e:
            raise StoreWriteError(f"insert into {self.name} failed: {e}") from e
        return ref.id

    def update_one(self, filter, fields):
        try:
            if set(filter) == {"id"}:
                self._ref.document(filter["id"]).update(fields)
                return True
            for snapshot in self._query(filter).limit(1).stream():
                snapshot.reference.update(fields)
                return True
            return False
        except google_exceptions.NotFound:
            return False
        except google_exceptions.GoogleAPICallError as e:
            raise StoreWriteError(f"update_one on {self.name} failed: {e}") from e

    def update_many(self, filter, fields):
        try:
            batch = self._client.batch()
            count = 0
            for snapshot in self._query(filter).stream():
                batch.update(snapshot.reference, fields)
                count += 1
            if count:
                batch.commit()
            return count
        except google_exceptions.GoogleAPICallError as e:
            raise StoreWriteError(f"update_many on {self.name} failed: {e}") from e

    def upsert(self, key, value, fields):
        query = self._query({key: value}).limit(1)
        new_ref = self._ref.document()

        @firestore.transactional
        def _upsert(transaction):
            for snapshot in transaction.get(query):
                transaction.update(snapshot.reference, fields)
                return snapshot.id, False
            transaction.create(new_ref, {key: value, **fields})
            return new_ref.id, True

        try:
            return _upsert(self._client.transaction())
        except google_exceptions.GoogleAPICallError as e:
            raise StoreWriteError(f"upsert of {key}={value!r} in {self.name} failed: {e}") from e

    def tail(self, on_change):
        # Track if this is the initial load
        is_initial = [True]

        def on_snapshot(collection_snapshot, changes, read_time):
            if is_initial[0]:
                is_initial[0] = False
                return
            for change in changes:
                try:
                    kind = change.type.name
                    if kind == "ADDED":
                        record = ChangeRecord(ChangeType.INSERT, change.document.id, _to_document(change.document))
                    elif kind == "MODIFIED":
                        record = ChangeRecord(ChangeType.UPDATE, change.document.id)
                    else:
                        continue
                    on_change(record)
                except Exception as e:
                    logger.error(f"Error handling change on {self.name}: {e}", exc_info=True)

        watch = self._feed_ref.on_snapshot(on_snapshot)
        logger.info(f"✓ Listener ACTIVE on {self.name}")
        return FirestoreWatch(watch)


class FirestoreStore(StoreHandle):
    """Store handle over a Firestore client"""

    def __init__(self, client, feed_client=None, app=None):
        self.client = client
        self.feed_client = feed_client or client
        self._app = app

    def get_collection(self, name: str) -> FirestoreCollection:
        if not name or "/" in name:
            logger.error(f"Could not get the collection {name!r}. Collection names must be non-empty and contain no '/'.")
            raise CollectionLookupError(f"Invalid collection name: {name!r}")
        try:
            return FirestoreCollection(self.client, self.feed_client, name)
        except ValueError as e:
            raise CollectionLookupError(f"Could not get the collection {name}: {e}") from e

    def close(self) -> None:
        clients = [self.client]
        if self.feed_client is not self.client:
            clients.append(self.feed_client)
        for client in clients:
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Error closing Firestore client: {e}")
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None
        logger.info("Disconnected from Firestore")


def _resolve_credentials_path(store_uri: str) -> str:
    cred_path = store_uri[len(FIRESTORE_SCHEME):] if store_uri.startswith(FIRESTORE_SCHEME) else store_uri
    if not os.path.exists(cred_path):
        if not os.path.isabs(cred_path):
            abs_path = os.path.expanduser(f"~/{cred_path}")
            if os.path.exists(abs_path):
                return abs_path
        raise FileNotFoundError(f"Firebase credentials not found at {cred_path}")
    if not os.access(cred_path, os.R_OK):
        raise PermissionError(f"No read permission for Firebase credentials at {cred_path}")
    return cred_path


def _emulator_clients(config: ThingConfig):
    host = config.store_uri[len(EMULATOR_SCHEME):]
    os.environ["FIRESTORE_EMULATOR_HOST"] = host
    project = config.project_id or "demo-nodething"
    client = firestore.Client(project=project, database=config.database_name)
    feed_client = client
    if config.change_feed_source and config.change_feed_source != config.database_name:
        feed_client = firestore.Client(project=project, database=config.change_feed_source)
    logger.info(f"Using Firestore emulator at {host} (project: {project})")
    return client, feed_client


def connect_firestore(config: ThingConfig) -> FirestoreStore:
    """Open a Firestore-backed store handle for ``config``"""
    try:
        if config.store_uri.startswith(EMULATOR_SCHEME):
            client, feed_client = _emulator_clients(config)
            return FirestoreStore(client, feed_client)

        cred_path = _resolve_credentials_path(config.store_uri)
        logger.info(f"Loading Firebase credentials from: {cred_path}")
        cred = credentials.Certificate(cred_path)
        options = {"projectId": config.project_id} if config.project_id else None
        app_name = f"nodething-{config.device_name or 'default'}-{id(config)}"
        app = firebase_admin.initialize_app(cred, options, name=app_name)

        client = firebase_firestore.client(app=app, database_id=config.database_name)
        feed_client = client
        if config.change_feed_source and config.change_feed_source != config.database_name:
            feed_client = firebase_firestore.client(app=app, database_id=config.change_feed_source)

        logger.info("Connected to Firestore successfully")
        return FirestoreStore(client, feed_client, app=app)
    except (OSError, ValueError, google_exceptions.GoogleAPICallError) as e:
        logger.error(f"Error while establishing connection to Firestore ({config.store_uri}): {e}")
        raise StoreConnectionError(str(e)) from e
