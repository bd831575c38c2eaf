import logging

from nodething.services import ChangeFeedListener
from nodething.storage import ChangeRecord, ChangeType

from tests.helpers import Collector


class TestChangeFeedListener:
    def test_inserted_carries_full_document(self, store):
        collection = store.get_collection("lamp_status")
        inserted = Collector()
        listener = ChangeFeedListener(collection, on_inserted=inserted)
        listener.tail()

        document_id = collection.insert({"property": "temp", "value": 72})

        assert inserted.wait()
        listener.stop()
        assert inserted.calls == [({"id": document_id, "property": "temp", "value": 72},)]

    def test_updated_refetches_current_document(self, store):
        collection = store.get_collection("lamp_status")
        document_id = collection.insert({"property": "temp", "value": 72})
        updated = Collector()
        listener = ChangeFeedListener(collection, on_updated=updated)
        listener.tail()

        collection.update_one({"id": document_id}, {"value": 75})

        assert updated.wait()
        listener.stop()
        assert updated.calls[0][0]["value"] == 75
        assert updated.calls[0][0]["property"] == "temp"

    def test_stale_update_is_logged_and_suppressed(self, store, caplog):
        collection = store.get_collection("lamp_status")
        updated = Collector()
        listener = ChangeFeedListener(collection, on_updated=updated)

        with caplog.at_level(logging.WARNING, logger="nodething.services.change_feed"):
            listener._handle_change(ChangeRecord(ChangeType.UPDATE, "gone"))

        assert updated.calls == []
        assert "lamp_status/gone does not correspond to an existing document" in caplog.text

    def test_update_of_deleted_document_is_suppressed(self, store):
        collection = store.get_collection("lamp_status")
        document_id = collection.insert({"property": "temp", "value": 72})
        updated = Collector()
        listener = ChangeFeedListener(collection, on_updated=updated)

        # The update record is queued, but the document is gone before re-fetch
        del collection._documents[document_id]
        listener._handle_change(ChangeRecord(ChangeType.UPDATE, document_id))

        assert updated.calls == []

    def test_no_replay(self, store):
        collection = store.get_collection("lamp_status")
        collection.insert({"property": "before"})
        inserted = Collector()
        listener = ChangeFeedListener(collection, on_inserted=inserted)
        listener.tail()
        collection.insert({"property": "after"})

        assert inserted.wait()
        listener.stop()
        assert [doc["property"] for (doc,) in inserted.calls] == ["after"]

    def test_callback_error_does_not_stop_tail(self, store):
        collection = store.get_collection("lamp_status")
        seen = Collector(expected=2)

        def flaky(document):
            seen(document)
            if len(seen.calls) == 1:
                raise RuntimeError("boom")

        listener = ChangeFeedListener(collection, on_inserted=flaky)
        listener.tail()
        collection.insert({"property": "a"})
        collection.insert({"property": "b"})

        assert seen.wait()
        listener.stop()
        assert [doc["property"] for (doc,) in seen.calls] == ["a", "b"]

    def test_tail_is_idempotent(self, store):
        listener = ChangeFeedListener(store.get_collection("lamp_status"))
        assert listener.tail() is listener.tail()
        assert listener.running
        listener.stop()
        assert not listener.running
