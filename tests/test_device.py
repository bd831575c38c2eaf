import logging
import threading

import pytest

from nodething import Device, NotStartedError, StoreWriteError, ThingConfig

from tests.helpers import wait_until


def insert_command(store, name, *arguments):
    return store.get_collection("lamp_queries").insert(
        {"commandName": name, "arguments": list(arguments), "pending": True, "result": None}
    )


def command_document(store, command_id):
    return store.get_collection("lamp_queries").find_one({"id": command_id})


def completed(store, command_id):
    return lambda: not command_document(store, command_id)["pending"]


class TestDeviceLifecycle:
    def test_operations_before_start_fail(self, store, config):
        device = Device(store, config)
        with pytest.raises(NotStartedError):
            device.register_command("ping", lambda complete: complete("pong"))
        with pytest.raises(NotStartedError):
            device.update_status("temp", 72)
        with pytest.raises(NotStartedError):
            device.get_status()

    def test_start_resolves_collections(self, device):
        assert device.started
        assert device.command_collection.name == "lamp_queries"
        assert device.status_collection.name == "lamp_status"

    def test_stop(self, device):
        device.stop()
        assert not device.started
        with pytest.raises(NotStartedError):
            device.get_status("temp")


class TestDeviceCommands:
    def test_handler_result_written_back(self, store, device):
        device.register_command("add", lambda a, b, complete: complete(a + b))
        command_id = insert_command(store, "add", 2, 3)

        assert wait_until(completed(store, command_id))
        document = command_document(store, command_id)
        assert document["result"] == 5
        assert document["pending"] is False
        assert "error" not in document
        assert document["lastModified"] is not None

    def test_later_registration_replaces_earlier(self, store, device):
        device.register_command("ping", lambda complete: complete("first"))
        device.register_command("ping", lambda complete: complete("second"))
        assert device.available_commands == ["ping"]

        command_id = insert_command(store, "ping")
        assert wait_until(completed(store, command_id))
        assert command_document(store, command_id)["result"] == "second"

    def test_asynchronous_completion(self, store, device):
        def slow(complete):
            threading.Timer(0.05, complete, args=("later",)).start()

        device.register_command("slow", slow)
        command_id = insert_command(store, "slow")

        assert wait_until(completed(store, command_id))
        assert command_document(store, command_id)["result"] == "later"

    def test_completion_only_writes_once(self, store, device):
        writes = []
        collection = store.get_collection("lamp_queries")
        original = collection.update_one

        def counting_update(filter, fields):
            writes.append(fields)
            return original(filter, fields)

        collection.update_one = counting_update

        def twice(complete):
            assert complete("one") is True
            assert complete("two") is False

        device.register_command("twice", twice)
        command_id = insert_command(store, "twice")

        assert wait_until(completed(store, command_id))
        assert command_document(store, command_id)["result"] == "one"
        assert len(writes) == 1

    def test_redelivered_command_runs_once(self, store, device):
        calls = []
        device.register_command("count", lambda complete: calls.append(1))
        document = {"id": "cmd-1", "commandName": "count", "arguments": [], "pending": True}

        device._on_command(document)
        device._on_command(document)

        assert calls == [1]

    def test_completed_documents_are_ignored(self, device):
        calls = []
        device.register_command("count", lambda complete: calls.append(1))
        device._on_command({"id": "cmd-2", "commandName": "count", "arguments": [], "pending": False})
        assert calls == []

    def test_handler_exception_completes_with_error(self, store, device):
        def broken(complete):
            raise ValueError("sensor offline")

        device.register_command("broken", broken)
        command_id = insert_command(store, "broken")

        assert wait_until(completed(store, command_id))
        document = command_document(store, command_id)
        assert document["error"] == "sensor offline"
        assert document["result"] is None

    def test_unhandled_command_is_left_pending(self, store, device, caplog):
        with caplog.at_level(logging.WARNING, logger="nodething.services.device"):
            device._on_command({"id": "cmd-3", "commandName": "unknown", "arguments": [], "pending": True})
        assert "No handler registered for command 'unknown'" in caplog.text

        command_id = insert_command(store, "unknown")
        assert not wait_until(completed(store, command_id), timeout=0.3)

    def test_unhandled_command_fails_when_configured(self, store):
        config = ThingConfig(device_name="lamp", fail_unhandled_commands=True)
        device = Device(store, config)
        device.start()
        try:
            command_id = insert_command(store, "unknown")
            assert wait_until(completed(store, command_id))
            assert "No handler registered for command 'unknown'" in command_document(store, command_id)["error"]
        finally:
            device.stop()

    def test_write_failure_is_logged(self, store, device, caplog):
        def failing_update(filter, fields):
            raise StoreWriteError("disk full")

        store.get_collection("lamp_queries").update_one = failing_update
        with caplog.at_level(logging.ERROR, logger="nodething.services.device"):
            device._write_completion("cmd-4", "ping", "pong", None)
        assert "disk full" in caplog.text

    def test_malformed_command_is_ignored(self, device, caplog):
        with caplog.at_level(logging.WARNING, logger="nodething.services.device"):
            device._on_command({"id": "cmd-5", "arguments": [], "pending": True})
        assert "malformed command document cmd-5" in caplog.text


class TestDeviceStatus:
    def test_round_trip(self, device):
        device.update_status("temp", 72)
        assert device.get_status("temp") == 72

    def test_missing_property(self, device):
        assert device.get_status("nothing") is None

    def test_repeated_updates_keep_one_document(self, store, device):
        first_id = device.update_status("temp", 72)
        second_id = device.update_status("temp", 75)

        documents = store.get_collection("lamp_status").find({"property": "temp"})
        assert first_id == second_id
        assert len(documents) == 1
        assert documents[0]["value"] == 75

    def test_all_properties_ordered_by_name(self, device):
        device.update_status("temp", 72)
        device.update_status("humidity", 40)
        documents = device.get_status()
        assert [(d["property"], d["value"]) for d in documents] == [("humidity", 40), ("temp", 72)]
        assert all("id" in d and "lastModified" in d for d in documents)

    def test_concurrent_updates_keep_one_document(self, store, device):
        start = threading.Barrier(10)

        def writer(n):
            start.wait()
            device.update_status("temp", n)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store.get_collection("lamp_status").find({"property": "temp"})) == 1

    def test_write_failure_propagates(self, store, device):
        def failing_upsert(key, value, fields):
            raise StoreWriteError("read only")

        store.get_collection("lamp_status").upsert = failing_upsert
        with pytest.raises(StoreWriteError):
            device.update_status("temp", 72)
