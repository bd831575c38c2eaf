import asyncio

import pytest

from nodething import DeviceServer, MemoryStore, Sentinel, ThingConfig


@pytest.fixture
def server_config():
    return ThingConfig(device_name="lamp", heartbeat_interval=0.01)


class TestDeviceServer:
    def test_start_publishes_online_and_answers_builtins(self, store, server_config):
        server = DeviceServer(server_config, store=store)

        async def scenario():
            await server.start()
            with Sentinel(store, server_config) as sentinel:
                assert sentinel.get_status("status") == "online"
                assert sentinel.call("ping", timeout=2) == "pong"
                assert sentinel.call("get_status", "status", timeout=2) == "online"
            await server.stop()

        asyncio.run(scenario())
        assert server.device.available_commands == ["get_status", "ping"]

    def test_stop_publishes_offline_and_keeps_borrowed_store(self, store, server_config):
        server = DeviceServer(server_config, store=store)

        async def scenario():
            await server.start()
            await server.stop()

        asyncio.run(scenario())
        assert not server.running
        status = store.get_collection("lamp_status").find_one({"property": "status"})
        assert status["value"] == "offline"
        # Store is still usable after the server stopped
        store.get_collection("lamp_status").find()

    def test_heartbeat_updates_last_seen(self, store, server_config):
        server = DeviceServer(server_config, store=store)

        async def scenario():
            task = asyncio.create_task(server.run())
            while server.heartbeat_count < 3:
                await asyncio.sleep(0.01)
            await server.stop()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(scenario())
        last_seen = store.get_collection("lamp_status").find({"property": "lastSeen"})
        assert len(last_seen) == 1
        assert server.heartbeat_count >= 3

    def test_stop_interrupts_heartbeat_wait(self, store):
        server = DeviceServer(ThingConfig(device_name="lamp", heartbeat_interval=30), store=store)

        async def scenario():
            task = asyncio.create_task(server.run())
            while server.heartbeat_count < 1:
                await asyncio.sleep(0.01)
            await server.stop()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(scenario())
        assert server.heartbeat_count == 1

    def test_stop_before_start_is_noop(self, server_config):
        server = DeviceServer(server_config, store=MemoryStore())
        asyncio.run(server.stop())
        assert server.device is None

    def test_connects_own_store(self, server_config):
        server = DeviceServer(server_config)

        async def scenario():
            await server.start()
            assert isinstance(server.store, MemoryStore)
            await server.stop()

        asyncio.run(scenario())
