"""Tests for the broadcast hub."""

import asyncio
import time

import pytest

from netwatch.core.exceptions import StorageError
from netwatch.models.device import DeviceStatus
from netwatch.monitor.broadcast import BroadcastHub


def _wire(registry):
    return [d.to_wire() for d in registry.find_all()]


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_new_subscriber_gets_current_snapshot(self, registry, subscriber_factory):
        registry.upsert("10.0.0.5", {"hostname": "host1", "device_type": "router"})
        registry.upsert("10.0.0.6", {"status": DeviceStatus.UP})
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory()

        assert await hub.subscribe(sub)

        assert sub.snapshots == [_wire(registry)]
        assert sub in hub
        assert hub.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_uses_wire_names(self, registry, subscriber_factory):
        registry.upsert("10.0.0.5", {"hostname": "host1", "device_type": "router"})
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory()
        await hub.subscribe(sub)

        record = sub.snapshots[0][0]
        assert set(record) == {"ip", "hostname", "deviceType", "status", "lastSeen", "statusHistory"}
        assert record["status"] == "down"
        assert record["statusHistory"][0]["status"] == "down"

    @pytest.mark.asyncio
    async def test_failed_initial_send_is_not_kept(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory(fail=True)

        assert await hub.subscribe(sub) is False
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, subscriber_factory):
        def broken():
            raise StorageError("db down")

        hub = BroadcastHub(broken)
        with pytest.raises(StorageError):
            await hub.subscribe(subscriber_factory())
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory()
        await hub.subscribe(sub)

        await hub.unsubscribe(sub)
        await hub.unsubscribe(sub)

        assert hub.subscriber_count == 0
        assert sub not in hub


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_all_subscribers_receive(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        subs = [subscriber_factory() for _ in range(3)]
        for sub in subs:
            await hub.subscribe(sub)

        registry.upsert("10.0.0.5", {"hostname": "host1"})
        delivered = await hub.broadcast(registry.find_all())

        assert delivered == 3
        for sub in subs:
            assert sub.snapshots[-1] == _wire(registry)

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_dropped(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        healthy = subscriber_factory()
        flaky = subscriber_factory()
        await hub.subscribe(healthy)
        await hub.subscribe(flaky)

        flaky.fail = True
        registry.upsert("10.0.0.5", {})
        delivered = await hub.broadcast(registry.find_all())

        assert delivered == 1
        assert flaky not in hub
        assert healthy.snapshots[-1] == _wire(registry)

        # Dropped subscriber receives nothing further
        flaky.fail = False
        await hub.broadcast(registry.find_all())
        assert len(flaky.snapshots) == 1
        assert len(healthy.snapshots) == 3

    @pytest.mark.asyncio
    async def test_closed_connection_is_pruned(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory()
        await hub.subscribe(sub)

        sub.open = False
        assert await hub.broadcast([]) == 0
        assert hub.subscriber_count == 0
        assert len(sub.snapshots) == 1

    @pytest.mark.asyncio
    async def test_slow_subscriber_times_out(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all, send_timeout=0.05)
        fast = subscriber_factory()
        await hub.subscribe(fast)
        slow = subscriber_factory()
        await hub.subscribe(slow)

        slow.delay = 1.0
        delivered = await hub.broadcast(registry.find_all())

        assert delivered == 1
        assert slow not in hub
        assert fast in hub

    @pytest.mark.asyncio
    async def test_no_subscribers(self, registry):
        hub = BroadcastHub(registry.find_all)
        assert await hub.broadcast(registry.find_all()) == 0

    @pytest.mark.asyncio
    async def test_subscribe_during_broadcast(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        slowish = subscriber_factory()
        await hub.subscribe(slowish)
        slowish.delay = 0.05

        late = subscriber_factory()
        await asyncio.gather(hub.broadcast(registry.find_all()), hub.subscribe(late))

        assert hub.subscriber_count == 2
        assert late.snapshots[0] == _wire(registry)


class TestBroadcastCurrent:
    @pytest.mark.asyncio
    async def test_sends_fresh_snapshot(self, registry, subscriber_factory):
        hub = BroadcastHub(registry.find_all)
        sub = subscriber_factory()
        await hub.subscribe(sub)
        registry.upsert("10.0.0.5", {"status": DeviceStatus.UP})

        assert await hub.broadcast_current() == 1
        assert sub.snapshots[-1] == _wire(registry)

    @pytest.mark.asyncio
    async def test_snapshots_are_sent_in_read_order(self, subscriber_factory):
        reads = []

        def source():
            reads.append(len(reads))
            if len(reads) == 2:
                time.sleep(0.2)
            return []

        hub = BroadcastHub(source)
        sub = subscriber_factory()
        await hub.subscribe(sub)
        sends = []
        original_send = sub.send_text

        async def tracking_send(data):
            sends.append(reads[-1])
            await original_send(data)

        sub.send_text = tracking_send
        first = asyncio.create_task(hub.broadcast_current())
        await asyncio.sleep(0.05)
        await asyncio.gather(first, hub.broadcast_current())

        # Each send carries the read taken immediately before it
        assert sends == [1, 2]

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, registry, subscriber_factory):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) > 1:
                raise StorageError("db down")
            return registry.find_all()

        hub = BroadcastHub(flaky)
        sub = subscriber_factory()
        await hub.subscribe(sub)

        with pytest.raises(StorageError):
            await hub.broadcast_current()
        assert hub.subscriber_count == 1
        assert len(sub.snapshots) == 1
