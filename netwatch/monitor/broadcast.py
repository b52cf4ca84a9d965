"""
Broadcast hub for device snapshots.

Holds the set of connected subscribers and pushes the full device list to
each of them. Delivery is "latest snapshot wins": nothing is queued, and a
subscriber whose send fails is dropped without affecting the others.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Sequence, Set

from netwatch.core.exceptions import BroadcastSendError
from netwatch.schemas.device import DeviceRecord, serialize_snapshot

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...


class BroadcastHub:
    """Concurrency-safe subscriber set with snapshot fan-out."""

    def __init__(
        self,
        snapshot_source: Callable[[], Sequence[DeviceRecord]],
        send_timeout: Optional[float] = 5.0,
    ):
        """
        Args:
            snapshot_source: Blocking callable returning the current device
                set, normally ``DeviceRegistry.find_all``
            send_timeout: Seconds a single send may take before the
                subscriber is treated as failed; None disables the limit
        """
        self._snapshot_source = snapshot_source
        self._send_timeout = send_timeout
        self._subscribers: Set[Subscriber] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __contains__(self, connection: Subscriber) -> bool:
        return connection in self._subscribers

    async def _send(self, connection: Subscriber, payload: str) -> None:
        if not connection.is_open:
            raise BroadcastSendError("connection is closed")
        if self._send_timeout is None:
            await connection.send_text(payload)
        else:
            await asyncio.wait_for(connection.send_text(payload), self._send_timeout)

    async def subscribe(self, connection: Subscriber) -> bool:
        """
        Register a subscriber and send it the current snapshot.

        Returns:
            bool: False if the initial send failed and the subscriber was
            not kept
        """
        async with self._lock:
            devices = await asyncio.to_thread(self._snapshot_source)
            self._subscribers.add(connection)
            try:
                await self._send(connection, serialize_snapshot(devices))
            except Exception as e:
                self._subscribers.discard(connection)
                logger.warning(f"Initial snapshot to {connection!r} failed, dropping it: {e}")
                return False
        logger.info(f"Subscriber connected ({self.subscriber_count} active)")
        return True

    async def unsubscribe(self, connection: Subscriber) -> None:
        async with self._lock:
            if connection in self._subscribers:
                self._subscribers.discard(connection)
                logger.info(f"Subscriber disconnected ({self.subscriber_count} active)")

    async def _fan_out(self, payload: str) -> int:
        # Caller holds self._lock
        targets: List[Subscriber] = list(self._subscribers)
        if not targets:
            return 0
        outcomes = await asyncio.gather(
            *(self._send(connection, payload) for connection in targets),
            return_exceptions=True,
        )
        delivered = 0
        for connection, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                self._subscribers.discard(connection)
                logger.warning(f"Dropping subscriber {connection!r}: {outcome!r}")
            else:
                delivered += 1
        return delivered

    async def broadcast(self, devices: Sequence[DeviceRecord]) -> int:
        """
        Send one snapshot to every subscriber.

        Returns:
            int: Number of subscribers that received the snapshot
        """
        payload = serialize_snapshot(devices)
        async with self._lock:
            delivered = await self._fan_out(payload)
        logger.debug(f"Broadcast {len(devices)} devices to {delivered} subscribers")
        return delivered

    async def broadcast_current(self) -> int:
        """
        Read the current device set and send it to every subscriber.

        The read happens while the hub lock is held, so snapshots reach
        subscribers in the order they were read and the last one sent is
        never older than an earlier one.

        Returns:
            int: Number of subscribers that received the snapshot

        Raises:
            StorageError: The snapshot source could not be read
        """
        async with self._lock:
            devices = await asyncio.to_thread(self._snapshot_source)
            delivered = await self._fan_out(serialize_snapshot(devices))
        logger.debug(f"Broadcast {len(devices)} devices to {delivered} subscribers")
        return delivered
