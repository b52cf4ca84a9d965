"""
Device monitor loop.

On every tick the monitor reads all devices, probes them, applies the
transition engine under each device's lock, persists transitions and then
broadcasts a fresh snapshot. The add-device API path runs the same steps for
a single IP so both entry points share one code path.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from netwatch.core.exceptions import StorageError
from netwatch.crud.device import DeviceRegistry
from netwatch.monitor.broadcast import BroadcastHub
from netwatch.monitor.prober import LivenessProber, ProbeResult
from netwatch.monitor.transitions import apply_probe_result
from netwatch.redis.heartbeat import RedisHeartbeatStore
from netwatch.schemas.device import DeviceRecord

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    probed: int = 0
    transitioned: int = 0
    failed: List[str] = field(default_factory=list)


class DeviceMonitor:
    """Periodic probe-apply-broadcast driver plus the single-device upsert path."""

    def __init__(
        self,
        registry: DeviceRegistry,
        prober: LivenessProber,
        hub: BroadcastHub,
        heartbeats: Optional[RedisHeartbeatStore] = None,
        interval: float = 10.0,
        probe_timeout: Optional[float] = None,
        probe_concurrency: Optional[int] = None,
        heartbeat_ttl: int = 60,
        storage_retries: int = 2,
        storage_retry_delay: float = 0.5,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.registry = registry
        self.prober = prober
        self.hub = hub
        self.heartbeats = heartbeats
        self.interval = interval
        self.probe_timeout = probe_timeout
        self.probe_concurrency = probe_concurrency
        self.heartbeat_ttl = heartbeat_ttl
        self.storage_retries = max(0, storage_retries)
        self.storage_retry_delay = storage_retry_delay

        # ip -> [lock, holders]; dropped once the last holder releases
        self._ip_locks: Dict[str, list] = {}
        self._tick_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def _ip_lock(self, ip: str) -> AsyncIterator[None]:
        entry = self._ip_locks.setdefault(ip, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._ip_locks[ip]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _probe(self, ips: Iterable[str]) -> Dict[str, ProbeResult]:
        results = await self.prober.probe(ips, self.probe_timeout, self.probe_concurrency)
        if self.heartbeats is not None:
            alive = [ip for ip, result in results.items() if result.alive]
            for ip in alive:
                await asyncio.to_thread(self.heartbeats.mark_seen, ip, self.heartbeat_ttl)
        return results

    async def _save_with_retry(self, device: DeviceRecord) -> DeviceRecord:
        attempts = 1 + self.storage_retries
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(self.registry.save, device)
            except StorageError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Saving {device.ip} failed (attempt {attempt}/{attempts}): {e}"
                )
                await asyncio.sleep(self.storage_retry_delay)

    async def _apply(
        self,
        ip: str,
        result: ProbeResult,
        hostname: Optional[str] = None,
        device_type: Optional[str] = None,
        periodic: bool = False,
    ) -> Tuple[Optional[DeviceRecord], bool]:
        async with self._ip_lock(ip):
            # Re-read under the lock; the other entry point may have written since
            existing = await asyncio.to_thread(self.registry.get, ip)
            if existing is None and periodic:
                return None, False
            device, transitioned = apply_probe_result(
                existing, ip, result, hostname=hostname, device_type=device_type
            )
            if transitioned or device != existing:
                if periodic:
                    device = await self._save_with_retry(device)
                else:
                    device = await asyncio.to_thread(self.registry.save, device)
            return device, transitioned

    async def _broadcast(self) -> int:
        try:
            return await self.hub.broadcast_current()
        except StorageError as e:
            logger.error(f"Broadcast skipped, could not read devices: {e}")
            return 0

    async def run_tick(self) -> Optional[TickReport]:
        """
        Run one probe-apply-broadcast cycle.

        Returns:
            TickReport: Summary of the tick, or None if it was skipped
            because another tick was running or the device list could not
            be read
        """
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping this one")
            return None

        async with self._tick_lock:
            try:
                devices = await asyncio.to_thread(self.registry.find_all)
            except StorageError as e:
                logger.error(f"Tick aborted, could not read devices: {e}")
                return None

            results = await self._probe(device.ip for device in devices)
            report = TickReport(probed=len(results))
            for device in devices:
                try:
                    _, transitioned = await self._apply(
                        device.ip, results[device.ip], periodic=True
                    )
                except StorageError as e:
                    logger.error(f"Skipping {device.ip} this tick: {e}")
                    report.failed.append(device.ip)
                    continue
                except Exception:
                    logger.exception(f"Skipping {device.ip} this tick")
                    report.failed.append(device.ip)
                    continue
                if transitioned:
                    report.transitioned += 1

            await self._broadcast()
            logger.debug(
                f"Tick done: {report.probed} probed, {report.transitioned} changed, "
                f"{len(report.failed)} failed"
            )
            return report

    async def add_or_update_device(
        self, ip: str, hostname: Optional[str] = None, device_type: Optional[str] = None
    ) -> DeviceRecord:
        """
        Probe one device right away, record the outcome and broadcast.

        Probe failures only show up as a ``down`` status.

        Raises:
            StorageError: The device could not be read or saved
        """
        results = await self._probe([ip])
        device, _ = await self._apply(
            ip, results[ip], hostname=hostname, device_type=device_type
        )
        await self._broadcast()
        return device

    async def list_devices(self) -> List[DeviceRecord]:
        return await asyncio.to_thread(self.registry.find_all)

    def start(self) -> None:
        """Start the periodic loop as a background task."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Device monitor started, interval {self.interval}s")

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight tick finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Device monitor stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stopping.is_set():
            try:
                await self.run_tick()
            except Exception:
                logger.exception("Unexpected error during tick")

            next_tick += self.interval
            now = loop.time()
            if now >= next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                logger.warning(
                    f"Tick overran the {self.interval}s interval, skipping {missed} tick(s)"
                )
                next_tick += missed * self.interval
            try:
                await asyncio.wait_for(self._stopping.wait(), next_tick - now)
            except asyncio.TimeoutError:
                pass
