"""
ICMP liveness prober.

Runs the system ``ping`` binary once per IP. Probing is best-effort: a
timeout, a missing binary or an unreachable host all resolve to
``alive=False`` and are never raised to the caller.
"""

import asyncio
import logging
import math
import re
import sys
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

_LATENCY_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms")


@dataclass(frozen=True)
class ProbeResult:
    alive: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None


def build_ping_command(ip: str, timeout: float) -> List[str]:
    """Single-echo ping command for the current platform."""
    wait = max(1, math.ceil(timeout))
    if sys.platform == "darwin":
        # -W is in milliseconds on macOS
        return ["ping", "-c", "1", "-W", str(wait * 1000), ip]
    return ["ping", "-c", "1", "-W", str(wait), ip]


def parse_latency(output: str) -> Optional[float]:
    match = _LATENCY_RE.search(output)
    return float(match.group(1)) if match else None


class LivenessProber:
    """Concurrent ping prober with a per-probe timeout and a concurrency cap."""

    def __init__(self, timeout: float = 2.0, max_concurrency: int = 32):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.timeout = timeout
        self.max_concurrency = max_concurrency

    async def _ping(self, ip: str, timeout: float) -> ProbeResult:
        command = build_ping_command(ip, timeout)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning(f"Could not run ping for {ip}: {e}")
            return ProbeResult(alive=False, error=str(e))

        try:
            # Grace second on top of ping's own -W wait
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout + 1)
        except asyncio.TimeoutError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            return ProbeResult(alive=False, error="timeout")

        if proc.returncode != 0:
            return ProbeResult(alive=False, error=f"ping exited with {proc.returncode}")
        return ProbeResult(alive=True, latency_ms=parse_latency(stdout.decode(errors="replace")))

    async def probe_one(self, ip: str, timeout: Optional[float] = None) -> ProbeResult:
        return await self._ping(ip, self.timeout if timeout is None else timeout)

    async def probe(
        self,
        ips: Iterable[str],
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ) -> Dict[str, ProbeResult]:
        """
        Probe every IP concurrently.

        Args:
            ips: Addresses to probe; duplicates are probed once
            timeout: Per-probe timeout in seconds, defaults to the prober's
            max_concurrency: Probes in flight at once, defaults to the prober's

        Returns:
            dict: ip -> ProbeResult for every requested IP

        Raises:
            ValueError: max_concurrency is less than 1
        """
        if max_concurrency is None:
            max_concurrency = self.max_concurrency
        elif max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        targets = sorted(set(ips))
        if not targets:
            return {}
        timeout = self.timeout if timeout is None else timeout
        semaphore = asyncio.Semaphore(max_concurrency)

        async def _bounded(ip: str) -> ProbeResult:
            async with semaphore:
                try:
                    return await self.probe_one(ip, timeout)
                except Exception as e:
                    logger.error(f"Unexpected error probing {ip}: {e}")
                    return ProbeResult(alive=False, error=str(e))

        results = await asyncio.gather(*(_bounded(ip) for ip in targets))
        return dict(zip(targets, results))
