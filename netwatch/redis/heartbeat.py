#!/usr/bin/env python3
"""
Redis heartbeat store for probed devices.
A device's ``lastSeen`` only moves on a status change; this store keeps the
time of the last successful probe in a Redis key whose TTL lapses when the
device stops answering.
"""

import redis
import logging
from datetime import datetime
from typing import Optional

from netwatch.models.device import utcnow

logger = logging.getLogger(__name__)


class RedisHeartbeatStore:
    """Tracks last-confirmed-reachable time per device IP using Redis TTL keys."""

    # Prefix for heartbeat keys in Redis
    KEY_PREFIX = "device:heartbeat:"

    def __init__(self, host="localhost", port=6379, db=0, password=None, client=None):
        """Initialize Redis connection."""
        self.redis = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True,  # Return strings instead of bytes
        )
        logger.info(f"Redis heartbeat store using {host}:{port}/db{db}")

    @classmethod
    def key_for(cls, ip: str) -> str:
        return f"{cls.KEY_PREFIX}{ip}"

    def mark_seen(self, ip: str, ttl_seconds: int, seen_at: Optional[datetime] = None) -> bool:
        """
        Record a successful probe for a device.

        Args:
            ip: Address of the device
            ttl_seconds: Seconds before the heartbeat is considered stale
            seen_at: Probe time, defaults to now (UTC)

        Returns:
            bool: Success status
        """
        key = self.key_for(ip)
        try:
            # Ensure TTL is at least 1 second
            ttl_seconds = max(1, int(ttl_seconds))
            self.redis.setex(key, ttl_seconds, (seen_at or utcnow()).isoformat())
            logger.debug(f"Heartbeat for {ip} set with TTL of {ttl_seconds}s")
            return True
        except redis.exceptions.RedisError as e:
            logger.error(f"Error recording heartbeat for {ip}: {e}")
            return False

    def last_heartbeat(self, ip: str) -> Optional[datetime]:
        """
        Get the time of the last successful probe.

        Returns:
            datetime: Last heartbeat, or None if it expired, was never set,
            or Redis is unavailable
        """
        try:
            value = self.redis.get(self.key_for(ip))
        except redis.exceptions.RedisError as e:
            logger.error(f"Error reading heartbeat for {ip}: {e}")
            return None
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring malformed heartbeat for {ip}: {value!r}")
            return None

    def get_ttl(self, ip: str) -> Optional[int]:
        """
        Get remaining TTL for a device heartbeat.

        Returns:
            int: Remaining TTL in seconds, or None if the heartbeat is gone
        """
        try:
            ttl = self.redis.ttl(self.key_for(ip))
            return ttl if ttl > 0 else None
        except redis.exceptions.RedisError as e:
            logger.error(f"Error getting heartbeat TTL for {ip}: {e}")
            return None

