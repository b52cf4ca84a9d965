#!/usr/bin/env python3
"""
Device Status Monitor

This script shows the current status of all devices, including:
- Current status in the database
- Time of the last status change and the number of recorded changes
- Last successful probe and TTL remaining in Redis (when heartbeats are enabled)

Run this script to get a snapshot of your device status system.
"""

import argparse
import sys
import time
from datetime import datetime

from netwatch.core.config import settings
from netwatch.core.exceptions import StorageError
from netwatch.crud.device import DeviceRegistry
from netwatch.db.database import SessionLocal, engine, init_db
from netwatch.models.device import DeviceStatus
from netwatch.redis.heartbeat import RedisHeartbeatStore


def format_time_remaining(ttl_seconds):
    """Format TTL seconds into a human-readable format"""
    if ttl_seconds is None:
        return "No TTL"

    if ttl_seconds <= 0:
        return "Expired"

    minutes, seconds = divmod(int(ttl_seconds), 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    elif minutes > 0:
        return f"{minutes}m {seconds}s"
    else:
        return f"{seconds}s"


def get_device_status(registry, heartbeats=None):
    """
    Get device status information combining database and Redis data.

    Returns a list of dictionaries with device status information.
    """
    status_info = []
    try:
        devices = registry.find_all()
    except StorageError as e:
        print(f"Error fetching device status: {e}")
        return []

    for device in devices:
        heartbeat = heartbeats.last_heartbeat(device.ip) if heartbeats else None
        ttl = heartbeats.get_ttl(device.ip) if heartbeats else None
        status_info.append(
            {
                "ip": device.ip,
                "hostname": device.hostname or "",
                "device_type": device.device_type or "",
                "status": device.status.value,
                "last_seen": device.last_seen,
                "changes": len(device.status_history),
                "heartbeat": heartbeat,
                "ttl_formatted": format_time_remaining(ttl) if heartbeats else "-",
            }
        )

    return status_info


def print_device_status(status_info):
    """
    Print a formatted display of all device statuses
    """
    if not status_info:
        print("No devices found in the database.")
        return

    print("\n" + "=" * 132)
    print(
        f"{'IP':^16} | {'HOSTNAME':^18} | {'TYPE':^10} | {'STATUS':^6} | "
        f"{'LAST CHANGE':^19} | {'CHANGES':^7} | {'LAST PROBE OK':^19} | {'HEARTBEAT TTL':^15}"
    )
    print("-" * 132)

    for device in status_info:
        # Colorize status (ANSI colors)
        status_color = "\033[92m"  # Green for up
        if device["status"] == DeviceStatus.DOWN.value:
            status_color = "\033[91m"  # Red for down
        reset_color = "\033[0m"

        # Up in the database but no recent heartbeat in Redis
        sync_status = ""
        if (
            device["status"] == DeviceStatus.UP.value
            and device["ttl_formatted"] == "No TTL"
        ):
            sync_status = " ⚠️"

        last_change = device["last_seen"].strftime("%Y-%m-%d %H:%M:%S")
        heartbeat = device["heartbeat"].strftime("%Y-%m-%d %H:%M:%S") if device["heartbeat"] else "-"
        print(
            f"{device['ip']:^16} | {device['hostname'][:18]:^18} | {device['device_type'][:10]:^10} | "
            f"{status_color}{device['status']:^6}{reset_color}{sync_status} | {last_change:^19} | "
            f"{device['changes']:^7} | {heartbeat:^19} | {device['ttl_formatted']:^15}"
        )

    print("=" * 132)
    print(f"Total devices: {len(status_info)}")
    print(f"Last updated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 132)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Show the status of all monitored devices")
    parser.add_argument(
        "--watch",
        type=float,
        metavar="SECONDS",
        help="Refresh the display every SECONDS instead of printing once",
    )
    args = parser.parse_args(argv)

    init_db(engine)
    registry = DeviceRegistry(SessionLocal)
    heartbeats = None
    if settings.HEARTBEAT_ENABLED:
        heartbeats = RedisHeartbeatStore(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
        )

    print_device_status(get_device_status(registry, heartbeats))
    while args.watch:
        time.sleep(args.watch)
        print_device_status(get_device_status(registry, heartbeats))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nMonitoring stopped.")
        sys.exit(0)
