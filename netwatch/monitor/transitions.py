"""
Status transition engine.

Decides from a probe result and the current record whether a device changed
state, and builds the updated record. This is the only code that sets a
device's status or appends to its history; callers must hold the device's
per-IP lock while applying it and persisting the result.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from netwatch.models.device import DeviceStatus, utcnow
from netwatch.monitor.prober import ProbeResult
from netwatch.schemas.device import DeviceRecord, StatusEntry

logger = logging.getLogger(__name__)


def _merge_metadata(device: DeviceRecord, hostname: Optional[str], device_type: Optional[str]) -> DeviceRecord:
    updates = {}
    if hostname is not None and hostname != device.hostname:
        updates["hostname"] = hostname
    if device_type is not None and device_type != device.device_type:
        updates["device_type"] = device_type
    return device.model_copy(update=updates) if updates else device


def apply_probe_result(
    existing: Optional[DeviceRecord],
    ip: str,
    result: ProbeResult,
    hostname: Optional[str] = None,
    device_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[DeviceRecord, bool]:
    """
    Apply one probe observation to a device.

    Args:
        existing: Current record, or None for an unknown IP
        ip: Address that was probed
        result: Outcome of the probe
        hostname: Requested hostname, merged when given
        device_type: Requested device type, merged when given
        now: Observation time, defaults to the current UTC time

    Returns:
        tuple: (updated record, whether the status changed). The input
        record is never modified.
    """
    new_status = DeviceStatus.UP if result.alive else DeviceStatus.DOWN
    now = now or utcnow()

    if existing is None:
        device = DeviceRecord(
            ip=ip,
            hostname=hostname,
            device_type=device_type,
            status=new_status,
            last_seen=now,
            status_history=[StatusEntry(status=new_status, timestamp=now)],
        )
        logger.info(f"New device {ip} with status {new_status.value}")
        return device, True

    if existing.status == new_status:
        return _merge_metadata(existing, hostname, device_type), False

    # History timestamps never go backwards, even if the clock does
    last_timestamp = existing.status_history[-1].timestamp if existing.status_history else now
    stamp = max(now, last_timestamp)
    device = _merge_metadata(existing, hostname, device_type).model_copy(
        update={
            "status": new_status,
            "last_seen": stamp,
            "status_history": [
                *existing.status_history,
                StatusEntry(status=new_status, timestamp=stamp),
            ],
        }
    )
    logger.info(
        f"Status changed for {ip}: {existing.status.value} -> {new_status.value}"
    )
    return device, True
