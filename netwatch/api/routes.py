"""HTTP endpoints for adding and listing monitored devices."""

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from netwatch.core.exceptions import StorageError
from netwatch.schemas.device import AddDeviceRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Devices"])


@router.post("/add-ip")
async def add_ip(body: AddDeviceRequest, request: Request):
    """Probe a device right away and create or update its record."""
    monitor = request.app.state.monitor
    try:
        device = await monitor.add_or_update_device(
            body.ip_address, hostname=body.hostname, device_type=body.device
        )
    except StorageError as e:
        logger.error(f"Error checking IP address {body.ip_address}: {e}")
        return JSONResponse(status_code=500, content={"error": "Error checking IP address"})
    return device.to_wire()


@router.get("/devices")
async def list_devices(request: Request):
    try:
        devices = await request.app.state.monitor.list_devices()
    except StorageError as e:
        logger.error(f"Error fetching devices: {e}")
        return JSONResponse(status_code=500, content={"error": "Error fetching devices"})
    return [device.to_wire() for device in devices]


@router.get("/devices/{ip}")
async def get_device(ip: str, request: Request):
    registry = request.app.state.registry
    try:
        device = await asyncio.to_thread(registry.get, ip)
    except StorageError as e:
        logger.error(f"Error fetching device {ip}: {e}")
        return JSONResponse(status_code=500, content={"error": "Error fetching device"})
    if device is None:
        return JSONResponse(status_code=404, content={"error": "Device not found"})
    return device.to_wire()


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "monitor_running": request.app.state.monitor.is_running,
        "subscribers": request.app.state.hub.subscriber_count,
    }
