"""Pydantic shapes for device records as they leave the registry and the API."""

import ipaddress
import json
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from netwatch.models.device import DeviceStatus


class StatusEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: DeviceStatus
    timestamp: datetime


class DeviceRecord(BaseModel):
    """
    Detached snapshot of one device.

    Field names are snake_case in Python and camelCase on the wire
    (``deviceType``, ``lastSeen``, ``statusHistory``).
    """

    model_config = ConfigDict(populate_by_name=True)

    ip: str
    hostname: Optional[str] = None
    device_type: Optional[str] = Field(default=None, alias="deviceType")
    status: DeviceStatus
    last_seen: datetime = Field(alias="lastSeen")
    status_history: List[StatusEntry] = Field(alias="statusHistory")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def serialize_snapshot(devices: Sequence[DeviceRecord]) -> str:
    """Serialize a full device snapshot into the JSON text pushed to subscribers."""
    return json.dumps([device.to_wire() for device in devices])


class AddDeviceRequest(BaseModel):
    """Body of ``POST /add-ip``."""

    model_config = ConfigDict(populate_by_name=True)

    ip_address: str = Field(alias="ipAddress", min_length=1)
    hostname: str = Field(min_length=1)
    device: str = Field(min_length=1)

    @field_validator("ip_address")
    @classmethod
    def _valid_ip(cls, value: str) -> str:
        value = value.strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"'{value}' is not a valid IP address")
        return value
