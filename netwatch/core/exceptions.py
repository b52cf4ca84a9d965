"""Exceptions raised by the netwatch core."""


class NetwatchError(Exception):
    """Base class for all netwatch errors."""


class StorageError(NetwatchError):
    """A registry read or write failed."""


class DeviceNotFoundError(NetwatchError, LookupError):
    """No device is registered under the requested IP."""

    def __init__(self, ip: str):
        super().__init__(f"Device {ip} not found")
        self.ip = ip


class BroadcastSendError(NetwatchError):
    """Sending a snapshot to one subscriber failed."""
