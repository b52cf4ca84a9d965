import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from netwatch.core.exceptions import DeviceNotFoundError, StorageError
from netwatch.models.device import Device, DeviceStatus, utcnow
from netwatch.models.device_history import DeviceHistory
from netwatch.schemas.device import DeviceRecord, StatusEntry

logger = logging.getLogger(__name__)

# Fields an upsert may carry; ``ip`` is the key and never changes
UPSERT_FIELDS = frozenset(
    {"hostname", "device_type", "status", "last_seen", "status_history"}
)


def get_device(db: Session, ip: str) -> Optional[Device]:
    """Get a device by IP"""
    return db.query(Device).filter(Device.ip == ip).first()


def to_record(db_device: Device) -> DeviceRecord:
    """Build a detached snapshot from a loaded ORM row."""
    return DeviceRecord(
        ip=db_device.ip,
        hostname=db_device.hostname,
        device_type=db_device.device_type,
        status=DeviceStatus(db_device.status),
        last_seen=db_device.last_seen,
        status_history=[
            StatusEntry(status=DeviceStatus(entry.status), timestamp=entry.timestamp)
            for entry in db_device.history
        ],
    )


def _history_tail(stored: List[DeviceHistory], supplied: List[StatusEntry]) -> List[StatusEntry]:
    """
    Return the entries of ``supplied`` that are not stored yet.

    The stored history must be a prefix of the supplied one; history is
    append-only, so anything else is a caller error.
    """
    if len(supplied) < len(stored):
        raise ValueError("status_history may only grow")
    for db_entry, entry in zip(stored, supplied):
        if db_entry.status != entry.status.value or db_entry.timestamp != entry.timestamp:
            raise ValueError("status_history must extend the stored history")
    return supplied[len(stored):]


class DeviceRegistry:
    """
    Durable store of device records keyed by IP.

    All writes go through ``upsert``, which holds a per-IP lock for the
    duration of its transaction so concurrent writers for the same IP cannot
    lose each other's updates.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        # ip -> [lock, holders]; an entry lives only while someone uses it
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _ip_lock(self, ip: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(ip, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[ip]

    def upsert(self, ip: str, fields: Optional[Mapping[str, Any]] = None) -> DeviceRecord:
        """
        Create the device if ``ip`` is unseen, otherwise merge ``fields`` into it.

        Args:
            ip: Key of the device
            fields: Any of hostname, device_type, status, last_seen and
                status_history (the full sequence, stored entries first)

        Returns:
            DeviceRecord: The committed record

        Raises:
            StorageError: The database read or write failed
            ValueError: Unknown field, or a change that would break the
                history invariants
        """
        fields = dict(fields or {})
        unknown = set(fields) - UPSERT_FIELDS
        if unknown:
            raise ValueError(f"Unknown device fields: {', '.join(sorted(unknown))}")

        with self._ip_lock(ip):
            db = self._session_factory()
            try:
                db_device = get_device(db, ip)
                if db_device is None:
                    db_device = self._create(ip, fields)
                    db.add(db_device)
                    logger.debug(f"Device {ip} created with status {db_device.status}")
                else:
                    self._merge(db_device, fields)
                db.commit()
                return to_record(db_device)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Error upserting device {ip}: {e}")
                raise StorageError(f"Error upserting device {ip}: {e}") from e
            finally:
                db.close()

    def _create(self, ip: str, fields: Dict[str, Any]) -> Device:
        history = list(fields.get("status_history") or [])
        status = fields.get("status")
        if not history:
            status = DeviceStatus(status or DeviceStatus.DOWN)
            history = [StatusEntry(status=status, timestamp=fields.get("last_seen") or utcnow())]
        elif status is None:
            status = history[-1].status
        if DeviceStatus(status) != history[-1].status:
            raise ValueError(f"Device {ip}: status does not match the last history entry")

        db_device = Device(
            ip=ip,
            hostname=fields.get("hostname"),
            device_type=fields.get("device_type"),
            status=DeviceStatus(status).value,
            last_seen=fields.get("last_seen") or history[-1].timestamp,
        )
        for entry in history:
            db_device.history.append(
                DeviceHistory(status=entry.status.value, timestamp=entry.timestamp)
            )
        return db_device

    def _merge(self, db_device: Device, fields: Dict[str, Any]) -> None:
        if "status_history" in fields:
            for entry in _history_tail(db_device.history, list(fields["status_history"])):
                db_device.history.append(
                    DeviceHistory(status=entry.status.value, timestamp=entry.timestamp)
                )
        if fields.get("status") is not None:
            db_device.status = DeviceStatus(fields["status"]).value
        if db_device.status != db_device.history[-1].status:
            raise ValueError(
                f"Device {db_device.ip}: status does not match the last history entry"
            )
        if fields.get("hostname") is not None:
            db_device.hostname = fields["hostname"]
        if fields.get("device_type") is not None:
            db_device.device_type = fields["device_type"]
        if fields.get("last_seen") is not None:
            db_device.last_seen = fields["last_seen"]

    def save(self, device: DeviceRecord) -> DeviceRecord:
        """Persist a full record produced by the transition engine."""
        return self.upsert(
            device.ip,
            {
                "hostname": device.hostname,
                "device_type": device.device_type,
                "status": device.status,
                "last_seen": device.last_seen,
                "status_history": device.status_history,
            },
        )

    def find_all(self) -> List[DeviceRecord]:
        """Snapshot of every registered device, ordered by IP."""
        db = self._session_factory()
        try:
            devices = db.query(Device).order_by(Device.ip).all()
            return [to_record(device) for device in devices]
        except SQLAlchemyError as e:
            logger.error(f"Error reading devices: {e}")
            raise StorageError(f"Error reading devices: {e}") from e
        finally:
            db.close()

    def get(self, ip: str) -> Optional[DeviceRecord]:
        """Get a device by IP, or None if it is not registered"""
        db = self._session_factory()
        try:
            db_device = get_device(db, ip)
            return to_record(db_device) if db_device else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading device {ip}: {e}")
            raise StorageError(f"Error reading device {ip}: {e}") from e
        finally:
            db.close()

    def find_by_ip(self, ip: str) -> DeviceRecord:
        device = self.get(ip)
        if device is None:
            raise DeviceNotFoundError(ip)
        return device
