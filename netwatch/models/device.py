from sqlalchemy import (
    Column,
    String,
    DateTime,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from netwatch.db.database import Base
import enum


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DeviceStatus(str, enum.Enum):
    UP = "up"
    DOWN = "down"


class Device(Base):
    __tablename__ = "devices"

    ip = Column(String(45), primary_key=True, index=True)
    hostname = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    status = Column(String, nullable=False, default=DeviceStatus.DOWN.value)
    # Time of the last status transition, not of the last probe
    last_seen = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    history = relationship(
        "DeviceHistory",
        order_by="DeviceHistory.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
