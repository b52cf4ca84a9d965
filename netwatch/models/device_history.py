from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from netwatch.db.database import Base
from netwatch.models.device import utcnow


class DeviceHistory(Base):
    __tablename__ = "device_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    device_ip = Column(String(45), ForeignKey("devices.ip"), nullable=False, index=True)
    status = Column(String, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
