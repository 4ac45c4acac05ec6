"""Durable per-device key-value slots (survive the app leaving for Stripe Checkout)."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func

from churchfeed.database import Base


class DeviceStorageEntry(Base):
    __tablename__ = "device_storage"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
