"""Pending registration cache: one durable slot per device.

The payment step leaves the app for Stripe Checkout and comes back through a redirect,
so the registration form being paid for has to survive outside the request. Only the
registration submission flow writes the slot and only the completion coordinator clears it.
"""
import json
import logging
from abc import ABC, abstractmethod

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churchfeed.models.device_storage import DeviceStorageEntry
from churchfeed.schemas.registration import PendingRegistration

logger = logging.getLogger(__name__)

PENDING_REGISTRATION_KEY = "churchfeed_pending_registration"


class StorageError(Exception):
    """The storage layer behind the registration cache failed."""
    pass


class RegistrationCache(ABC):
    @abstractmethod
    def save(self, pending: PendingRegistration) -> None:
        """Store pending, replacing whatever was there."""

    @abstractmethod
    def load(self) -> PendingRegistration | None:
        """Return the stored registration, or None when absent or unreadable."""

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored registration. Clearing an empty slot is not an error."""


def storage_key_for_device(device_id: str) -> str:
    return f"{PENDING_REGISTRATION_KEY}:{device_id}"


def decode_pending(raw: str | None) -> PendingRegistration | None:
    """Parse a stored slot value. Anything unreadable counts as absent."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("[RegistrationCache] Stored pending registration is not valid JSON; treating as absent")
        return None
    if not isinstance(data, dict):
        logger.warning("[RegistrationCache] Stored pending registration is not an object; treating as absent")
        return None
    try:
        return PendingRegistration.model_validate(data)
    except ValidationError as e:
        logger.warning("[RegistrationCache] Stored pending registration has the wrong shape (%s); treating as absent", e.error_count())
        return None


class SqlRegistrationCache(RegistrationCache):
    """Registration cache backed by the device_storage table."""

    def __init__(self, db: Session, device_id: str):
        device_id = (device_id or "").strip()
        if not device_id:
            raise ValueError("device_id is required")
        self.db = db
        self.key = storage_key_for_device(device_id)

    def save(self, pending: PendingRegistration) -> None:
        value = pending.model_dump_json()
        try:
            entry = self.db.get(DeviceStorageEntry, self.key)
            if entry:
                entry.value = value
            else:
                self.db.add(DeviceStorageEntry(key=self.key, value=value))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not save pending registration: {e}") from e

    def load(self) -> PendingRegistration | None:
        try:
            entry = self.db.get(DeviceStorageEntry, self.key)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not read pending registration: {e}") from e
        return decode_pending(entry.value if entry else None)

    def clear(self) -> None:
        try:
            self.db.query(DeviceStorageEntry).filter(DeviceStorageEntry.key == self.key).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not clear pending registration: {e}") from e


class NoDeviceRegistrationCache(RegistrationCache):
    """Stand-in for a completion request that names no device: there is never anything pending.

    A paid session completed through it ends in the degraded result instead of a 400.
    """

    def save(self, pending: PendingRegistration) -> None:
        raise StorageError("Cannot save a pending registration without a device id")

    def load(self) -> PendingRegistration | None:
        return None

    def clear(self) -> None:
        pass


def cache_for_device(db: Session, device_id: str | None) -> RegistrationCache:
    if not (device_id or "").strip():
        return NoDeviceRegistrationCache()
    return SqlRegistrationCache(db, device_id)
