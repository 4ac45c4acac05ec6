"""Pending registration slot (device_storage table)."""
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from churchfeed.models.device_storage import DeviceStorageEntry
from churchfeed.services.registration_cache import (
    PENDING_REGISTRATION_KEY,
    NoDeviceRegistrationCache,
    SqlRegistrationCache,
    StorageError,
    cache_for_device,
    decode_pending,
    storage_key_for_device,
)
from conftest import DEVICE_ID, pending_registration


class TestSaveLoadClear:
    def test_load_returns_what_was_saved(self, cache):
        pending = pending_registration()
        cache.save(pending)
        assert cache.load() == pending

    def test_save_replaces_previous_value(self, cache):
        cache.save(pending_registration(church_name="First Baptist"))
        second = pending_registration(church_name="Hope Fellowship", member_count_tier="tier3")
        cache.save(second)
        loaded = cache.load()
        assert loaded == second
        assert loaded.registration_data["church_name"] == "Hope Fellowship"

    def test_load_empty_slot_is_none(self, cache):
        assert cache.load() is None

    def test_clear_then_load_is_none(self, cache):
        cache.save(pending_registration())
        cache.clear()
        assert cache.load() is None

    def test_clear_empty_slot_is_not_an_error(self, cache):
        cache.clear()
        cache.clear()
        assert cache.load() is None

    def test_slots_are_per_device(self, db, cache):
        cache.save(pending_registration())
        other = SqlRegistrationCache(db, "device-android-22")
        assert other.load() is None
        other.clear()
        assert cache.load() is not None

    def test_password_is_stored_hashed(self, db, cache):
        cache.save(pending_registration())
        raw = db.get(DeviceStorageEntry, storage_key_for_device(DEVICE_ID)).value
        assert "Shepherd#2024" not in raw
        assert "admin_password_hash" in raw

    def test_device_id_required(self, db):
        with pytest.raises(ValueError):
            SqlRegistrationCache(db, "  ")


class TestUnreadableSlot:
    def _store_raw(self, db, value):
        db.add(DeviceStorageEntry(key=storage_key_for_device(DEVICE_ID), value=value))
        db.commit()

    def test_invalid_json_reads_as_absent(self, db, cache):
        self._store_raw(db, "{not json")
        assert cache.load() is None

    def test_non_object_reads_as_absent(self, db, cache):
        self._store_raw(db, "[1, 2, 3]")
        assert cache.load() is None

    def test_wrong_shape_reads_as_absent(self, db, cache):
        self._store_raw(db, '{"selected_tier": "tier9"}')
        assert cache.load() is None

    def test_decode_pending_keeps_unvalidated_registration_data(self):
        pending = decode_pending('{"registration_data": {"church_name": ""}, "selected_tier": "tier1"}')
        assert pending is not None
        assert pending.registration_data == {"church_name": ""}

    def test_key_layout(self):
        assert storage_key_for_device("abc") == f"{PENDING_REGISTRATION_KEY}:abc"

    def test_no_device_means_nothing_pending(self, db):
        cache = cache_for_device(db, "  ")
        assert isinstance(cache, NoDeviceRegistrationCache)
        assert cache.load() is None
        cache.clear()
        with pytest.raises(StorageError):
            cache.save(pending_registration())

    def test_cache_for_known_device(self, db):
        cache_for_device(db, DEVICE_ID).save(pending_registration())
        assert SqlRegistrationCache(db, DEVICE_ID).load() is not None


class TestStorageFailures:
    def test_save_failure_raises_storage_error(self, db, cache):
        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with pytest.raises(StorageError):
                cache.save(pending_registration())

    def test_load_failure_raises_storage_error(self, db, cache):
        with patch.object(db, "get", side_effect=OperationalError("SELECT", {}, Exception("database is locked"))):
            with pytest.raises(StorageError):
                cache.load()
