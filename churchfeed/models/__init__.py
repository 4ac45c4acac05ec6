"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from churchfeed.models.user import User
from churchfeed.models.church import Church, Admin, Member, Subscription
from churchfeed.models.post import Post, Reaction
from churchfeed.models.device_storage import DeviceStorageEntry
from churchfeed.models.audit_log import AuditLog

__all__ = [
    "User",
    "Church",
    "Admin",
    "Member",
    "Subscription",
    "Post",
    "Reaction",
    "DeviceStorageEntry",
    "AuditLog",
]
