# wallet/enums.py
from enum import Enum


class SyncState(Enum):
    UNINITIALIZED = "uninitialized"
    SYNCED = "synced"
    STALE = "stale"
    SYNCING = "syncing"


class InvalidationSource(Enum):
    POLL = "poll"
    PUSH = "push"
    MANUAL = "manual"
