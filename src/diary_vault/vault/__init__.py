# Vault Module - Encrypted Diary Store
#
# Password -> key (PBKDF2-SHA256), whole diary sealed with AES-256-GCM,
# one versioned JSON record on disk, LOCKED/UNLOCKED session on top.

from .encryption import DerivedKey, EncryptionService
from .entries import Entry, EntryStore, normalize_date_key
from .exceptions import (
    AuthenticationError,
    DecodeError,
    DerivationError,
    ImportFailed,
    InvalidDateKey,
    MalformedRecordError,
    NotFound,
    NotUnlocked,
    PersistFailed,
    StorageReadFailed,
    UnlockFailed,
    VaultError,
    VaultExists,
    VaultNotFound,
)
from .session import SessionState, VaultSession
from .storage import RecordStorage
from .store_format import CURRENT_VERSION, DEFAULT_ITERATIONS, PersistedRecord

__all__ = [
    "VaultSession",
    "SessionState",
    "RecordStorage",
    "PersistedRecord",
    "CURRENT_VERSION",
    "DEFAULT_ITERATIONS",
    "EncryptionService",
    "DerivedKey",
    "Entry",
    "EntryStore",
    "normalize_date_key",
    # Errors
    "VaultError",
    "DerivationError",
    "AuthenticationError",
    "DecodeError",
    "MalformedRecordError",
    "UnlockFailed",
    "ImportFailed",
    "NotUnlocked",
    "NotFound",
    "InvalidDateKey",
    "VaultExists",
    "VaultNotFound",
    "PersistFailed",
    "StorageReadFailed",
]
