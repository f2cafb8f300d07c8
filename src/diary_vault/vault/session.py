# Vault - Session State Machine
#
# LOCKED   -> no key, no plaintext in memory
# UNLOCKED -> derived key + decrypted entries held in memory
#
# Every mutation is re-sealed and written before it is adopted in memory.
# Wrong password and corrupted data are reported the same way.

import logging
import threading
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from .encryption import DerivedKey, EncryptionService
from .entries import DateLike, Entry, EntryStore
from .exceptions import (
    AuthenticationError,
    DecodeError,
    DerivationError,
    ImportFailed,
    MalformedRecordError,
    NotUnlocked,
    PersistFailed,
    StorageReadFailed,
    UnlockFailed,
    VaultExists,
    VaultNotFound,
)
from .storage import RecordStorage
from .store_format import CURRENT_VERSION, DEFAULT_ITERATIONS, PersistedRecord
from ..core.audit_log import AuditLogger, EventSeverity, EventType, get_audit_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that mean "wrong password or bad data" when opening a record
_OPEN_FAILURES = (
    AuthenticationError,
    DecodeError,
    DerivationError,
    MalformedRecordError,
    ValueError,
)

ImportCandidate = Union[PersistedRecord, Dict[str, Any], str, bytes]


def _detached(entry: Optional[Entry]) -> Optional[Entry]:
    """Copy handed to callers; editing it cannot bypass mutate()."""
    return replace(entry) if entry is not None else None


class SessionState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """
    Stateful core of the diary vault.

    Owns the derived key and the decrypted entries while unlocked. All
    public operations are serialized with a re-entrant lock, so two
    mutations can never race to overwrite the record.

    Args:
        storage: Where the persisted record lives
        iterations: Work factor for vaults created by this session
        audit_logger: Defaults to the global audit logger
    """

    def __init__(
        self,
        storage: RecordStorage,
        iterations: int = DEFAULT_ITERATIONS,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.storage = storage
        self.iterations = iterations
        self._audit = audit_logger

        self._lock = threading.RLock()
        self._key: Optional[DerivedKey] = None
        self._entries: Optional[EntryStore] = None
        self._record: Optional[PersistedRecord] = None
        self._unlocked_at: Optional[datetime] = None

    # ── State ─────────────────────────────────────────────────────

    @property
    def audit(self) -> AuditLogger:
        if self._audit is None:
            self._audit = get_audit_logger()
        return self._audit

    @property
    def state(self) -> SessionState:
        with self._lock:
            return SessionState.UNLOCKED if self._key is not None else SessionState.LOCKED

    @property
    def is_unlocked(self) -> bool:
        return self.state is SessionState.UNLOCKED

    @property
    def vault_exists(self) -> bool:
        return self.storage.exists()

    @property
    def unlocked_at(self) -> Optional[datetime]:
        """When the vault was unlocked (None while locked)."""
        return self._unlocked_at

    def _adopt(self, key: DerivedKey, entries: EntryStore, record: PersistedRecord) -> None:
        self._key = key
        self._entries = entries
        self._record = record
        self._unlocked_at = datetime.now()

    def _require_unlocked(self) -> EntryStore:
        if self._key is None or self._entries is None:
            raise NotUnlocked()
        return self._entries

    @staticmethod
    def _open_record(record: PersistedRecord, password: str) -> tuple:
        """Derive the key from the record's own recipe and decrypt it.

        The key is wiped before any failure propagates.
        """
        key = EncryptionService.derive_key(password, record.salt, record.iterations)
        try:
            payload = EncryptionService.open(key, record.ciphertext, record.nonce)
            entries = EntryStore.from_payload(payload)
        except Exception:
            key.wipe()
            raise
        return key, entries

    # ── Transitions ───────────────────────────────────────────────

    def create_new(self, password: str) -> None:
        """
        Create a new, empty vault protected by ``password`` and unlock it.

        Raises:
            VaultExists: A record is already stored
            StorageReadFailed: The record location cannot be inspected
            PersistFailed: The new record could not be written
        """
        with self._lock:
            if self.storage.exists():
                raise VaultExists()

            self.lock()

            salt = EncryptionService.generate_salt()
            key = EncryptionService.derive_key(password, salt, self.iterations)
            entries = EntryStore()
            try:
                ciphertext, nonce = EncryptionService.seal(key, entries.to_payload())
                record = PersistedRecord(
                    version=CURRENT_VERSION,
                    salt=salt,
                    iterations=self.iterations,
                    ciphertext=ciphertext,
                    nonce=nonce,
                )
                self.storage.write(record)
            except PersistFailed as e:
                key.wipe()
                self.audit.log_event(
                    event_type=EventType.VAULT_PERSIST_FAILED,
                    severity=EventSeverity.CRITICAL,
                    message=f"Failed to write new vault: {e}",
                )
                raise

            self._adopt(key, entries, record)

            self.audit.log_vault_event(
                EventType.VAULT_CREATED,
                "New diary vault created",
                details={"iterations": self.iterations, "version": CURRENT_VERSION},
            )

    def unlock(self, password: str) -> None:
        """
        Unlock the stored vault with ``password``.

        Raises:
            UnlockFailed: Incorrect password, or missing/corrupted record
        """
        with self._lock:
            self.lock()

            try:
                record = self.storage.read()
                if record is None:
                    raise VaultNotFound()
                key, entries = self._open_record(record, password)
            except (VaultNotFound, StorageReadFailed) + _OPEN_FAILURES as e:
                logger.debug(f"Unlock failed: {type(e).__name__}: {e}")
                self.audit.log_event(
                    event_type=EventType.VAULT_UNLOCK_FAILED,
                    severity=EventSeverity.ALERT,
                    message="Vault unlock failed: incorrect password or corrupted data",
                )
                raise UnlockFailed() from e

            self._adopt(key, entries, record)

            self.audit.log_vault_event(
                EventType.VAULT_UNLOCKED,
                "Vault unlocked",
                details={"entry_count": len(entries)},
            )

    def lock(self) -> None:
        """Wipe the key and drop all plaintext. Always succeeds; no-op when locked."""
        with self._lock:
            was_unlocked = self._key is not None

            if self._key is not None:
                self._key.wipe()
            if self._entries is not None:
                self._entries.clear()

            self._key = None
            self._entries = None
            self._record = None
            self._unlocked_at = None

            if was_unlocked:
                self.audit.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

    def mutate(self, fn: Callable[[EntryStore], T]) -> T:
        """
        Apply ``fn`` to the entries and persist the result before adopting it.

        ``fn`` receives a working copy; if sealing or writing fails the
        in-memory entries are left exactly as they were.

        Returns:
            Whatever ``fn`` returns

        Raises:
            NotUnlocked: Vault is locked
            PersistFailed: The record could not be written (change discarded)
        """
        with self._lock:
            current = self._require_unlocked()
            working = current.copy()

            result = fn(working)

            ciphertext, nonce = EncryptionService.seal(self._key, working.to_payload())
            record = self._record.with_envelope(ciphertext, nonce)
            try:
                self.storage.write(record)
            except PersistFailed as e:
                self.audit.log_event(
                    event_type=EventType.VAULT_PERSIST_FAILED,
                    severity=EventSeverity.CRITICAL,
                    message=f"Failed to persist vault change, change discarded: {e}",
                )
                raise

            self._entries = working
            self._record = record
            current.clear()
            return result

    def import_record(self, candidate: ImportCandidate, password: str) -> None:
        """
        Replace the active vault with a backup, if ``password`` opens it.

        The candidate's own salt and iterations are used. On success the
        candidate becomes the stored record wholesale and the session is
        unlocked on it. On failure nothing changes.

        Raises:
            ImportFailed: Incorrect password, or malformed/corrupted file
            PersistFailed: The imported record could not be written
        """
        with self._lock:
            try:
                if isinstance(candidate, PersistedRecord):
                    record = candidate
                elif isinstance(candidate, dict):
                    record = PersistedRecord.from_dict(candidate)
                elif isinstance(candidate, (str, bytes, bytearray)):
                    record = PersistedRecord.from_json(candidate)
                else:
                    raise MalformedRecordError(
                        f"Cannot import a {type(candidate).__name__} as a vault record"
                    )
                key, entries = self._open_record(record, password)
            except _OPEN_FAILURES as e:
                logger.debug(f"Import failed: {type(e).__name__}: {e}")
                self.audit.log_event(
                    event_type=EventType.VAULT_IMPORT_FAILED,
                    severity=EventSeverity.ALERT,
                    message="Vault import failed: incorrect password or corrupted file",
                )
                raise ImportFailed() from e

            # Stored bytes are re-rendered from the validated record so a
            # legacy backup is written back in the current format.
            try:
                self.storage.write(record)
            except PersistFailed as e:
                key.wipe()
                entries.clear()
                self.audit.log_event(
                    event_type=EventType.VAULT_PERSIST_FAILED,
                    severity=EventSeverity.CRITICAL,
                    message=f"Failed to write imported vault: {e}",
                )
                raise

            self.lock()
            self._adopt(key, entries, record)

            self.audit.log_vault_event(
                EventType.VAULT_IMPORTED,
                "Vault replaced from backup",
                details={
                    "entry_count": len(entries),
                    "iterations": record.iterations,
                    "version": record.version,
                },
            )

    def export_record(self) -> bytes:
        """
        Return the stored record bytes (the backup file). Works while locked.

        Raises:
            VaultNotFound: No vault has been created
            StorageReadFailed: The record file cannot be read
        """
        with self._lock:
            data = self.storage.read_raw()
            if data is None:
                raise VaultNotFound()
            self.audit.log_vault_event(
                EventType.VAULT_EXPORTED,
                "Vault exported",
                details={"size_bytes": len(data)},
            )
            return data

    # ── Entry operations ──────────────────────────────────────────

    def list_entries(self) -> List[Entry]:
        with self._lock:
            return [replace(entry) for entry in self._require_unlocked().list()]

    def get_entry(self, date_key: DateLike) -> Optional[Entry]:
        with self._lock:
            return _detached(self._require_unlocked().get(date_key))

    def save_entry(self, date_key: DateLike, title: str = "", text: str = "") -> Entry:
        """Create or overwrite an entry and persist."""
        entry = self.mutate(lambda store: _detached(store.upsert(date_key, title, text)))
        self.audit.log_vault_event(
            EventType.ENTRY_SAVED, "Entry saved", details={"date_key": entry.date_key}
        )
        return entry

    def delete_entry(self, date_key: DateLike) -> bool:
        """Delete an entry (no-op if absent) and persist."""
        removed = self.mutate(lambda store: store.remove(date_key))
        if removed:
            self.audit.log_vault_event(
                EventType.ENTRY_DELETED, "Entry deleted", details={"date_key": str(date_key)}
            )
        return removed

    def set_reaction(self, date_key: DateLike, glyph: Optional[str]) -> Entry:
        """Set the reaction glyph of an existing entry and persist."""
        entry = self.mutate(lambda store: _detached(store.set_reaction(date_key, glyph)))
        self.audit.log_vault_event(
            EventType.ENTRY_REACTION_SET, "Entry reaction set", details={"date_key": entry.date_key}
        )
        return entry
