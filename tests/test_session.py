"""Tests for the VaultSession state machine.

Covers: create/unlock/lock transitions, mutate-then-persist, rollback on
persist failure, tamper detection, import replacing the vault, export,
key wiping and serialization of concurrent mutations.
"""

import json
import threading
from datetime import datetime, timezone

import pytest

from diary_vault.vault import (
    EncryptionService,
    ImportFailed,
    NotFound,
    NotUnlocked,
    PersistedRecord,
    PersistFailed,
    RecordStorage,
    SessionState,
    StorageReadFailed,
    UnlockFailed,
    VaultExists,
    VaultNotFound,
    VaultSession,
)
from diary_vault.vault.codec import decode_binary, encode_binary

FAST_ITERATIONS = 1_000  # matches the session fixture in conftest.py


def _flip_field(storage, field, index):
    """Flip one byte of a binary field in the stored record."""
    raw = json.loads(storage.path.read_text())
    data = bytearray(decode_binary(raw[field]))
    data[index] ^= 0x01
    raw[field] = encode_binary(bytes(data))
    storage.path.write_text(json.dumps(raw))


def _foreign_backup(tmp_path, password, entries=()):
    """Build a separate vault and return its exported bytes."""
    other = VaultSession(RecordStorage(tmp_path / "other" / "vault.json"), iterations=FAST_ITERATIONS + 1)
    other.create_new(password)
    for date_key, title, text in entries:
        other.save_entry(date_key, title, text)
    data = other.export_record()
    other.lock()
    return data


# ── Transitions ─────────────────────────────────────────────────────


class TestCreateAndUnlock:

    def test_starts_locked(self, session):
        assert session.state is SessionState.LOCKED
        assert session.is_unlocked is False
        assert session.vault_exists is False
        assert session.unlocked_at is None

    def test_create_new_unlocks_empty_vault(self, session, storage):
        session.create_new("pw")
        assert session.state is SessionState.UNLOCKED
        assert session.list_entries() == []
        assert session.unlocked_at is not None

        record = storage.read()
        assert record.version == 1
        assert len(record.salt) == 16
        assert len(record.nonce) == 12
        assert record.iterations == FAST_ITERATIONS

    def test_default_iterations(self, storage):
        assert VaultSession(storage).iterations == 150_000

    def test_create_when_vault_exists(self, session):
        session.create_new("pw")
        session.lock()
        with pytest.raises(VaultExists):
            session.create_new("other")
        assert session.state is SessionState.LOCKED

    def test_create_then_unlock(self, session):
        session.create_new("pw")
        session.lock()
        session.unlock("pw")
        assert session.is_unlocked
        assert session.list_entries() == []

    def test_unlock_wrong_password(self, session):
        session.create_new("pw")
        session.lock()
        with pytest.raises(UnlockFailed) as exc_info:
            session.unlock("not-pw")
        assert str(exc_info.value) == "Incorrect password or corrupted data."
        assert session.state is SessionState.LOCKED

    def test_unlock_without_vault(self, session):
        with pytest.raises(UnlockFailed):
            session.unlock("pw")
        assert session.state is SessionState.LOCKED

    def test_unlock_malformed_record(self, session, storage):
        storage.path.parent.mkdir(parents=True, exist_ok=True)
        storage.path.write_text('{"version": 1, "salt": "???"}')
        with pytest.raises(UnlockFailed):
            session.unlock("pw")
        assert session.state is SessionState.LOCKED

    def test_unlock_when_record_path_is_directory(self, session, storage):
        storage.path.mkdir(parents=True)
        with pytest.raises(UnlockFailed):
            session.unlock("pw")
        assert session.state is SessionState.LOCKED

    def test_unlock_when_read_raises_os_error(self, session, storage, monkeypatch):
        session.create_new("pw")
        session.lock()

        def denied(self):
            raise PermissionError("permission denied")

        monkeypatch.setattr(type(storage.path), "read_bytes", denied)
        with pytest.raises(UnlockFailed) as exc_info:
            session.unlock("pw")
        assert isinstance(exc_info.value.__cause__, StorageReadFailed)

    def test_password_with_lone_surrogate(self, session):
        session.create_new("pa\ud800ss")
        session.lock()
        session.unlock("pa\ud800ss")
        assert session.is_unlocked

    def test_unlock_while_unlocked_relocks_first(self, session):
        session.create_new("pw")
        with pytest.raises(UnlockFailed):
            session.unlock("wrong")
        assert session.state is SessionState.LOCKED

    def test_salt_and_iterations_never_change(self, session, storage):
        session.create_new("pw")
        original = storage.read()
        session.save_entry("2024-01-01", "T", "body")
        session.lock()
        session.unlock("pw")
        session.delete_entry("2024-01-01")
        current = storage.read()
        assert current.salt == original.salt
        assert current.iterations == original.iterations
        assert current.version == original.version
        assert current.nonce != original.nonce


class TestLock:

    def test_lock_when_locked_is_noop(self, session):
        session.lock()
        session.lock()
        assert session.state is SessionState.LOCKED

    def test_lock_wipes_key_and_entries(self, session):
        session.create_new("pw")
        session.save_entry("2024-01-01", "T", "body")
        key = session._key
        entries = session._entries

        session.lock()

        assert key.is_wiped
        assert not any(key._material)
        assert len(entries) == 0
        assert session._key is None
        assert session._entries is None

    def test_reads_require_unlock(self, session):
        with pytest.raises(NotUnlocked):
            session.list_entries()
        with pytest.raises(NotUnlocked):
            session.get_entry("2024-01-01")


# ── Mutations ───────────────────────────────────────────────────────


class TestMutate:

    def test_mutate_persists(self, session):
        session.create_new("pw")
        before = datetime.now(timezone.utc)
        session.mutate(lambda store: store.upsert("2024-01-01", "T", "body"))
        session.lock()

        session.unlock("pw")
        entries = session.list_entries()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.date_key == "2024-01-01"
        assert entry.title == "T"
        assert entry.text == "body"
        assert datetime.fromisoformat(entry.modified) >= before

    def test_returned_entries_are_copies(self, session, storage):
        session.create_new("pw")
        saved = session.save_entry("2024-01-01", "T", "body")
        stored = storage.read_raw()

        saved.text = "edited in place"
        session.get_entry("2024-01-01").reaction = "🔥"
        session.list_entries()[0].title = "Other"
        session.set_reaction("2024-01-01", "😊").text = "again"

        entry = session.get_entry("2024-01-01")
        assert (entry.title, entry.text, entry.reaction) == ("T", "body", "😊")

        session.lock()
        session.unlock("pw")
        entry = session.get_entry("2024-01-01")
        assert (entry.title, entry.text, entry.reaction) == ("T", "body", "😊")
        assert storage.read_raw() != stored

    def test_mutate_returns_fn_result(self, session):
        session.create_new("pw")
        assert session.mutate(lambda store: 42) == 42

    def test_mutate_while_locked(self, session):
        with pytest.raises(NotUnlocked):
            session.mutate(lambda store: store.upsert("2024-01-01", "T", "body"))

    def test_every_mutation_reseals(self, session, storage):
        session.create_new("pw")
        seen = {storage.read().nonce}
        for day in range(1, 6):
            session.save_entry(f"2024-01-0{day}", "", "x")
            seen.add(storage.read().nonce)
        assert len(seen) == 6

    def test_fn_error_changes_nothing(self, session, storage):
        session.create_new("pw")
        session.save_entry("2024-01-01", "T", "body")
        stored = storage.read_raw()

        def bad(store):
            store.remove("2024-01-01")
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            session.mutate(bad)
        assert session.get_entry("2024-01-01") is not None
        assert storage.read_raw() == stored

    def test_persist_failure_rolls_back(self, session, storage, monkeypatch):
        session.create_new("pw")
        session.save_entry("2024-01-01", "Kept", "body")
        stored = storage.read_raw()

        def fail(record):
            raise PersistFailed("storage unavailable")

        monkeypatch.setattr(storage, "write", fail)
        with pytest.raises(PersistFailed):
            session.save_entry("2024-01-02", "Lost", "body")
        with pytest.raises(PersistFailed):
            session.delete_entry("2024-01-01")

        assert session.get_entry("2024-01-02") is None
        assert session.get_entry("2024-01-01").title == "Kept"
        assert storage.read_raw() == stored

    def test_save_delete_reaction_roundtrip(self, session):
        session.create_new("pw")
        session.save_entry("2024-01-01", "One", "first")
        session.save_entry("2024-01-02", "Two", "second")
        session.set_reaction("2024-01-02", "🔥")
        assert session.delete_entry("2024-01-01") is True
        assert session.delete_entry("2024-01-01") is False
        session.lock()

        session.unlock("pw")
        entries = session.list_entries()
        assert [e.date_key for e in entries] == ["2024-01-02"]
        assert entries[0].reaction == "🔥"

    def test_set_reaction_missing_entry(self, session):
        session.create_new("pw")
        with pytest.raises(NotFound):
            session.set_reaction("2024-01-01", "😊")

    def test_concurrent_mutations_are_serialized(self, session):
        session.create_new("pw")
        errors = []

        def writer(day):
            try:
                session.save_entry(f"2024-02-{day:02d}", "", f"day {day}")
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(d,)) for d in range(1, 21)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        session.lock()
        session.unlock("pw")
        assert len(session.list_entries()) == 20


# ── Tamper detection ────────────────────────────────────────────────


class TestTamperDetection:

    def test_flipped_ciphertext_byte(self, session, storage):
        session.create_new("pw")
        session.save_entry("2024-01-01", "T", "body")
        session.lock()
        ct_len = len(storage.read().ciphertext)

        for index in (0, ct_len // 2, ct_len - 1):
            original = storage.path.read_text()
            _flip_field(storage, "ct", index)
            with pytest.raises(UnlockFailed):
                session.unlock("pw")
            assert session.state is SessionState.LOCKED
            storage.path.write_text(original)

        session.unlock("pw")
        assert session.is_unlocked

    @pytest.mark.parametrize("index", range(12))
    def test_flipped_nonce_byte(self, session, storage, index):
        session.create_new("pw")
        session.lock()
        _flip_field(storage, "iv", index)
        with pytest.raises(UnlockFailed):
            session.unlock("pw")


# ── Import / export ─────────────────────────────────────────────────


class TestImportExport:

    def test_export_is_stored_record(self, session, storage):
        session.create_new("pw")
        assert session.export_record() == storage.read_raw()

    def test_export_while_locked(self, session):
        session.create_new("pw")
        session.lock()
        data = session.export_record()
        assert PersistedRecord.from_json(data).version == 1

    def test_export_without_vault(self, session):
        with pytest.raises(VaultNotFound):
            session.export_record()

    def test_export_unreadable_record(self, session, storage, monkeypatch):
        session.create_new("pw")

        def denied(self):
            raise PermissionError("permission denied")

        monkeypatch.setattr(type(storage.path), "read_bytes", denied)
        with pytest.raises(StorageReadFailed):
            session.export_record()

    def test_import_replaces_vault(self, session, storage, tmp_path):
        session.create_new("old-pw")
        session.save_entry("2024-01-01", "Old", "old vault")
        session.lock()
        old_record = storage.read()

        backup = _foreign_backup(tmp_path, "new-pw", [("2023-06-15", "Imported", "from backup")])
        session.import_record(backup, "new-pw")

        assert session.is_unlocked
        assert [e.title for e in session.list_entries()] == ["Imported"]

        new_record = storage.read()
        assert new_record.salt != old_record.salt
        assert new_record.iterations == FAST_ITERATIONS + 1

        session.lock()
        with pytest.raises(UnlockFailed):
            session.unlock("old-pw")
        session.unlock("new-pw")
        assert session.get_entry("2023-06-15").text == "from backup"

    def test_import_accepts_dict_and_record(self, session, tmp_path):
        backup = _foreign_backup(tmp_path, "pw")
        session.import_record(json.loads(backup), "pw")
        assert session.is_unlocked
        session.lock()
        session.import_record(PersistedRecord.from_json(backup), "pw")
        assert session.is_unlocked

    def test_import_wrong_password_keeps_vault(self, session, storage, tmp_path):
        session.create_new("pw")
        session.lock()
        stored = storage.read_raw()

        backup = _foreign_backup(tmp_path, "backup-pw")
        with pytest.raises(ImportFailed) as exc_info:
            session.import_record(backup, "wrong")
        assert str(exc_info.value) == "Incorrect password or corrupted file."
        assert session.state is SessionState.LOCKED
        assert storage.read_raw() == stored

    @pytest.mark.parametrize(
        "candidate", [b"not json", "{}", {"salt": "x"}, b"[1, 2]", None, [1, 2], 42]
    )
    def test_import_malformed(self, session, candidate):
        with pytest.raises(ImportFailed):
            session.import_record(candidate, "pw")
        assert session.vault_exists is False

    def test_failed_import_while_unlocked_keeps_session(self, session, tmp_path):
        session.create_new("pw")
        session.save_entry("2024-01-01", "Mine", "body")
        backup = _foreign_backup(tmp_path, "backup-pw")

        with pytest.raises(ImportFailed):
            session.import_record(backup, "wrong")

        assert session.is_unlocked
        assert session.get_entry("2024-01-01").title == "Mine"

    def test_import_legacy_backup_is_upgraded(self, session, storage, tmp_path):
        backup = json.loads(_foreign_backup(tmp_path, "pw"))
        del backup["version"]
        session.import_record(backup, "pw")
        assert json.loads(storage.read_raw())["version"] == 1

    def test_import_uses_candidate_iterations(self, session, tmp_path, monkeypatch):
        backup = _foreign_backup(tmp_path, "pw")
        calls = []
        original = EncryptionService.derive_key

        def spy(password, salt, iterations=EncryptionService.PBKDF2_ITERATIONS):
            calls.append(iterations)
            return original(password, salt, iterations)

        monkeypatch.setattr(EncryptionService, "derive_key", staticmethod(spy))
        session.import_record(backup, "pw")
        assert calls == [FAST_ITERATIONS + 1]
