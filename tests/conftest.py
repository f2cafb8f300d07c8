"""
Shared pytest fixtures for the Diary Vault test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger  -> temp directory  (prevents test events in ./audit_logs)
  - Vault session -> temp directory  (prevents writes to data/diary.vault.json)
"""

import pytest

# Real vaults use 150k iterations; tests derive keys many times.
FAST_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import diary_vault.core.audit_log as audit_mod

    monkeypatch.setenv("DIARY_AUDIT_DIR", str(tmp_path / "audit_logs"))

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_vault_session(tmp_path, monkeypatch):
    """Point the API's session singleton at a temp vault file."""
    import diary_vault.api.vault_routes as routes_mod

    monkeypatch.setenv("DIARY_VAULT_PATH", str(tmp_path / "data" / "diary.vault.json"))
    monkeypatch.setenv("DIARY_KDF_ITERATIONS", str(FAST_ITERATIONS))

    old_session = routes_mod._session
    routes_mod.set_vault_session(None)

    yield

    if routes_mod._session is not None:
        routes_mod._session.lock()
    routes_mod.set_vault_session(old_session)


@pytest.fixture
def storage(tmp_path):
    from diary_vault.vault import RecordStorage

    return RecordStorage(tmp_path / "vault" / "diary.vault.json")


@pytest.fixture
def session(storage):
    from diary_vault.vault import VaultSession

    s = VaultSession(storage, iterations=FAST_ITERATIONS)
    yield s
    s.lock()
