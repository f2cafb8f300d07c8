# Vault API - endpoints for the local diary UI
#
# - Create/unlock/lock the vault
# - CRUD for entries (each write is re-encrypted before it returns)
# - Export/import of the encrypted backup file
#
# Handlers are plain functions so FastAPI runs them in its threadpool;
# key derivation must not block the event loop.

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from ..core import load_config
from ..vault import (
    ImportFailed,
    InvalidDateKey,
    NotFound,
    NotUnlocked,
    PersistFailed,
    RecordStorage,
    StorageReadFailed,
    UnlockFailed,
    VaultExists,
    VaultNotFound,
    VaultSession,
    normalize_date_key,
)
from .security import verify_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])

BACKUP_FILENAME = "diary-backup.json"


# ── Session singleton ────────────────────────────────────────────────

_session: Optional[VaultSession] = None


def get_vault_session() -> VaultSession:
    """Get or create the process-wide vault session (LOCKED at start)."""
    global _session
    if _session is None:
        config = load_config()
        _session = VaultSession(
            RecordStorage(config.vault_path),
            iterations=config.kdf_iterations,
        )
    return _session


def set_vault_session(session: Optional[VaultSession]) -> None:
    """Replace the singleton (for testing)."""
    global _session
    _session = session


# Request/Response Models
class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class SaveEntryRequest(BaseModel):
    title: str = Field("", max_length=200)
    text: str = ""


class ReactionRequest(BaseModel):
    reaction: Optional[str] = Field(None, max_length=16)


class ImportRequest(BaseModel):
    record: Dict[str, Any]
    password: str = Field(..., min_length=1)


class VaultStatusResponse(BaseModel):
    is_unlocked: bool
    vault_exists: bool
    entry_count: Optional[int] = None


def _date_key(value: str) -> str:
    try:
        return normalize_date_key(value)
    except InvalidDateKey as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )


def _locked() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=str(NotUnlocked())
    )


def _persist_failed(e: PersistFailed) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Change not saved: {e}"
    )


def _unreadable(e: StorageReadFailed) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(e)
    )


# Endpoints

@router.get("/status", response_model=VaultStatusResponse)
def get_vault_status(token: str = Depends(verify_session_token)):
    """Whether a vault exists and whether it is unlocked."""
    session = get_vault_session()
    try:
        entry_count = len(session.list_entries())
    except NotUnlocked:
        entry_count = None
    try:
        vault_exists = session.vault_exists
    except StorageReadFailed as e:
        raise _unreadable(e)
    return VaultStatusResponse(
        is_unlocked=entry_count is not None,
        vault_exists=vault_exists,
        entry_count=entry_count,
    )


@router.post("/create")
def create_vault(
    request: PasswordRequest,
    token: str = Depends(verify_session_token)
):
    """
    Create a new empty vault protected by the given password.

    Only offered when no vault exists yet; an existing vault must be unlocked.
    """
    try:
        get_vault_session().create_new(request.password)
    except VaultExists as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistFailed as e:
        raise _persist_failed(e)
    except StorageReadFailed as e:
        raise _unreadable(e)

    return {"success": True, "message": "Vault created"}


@router.post("/unlock")
def unlock_vault(
    request: PasswordRequest,
    token: str = Depends(verify_session_token)
):
    """Unlock the vault. Wrong password and corrupted data give the same 401."""
    try:
        get_vault_session().unlock(request.password)
    except UnlockFailed as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    return {"success": True, "message": "Vault unlocked"}


@router.post("/lock")
def lock_vault(token: str = Depends(verify_session_token)):
    """Lock the vault (wipe key and plaintext from memory)."""
    get_vault_session().lock()
    return {"success": True, "message": "Vault locked"}


@router.get("/entries")
def list_entries(token: str = Depends(verify_session_token)):
    """All entries, newest date first."""
    try:
        entries = get_vault_session().list_entries()
    except NotUnlocked:
        raise _locked()

    entries.sort(key=lambda e: e.date_key, reverse=True)
    return {"entries": [e.to_api_dict() for e in entries]}


@router.get("/entries/{date_key}")
def get_entry(date_key: str, token: str = Depends(verify_session_token)):
    key = _date_key(date_key)
    try:
        entry = get_vault_session().get_entry(key)
    except NotUnlocked:
        raise _locked()

    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No entry for {key}"
        )
    return entry.to_api_dict()


@router.put("/entries/{date_key}")
def save_entry(
    date_key: str,
    request: SaveEntryRequest,
    token: str = Depends(verify_session_token)
):
    """Create or overwrite the entry for a date."""
    key = _date_key(date_key)
    try:
        entry = get_vault_session().save_entry(key, request.title, request.text)
    except NotUnlocked:
        raise _locked()
    except PersistFailed as e:
        raise _persist_failed(e)

    return entry.to_api_dict()


@router.delete("/entries/{date_key}")
def delete_entry(date_key: str, token: str = Depends(verify_session_token)):
    """Delete the entry for a date (no-op if there is none)."""
    key = _date_key(date_key)
    try:
        removed = get_vault_session().delete_entry(key)
    except NotUnlocked:
        raise _locked()
    except PersistFailed as e:
        raise _persist_failed(e)

    return {"success": True, "removed": removed}


@router.put("/entries/{date_key}/reaction")
def set_reaction(
    date_key: str,
    request: ReactionRequest,
    token: str = Depends(verify_session_token)
):
    key = _date_key(date_key)
    try:
        entry = get_vault_session().set_reaction(key, request.reaction)
    except NotUnlocked:
        raise _locked()
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistFailed as e:
        raise _persist_failed(e)

    return entry.to_api_dict()


@router.get("/export")
def export_vault(token: str = Depends(verify_session_token)):
    """Download the encrypted record as a backup file. Works while locked."""
    try:
        data = get_vault_session().export_record()
    except VaultNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StorageReadFailed as e:
        raise _unreadable(e)

    return Response(
        content=data,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{BACKUP_FILENAME}"'},
    )


@router.post("/import")
def import_vault(
    request: ImportRequest,
    token: str = Depends(verify_session_token)
):
    """
    Replace the current vault with a backup file.

    The backup's own password is required; on success the vault is
    unlocked on the imported data.
    """
    session = get_vault_session()
    try:
        session.import_record(request.record, request.password)
    except ImportFailed as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistFailed as e:
        raise _persist_failed(e)

    return {
        "success": True,
        "message": "Import successful",
        "entry_count": len(session.list_entries()),
    }
