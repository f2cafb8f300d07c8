# Diary Vault - FastAPI Backend
#
# Local-only REST API consumed by the diary UI. The API holds no vault
# data itself; it drives the VaultSession and renders its results.

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .. import __version__
from ..core import EventSeverity, EventType, log_security_event
from .security import initialize_session_token
from .vault_routes import get_vault_session, router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Diary Vault API",
    description="Password-protected, locally encrypted diary",
    version=__version__,
)

# Local UI dev servers only
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.on_event("shutdown")
def _lock_on_shutdown():
    # Wipe key and plaintext before exit
    get_vault_session().lock()
    log_security_event(EventType.SYSTEM_STOP, EventSeverity.INFO, "Diary vault API stopped")


def start_api_server(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Generate the session token and run the API under uvicorn."""
    token = initialize_session_token()
    logger.info(f"Starting Diary Vault API on {host}:{port}")
    print(f"  Session token: {token}")
    uvicorn.run(app, host=host, port=port, log_level="info")
