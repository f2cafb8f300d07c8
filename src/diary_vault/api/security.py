# API Security - Per-process session token
#
# A random token is generated when the server starts; every vault endpoint
# requires it in the X-Session-Token header so other local processes
# cannot drive the vault API.

import secrets
from typing import Optional
from fastapi import Header, HTTPException, status

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """
    Generate a new session token for this server instance.

    Returns:
        The generated token (handed to the local UI at startup)
    """
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def verify_session_token(x_session_token: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency: reject requests without the current session token.

    Raises:
        HTTPException: 503 before initialization, 401 if missing or wrong
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header"
        )

    # Constant-time comparison
    if not secrets.compare_digest(x_session_token, _SESSION_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token"
        )

    return x_session_token
