# API Security - per-process session token
#
# The server creates (or is given) one token at startup.  Backup routes
# require it in the X-Session-Token header; the server binds to localhost,
# so only processes that fetched the token can create or restore backups.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

SESSION_HEADER = "X-Session-Token"

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token(token: Optional[str] = None) -> str:
    """Install the session token for this server process.

    Args:
        token: Fixed token to use (e.g. from STRONGBOX_SESSION_TOKEN).
               A random 256-bit URL-safe token is generated when omitted.
    """
    global _SESSION_TOKEN
    _SESSION_TOKEN = token or secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized; call initialize_session_token() first.")
    return _SESSION_TOKEN


def _reject(code: int, detail: str) -> HTTPException:
    return HTTPException(status_code=code, detail=detail)


async def verify_session_token(
    x_session_token: Optional[str] = Header(None, alias=SESSION_HEADER),
) -> str:
    """FastAPI dependency guarding every backup route.

    503 until startup has created a token, 401 when the header is
    missing or does not match.
    """
    if _SESSION_TOKEN is None:
        raise _reject(status.HTTP_503_SERVICE_UNAVAILABLE, "Server is still starting")
    if not x_session_token:
        raise _reject(status.HTTP_401_UNAUTHORIZED, f"Missing {SESSION_HEADER} header")
    if not secrets.compare_digest(x_session_token.encode(), _SESSION_TOKEN.encode()):
        raise _reject(status.HTTP_401_UNAUTHORIZED, "Invalid session token")
    return x_session_token
