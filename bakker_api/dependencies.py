import hmac

from fastapi import Depends, HTTPException, Request, status

from .config import Settings
from .context import AppContext


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_settings(request: Request) -> Settings:
    return request.app.state.context.settings


def require_auth(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Checks the shared bearer token; open access when no token is configured."""
    if not settings.auth_token:
        return
    header = request.headers.get("Authorization", "")
    token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
    if not hmac.compare_digest(token.encode(), settings.auth_token.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
