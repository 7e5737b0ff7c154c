from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..context import AppContext
from ..dependencies import get_context, require_auth
from ..errors import ConfigurationError, DecryptionError
from ..logger import get_logger
from ..schemas import PasswordSet, PasswordStatus, PasswordValue
from ..utils import is_valid_config_name

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_auth)])

# Plaintext passwords are only handed to job processes on this host
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "localhost"})


@router.get("", response_model=PasswordStatus)
def list_passwords(context: AppContext = Depends(get_context)):
    # list() decrypts once and records any failure
    configs = sorted(context.vault.list())
    return PasswordStatus(
        configs=configs,
        enabled=context.vault.enabled,
        decryptionFailed=context.vault.decryption_failing,
    )


@router.delete("", status_code=status.HTTP_200_OK)
def reset_passwords(confirm: bool = Query(False), context: AppContext = Depends(get_context)):
    """
    Discard every stored password. Required to recover from a password store
    that can no longer be decrypted, so it has to be confirmed explicitly.
    """
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Resetting the password store deletes all passwords; pass confirm=true.",
        )
    context.vault.reset()
    return {"success": True}


@router.get("/{name}", response_model=PasswordValue)
def get_password(name: str, request: Request, context: AppContext = Depends(get_context)):
    client_host = request.client.host if request.client else None
    if client_host not in LOOPBACK_HOSTS:
        logger.warning(f"Refused password request for '{name}' from {client_host}.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    password = context.vault.get(name)
    if password is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Password not found")
    return PasswordValue(password=password)


@router.post("/{name}")
def set_password(name: str, body: PasswordSet, context: AppContext = Depends(get_context)):
    if not is_valid_config_name(name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid config name: '{name}'")
    try:
        context.vault.set(name, body.password)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except DecryptionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"success": True}


@router.delete("/{name}")
def delete_password(name: str, context: AppContext = Depends(get_context)):
    try:
        context.vault.delete(name)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except DecryptionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"success": True}
