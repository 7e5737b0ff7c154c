from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..config import migrate_legacy_config, parse_backup_config, save_backup_config
from ..context import AppContext
from ..crontab import write_crontab
from ..dependencies import get_context, require_auth
from ..errors import ConfigValidationError
from ..logger import get_logger
from ..schemas import ConfigWriteResponse

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_auth)])


@router.get("", response_model=dict)
def get_config(context: AppContext = Depends(get_context)):
    try:
        return context.load_config().model_dump()
    except ConfigValidationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.put("", response_model=ConfigWriteResponse)
def update_config(data: dict = Body(...), context: AppContext = Depends(get_context)):
    """
    Validate and replace the backup configuration, then regenerate the crontab.
    Nothing is written when any database or schedule is invalid.
    """
    logger.info("Updating backup configuration.")
    try:
        data, _ = migrate_legacy_config(data)
        config = parse_backup_config(data)
    except ConfigValidationError as e:
        logger.warning(f"Rejected config update: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    save_backup_config(context.settings, config)

    crontab_updated = True
    try:
        write_crontab(config, context.settings)
    except OSError as e:
        crontab_updated = False
        logger.error(f"Config saved but the crontab could not be written: {e}")

    return ConfigWriteResponse(success=True, crontabUpdated=crontab_updated)
