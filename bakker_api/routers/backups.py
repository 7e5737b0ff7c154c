from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from .. import backup_manager
from ..context import AppContext
from ..dependencies import get_context, require_auth
from ..errors import AlreadyRunningError, ConfigValidationError, UnknownDatabaseError
from ..logger import get_logger
from ..schemas import BackupInfo, TriggerRequest, TriggerResponse
from ..utils import format_size_mb

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_auth)])


@router.get("", response_model=Dict[str, List[BackupInfo]])
def list_backups(context: AppContext = Depends(get_context)):
    grouped = backup_manager.list_backups(context)
    return {
        database: [
            BackupInfo(
                id=artifact.id,
                filename=artifact.filename,
                database=artifact.database,
                date=artifact.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                size=artifact.size,
                sizeMB=format_size_mb(artifact.size),
            )
            for artifact in artifacts
        ]
        for database, artifacts in grouped.items()
    }


@router.post("/trigger", response_model=TriggerResponse)
def trigger_backup(body: TriggerRequest, context: AppContext = Depends(get_context)):
    try:
        pid = backup_manager.trigger_backup(context, body.database)
    except UnknownDatabaseError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ConfigValidationError as e:
        logger.error(f"Cannot trigger backup, config is invalid: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return TriggerResponse(success=True, message=f"Backup triggered for {body.database}", pid=pid)


@router.get("/{backup_id}")
def download_backup(backup_id: int, context: AppContext = Depends(get_context)):
    artifact = backup_manager.get_backup(context, backup_id)
    if not artifact:
        raise HTTPException(status_code=404, detail="Backup not found")
    return FileResponse(
        path=backup_manager.backup_path(context, artifact),
        filename=artifact.filename,
        media_type="application/gzip",
    )


@router.delete("/{backup_id}")
def delete_backup(backup_id: int, context: AppContext = Depends(get_context)):
    if not backup_manager.delete_backup(context, backup_id):
        raise HTTPException(status_code=404, detail="Backup not found")
    return {"success": True}
