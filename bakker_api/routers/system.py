from collections import deque

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from ..context import AppContext
from ..cron import describe_cron, validate_cron
from ..dependencies import get_context, require_auth
from ..schemas import AuthRequired, CronDescription, JobStatus, StatusResponse

router = APIRouter()

LOG_TAIL_LINES = 200


@router.get("/auth-required", response_model=AuthRequired)
def auth_required(context: AppContext = Depends(get_context)):
    return AuthRequired(
        required=bool(context.settings.auth_token),
        decryptionFailed=context.vault.status().decryption_failing,
    )


@router.get("/status", response_model=StatusResponse, dependencies=[Depends(require_auth)])
def get_status(context: AppContext = Depends(get_context)):
    """Backup jobs currently running; records of dead processes are cleaned up on the way."""
    jobs = [
        JobStatus(database=record.database, pid=record.pid, started=record.started)
        for record in context.coordinator.list_running()
    ]
    return StatusResponse(running=bool(jobs), jobs=jobs)


@router.get("/logs", response_class=PlainTextResponse, dependencies=[Depends(require_auth)])
def get_logs(context: AppContext = Depends(get_context)):
    try:
        with open(context.settings.log_path, "r", encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=LOG_TAIL_LINES))
    except FileNotFoundError:
        return "No logs available yet.\n"


@router.get("/cron/describe", response_model=CronDescription, dependencies=[Depends(require_auth)])
def describe(expr: str = Query(...)):
    error = validate_cron(expr)
    if error:
        return CronDescription(valid=False, error=error)
    return CronDescription(valid=True, description=describe_cron(expr))
