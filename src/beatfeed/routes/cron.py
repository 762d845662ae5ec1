"""External cron trigger for deployments without the in-process tick."""

import hmac
import logging

from fastapi import APIRouter, HTTPException, Query

from ..dependencies import SchedulerHolderDep, SettingsDep
from ..models.responses import ErrorResponse, TriggerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron")


async def _check_and_run(holder) -> None:
    scheduler = await holder.get()
    summary = await scheduler.check_and_run()
    if summary is None:
        logger.info("Cron check: no run due")


@router.get("/scheduler", response_model=TriggerResponse)
async def cron_scheduler(
    holder: SchedulerHolderDep,
    settings: SettingsDep,
    key: str | None = Query(None, description="Shared cron secret"),
) -> TriggerResponse:
    """Start a scheduler check in the background and return immediately."""
    secret = settings.scheduler.cron_secret
    if secret and not hmac.compare_digest(key or "", secret):
        logger.warning("Rejected cron trigger with invalid key")
        raise HTTPException(
            status_code=401,
            detail=ErrorResponse(error="Unauthorized", error_type="unauthorized").model_dump(),
        )

    holder.spawn("cron-check", _check_and_run(holder))
    return TriggerResponse(success=True, message="Scheduler check initiated")
