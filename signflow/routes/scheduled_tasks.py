"""Scheduled tasks endpoint for cron jobs (Cloud Scheduler).

Example Cloud Scheduler config:
- Schedule: 0 8 * * 1-5 (weekdays at 8 AM)
- Target: POST https://api.example.com/scheduled/reminders
- Headers: X-Cron-Secret: <your-secret>
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header

from signflow.core.settings import settings
from signflow.schemas.workflow import ReminderSweepOut
from signflow.services.factory import ConventionServices, get_services

logger = logging.getLogger("signflow.reminders")
router = APIRouter(prefix="/scheduled", tags=["Scheduled"])


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    """Verify the cron secret header for scheduled job authentication."""
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=403, detail="Invalid cron secret")
    return True


@router.post("/reminders", response_model=ReminderSweepOut)
def trigger_reminders(
    services: ConventionServices = Depends(get_services),
    _verified: bool = Depends(verify_cron_secret),
):
    """Remind every party currently holding up an agreement, honouring the per-agreement cooldown."""
    logger.info("Triggering reminder sweep")
    result = services.reminders.remind_all()
    return ReminderSweepOut(sent=result.sent, skipped=result.skipped, failed=result.failed)
