"""API routes for schedule alerts."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from payouts.alert_service import AlertService, run_evaluation
from payouts.deps import LocksDep, SessionDep
from payouts.schemas import AlertChangeResponse, AlertResponse

router = APIRouter(prefix="/alerts", tags=["alerts"])
log = logging.getLogger(__name__)


@router.get("", response_model=List[AlertResponse])
async def list_alerts(
    db: SessionDep,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    severity: Optional[str] = None,
    is_read: Optional[bool] = Query(None, alias="isRead"),
    is_resolved: Optional[bool] = Query(None, alias="isResolved"),
):
    """Alerts, most severe first and newest first within a severity."""
    return await AlertService.list(
        db, entity_type=entity_type, severity=severity, is_read=is_read, is_resolved=is_resolved
    )


@router.post("/evaluate", response_model=List[AlertChangeResponse])
async def evaluate_alerts(db: SessionDep, locks: LocksDep):
    """Run one evaluation pass now instead of waiting for the background loop."""
    changes = await run_evaluation(db, locks=locks)
    return [
        AlertChangeResponse(action=change.action, alert=AlertResponse.model_validate(change.alert))
        for change in changes
    ]


@router.post("/{alert_id}/read", response_model=bool)
async def mark_alert_read(alert_id: int, db: SessionDep, locks: LocksDep):
    return await AlertService.mark_read(db, alert_id, locks=locks)


@router.post("/{alert_id}/resolve", response_model=bool)
async def resolve_alert(alert_id: int, db: SessionDep, locks: LocksDep):
    """Resolve an alert. Resolving it twice is rejected with 409."""
    return await AlertService.resolve(db, alert_id, locks=locks)
