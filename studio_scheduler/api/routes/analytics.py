from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from ...api import deps
from ...core.constants import NOT_FOUND_OR_FORBIDDEN
from ...db import schemas
from ...services.authorization import Principal
from ...services.booking_validator import Rejected
from ...services.interval_index import as_utc
from ...services.scheduling_service import SchedulingEngine

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=schemas.SessionAnalytics)
def session_analytics(
    period_start: datetime | None = None,
    period_end: datetime | None = None,
    trainer_id: int | None = None,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    period_end = as_utc(period_end) if period_end else datetime.now(timezone.utc)
    period_start = as_utc(period_start) if period_start else period_end - timedelta(days=30)
    if period_end <= period_start:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="period_end must be after period_start"
        )
    result = engine.get_analytics(principal, period_start, period_end, trainer_id=trainer_id)
    if isinstance(result, Rejected):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_FORBIDDEN)
    return result
