from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from ...api import deps
from ...core.constants import NOT_FOUND_OR_FORBIDDEN
from ...db import schemas
from ...services.authorization import Operation, Principal, ResourceKind, authorize
from ...services.scheduling_service import AvailabilityResult, SchedulingEngine

router = APIRouter(prefix="/availability", tags=["availability"])


def _require_read(principal: Principal, trainer_id: int) -> None:
    if not authorize(principal, Operation.read, ResourceKind.session, trainer_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_FORBIDDEN)


def _availability_out(result: AvailabilityResult) -> schemas.Availability:
    return schemas.Availability(
        available=result.available,
        conflicts=[
            schemas.ConflictOut(
                session_id=conflict.session_id,
                trainer_id=conflict.trainer_id,
                scheduled_start=conflict.scheduled_start,
                scheduled_end=conflict.scheduled_end,
                location=conflict.location,
            )
            for conflict in result.conflicts
        ],
        message=result.message,
    )


@router.get("", response_model=schemas.Availability)
def check_availability(
    trainer_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_session_id: int | None = None,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    _require_read(principal, trainer_id)
    result = engine.check_availability(trainer_id, start_time, end_time, exclude_session_id=exclude_session_id)
    return _availability_out(result)


@router.post("/bulk", response_model=list[schemas.WindowAvailability])
def check_bulk_availability(
    payload: schemas.BulkAvailabilityRequest,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    _require_read(principal, payload.trainer_id)
    results = engine.bulk_availability(
        payload.trainer_id, [(window.start_time, window.end_time) for window in payload.windows]
    )
    return [
        schemas.WindowAvailability(
            start_time=window.start_time,
            end_time=window.end_time,
            availability=_availability_out(result),
        )
        for window, result in zip(payload.windows, results)
    ]


@router.get("/day", response_model=list[schemas.AvailabilityWindow])
def trainer_day_schedule(
    trainer_id: int,
    day: date,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    _require_read(principal, trainer_id)
    return [
        schemas.AvailabilityWindow(start_time=entry.start, end_time=entry.end)
        for entry in engine.trainer_day_schedule(trainer_id, day)
    ]
