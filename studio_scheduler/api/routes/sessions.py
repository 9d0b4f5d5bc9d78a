from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload
from ...api import deps
from ...api.responses import decision_out, session_out
from ...core.constants import NOT_FOUND_OR_FORBIDDEN
from ...db.session import get_db
from ...db import models, schemas
from ...services.authorization import Operation, Principal, ResourceKind, authorize
from ...services.booking_validator import SessionRequest
from ...services.interval_index import as_utc
from ...services.scheduling_service import SchedulingEngine, SessionPatch

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=schemas.DecisionOut, status_code=status.HTTP_201_CREATED)
def create_session(
    payload: schemas.TrainingSessionCreate,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    decision = engine.validate_and_create(
        principal,
        SessionRequest(
            trainer_id=payload.trainer_id,
            scheduled_start=payload.scheduled_start,
            scheduled_end=payload.scheduled_end,
            location=payload.location,
            max_participants=payload.max_participants,
            member_ids=payload.member_ids,
            notes=payload.notes,
        ),
    )
    return decision_out(decision)


@router.get("", response_model=list[schemas.TrainingSession])
def list_sessions(
    trainer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    status_filter: models.SessionStatus | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(deps.get_principal),
):
    if not authorize(principal, Operation.read, ResourceKind.session, trainer_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_FORBIDDEN)
    query = db.query(models.TrainingSession).options(selectinload(models.TrainingSession.bookings))
    if trainer_id is not None:
        query = query.filter(models.TrainingSession.trainer_id == trainer_id)
    if start is not None:
        query = query.filter(models.TrainingSession.scheduled_end > as_utc(start))
    if end is not None:
        query = query.filter(models.TrainingSession.scheduled_start < as_utc(end))
    if status_filter is not None:
        query = query.filter(models.TrainingSession.status == status_filter)
    sessions = query.order_by(models.TrainingSession.scheduled_start, models.TrainingSession.id).all()
    return [session_out(session) for session in sessions]


@router.get("/{session_id}", response_model=schemas.TrainingSession)
def get_session(
    session_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(deps.get_principal),
):
    session = db.get(models.TrainingSession, session_id)
    if session is None or not authorize(principal, Operation.read, ResourceKind.session, session.trainer_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_FORBIDDEN)
    return session_out(session)


@router.patch("/{session_id}", response_model=schemas.DecisionOut)
def update_session(
    session_id: int,
    payload: schemas.TrainingSessionUpdate,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    patch = SessionPatch(**payload.model_dump(exclude_unset=True))
    return decision_out(engine.validate_and_update(principal, session_id, patch))


@router.post("/{session_id}/cancel", response_model=schemas.DecisionOut)
def cancel_session(
    session_id: int,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    return decision_out(engine.cancel(principal, session_id))


@router.post("/{session_id}/status", response_model=schemas.DecisionOut)
def change_status(
    session_id: int,
    payload: schemas.SessionStatusChange,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    try:
        target = models.SessionStatus(payload.status)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown status {payload.status!r}"
        ) from exc
    return decision_out(engine.transition_status(principal, session_id, target))


@router.post("/{session_id}/members", response_model=schemas.DecisionOut)
def add_member(
    session_id: int,
    payload: schemas.SessionMemberAdd,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    return decision_out(engine.add_member(principal, session_id, payload.member_id))


@router.delete("/{session_id}/members/{member_id}", response_model=schemas.DecisionOut)
def remove_member(
    session_id: int,
    member_id: int,
    engine: SchedulingEngine = Depends(deps.get_engine),
    principal: Principal = Depends(deps.get_principal),
):
    return decision_out(engine.remove_member(principal, session_id, member_id))
