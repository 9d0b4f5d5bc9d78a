from fastapi import HTTPException, status

from ..db import models, schemas
from ..services.booking_validator import Decision, ReasonCode

REJECTION_STATUS = {
    ReasonCode.UNAUTHORIZED: status.HTTP_404_NOT_FOUND,
    ReasonCode.TRAINER_CONFLICT: status.HTTP_409_CONFLICT,
    ReasonCode.MEMBER_CONFLICT: status.HTTP_409_CONFLICT,
    ReasonCode.INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    ReasonCode.PAST_DATE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReasonCode.END_BEFORE_START: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReasonCode.CAPACITY_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReasonCode.LOCATION_REQUIRED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def decision_out(decision: Decision) -> schemas.DecisionOut:
    if decision.accepted:
        return schemas.DecisionOut(accepted=True, session_id=decision.session_id)
    raise HTTPException(
        status_code=REJECTION_STATUS[decision.reason],
        detail=schemas.DecisionOut(
            accepted=False,
            reason=decision.reason.value,
            message=decision.message,
            details=decision.details,
        ).model_dump(mode="json"),
    )


def session_out(session: models.TrainingSession) -> schemas.TrainingSession:
    return schemas.TrainingSession(
        id=session.id,
        trainer_id=session.trainer_id,
        scheduled_start=session.scheduled_start,
        scheduled_end=session.scheduled_end,
        location=session.location,
        max_participants=session.max_participants,
        current_participants=session.current_participants,
        notes=session.notes,
        status=session.status.value,
        created_at=session.created_at,
        member_ids=[
            booking.member_id
            for booking in session.bookings
            if booking.status == models.BookingStatus.confirmed
        ],
    )
