from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload
from ...api import deps
from ...core.constants import NOT_FOUND_OR_FORBIDDEN
from ...db.session import get_db
from ...db import models, schemas
from ...services.authorization import Operation, Principal, ResourceKind, Role, authorize

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("", response_model=list[schemas.SessionBooking])
def list_bookings(
    session_id: int | None = None,
    member_id: int | None = None,
    include_cancelled: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(deps.get_principal),
):
    if principal.role is Role.member and member_id is None:
        member_id = principal.subject_id
    if not authorize(principal, Operation.read, ResourceKind.booking, member_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_FORBIDDEN)
    query = db.query(models.SessionBooking).options(selectinload(models.SessionBooking.session))
    if session_id is not None:
        query = query.filter(models.SessionBooking.session_id == session_id)
    if member_id is not None:
        query = query.filter(models.SessionBooking.member_id == member_id)
    if not include_cancelled:
        query = query.filter(models.SessionBooking.status == models.BookingStatus.confirmed)
    bookings = query.order_by(models.SessionBooking.id).all()
    return [
        schemas.SessionBooking(
            id=booking.id,
            session_id=booking.session_id,
            member_id=booking.member_id,
            status=booking.status.value,
            created_at=booking.created_at,
            cancelled_at=booking.cancelled_at,
            session_start=booking.session.scheduled_start,
            session_end=booking.session.scheduled_end,
            session_location=booking.session.location,
        )
        for booking in bookings
    ]
