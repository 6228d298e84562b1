from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import Callable, List, Optional

from ...core.config import settings
from ...core.database import get_db
from ...core.exceptions import ValidationError
from ...core.security import UserRole
from ...api.deps import get_clock, get_current_actor
from ...models.appointment import AppointmentStatus
from ...schemas.appointment import (
    AllowedTransitionsResponse, AppointmentCreate, AppointmentListResponse,
    AppointmentResponse, Pagination, RescheduleRequest, StatusChangeResponse,
    StatusUpdate
)
from ...services.booking_service import BookingService
from ...services.lifecycle import LifecycleEngine
from ...services.query_service import AppointmentFilters, AppointmentQueryService
from ...services.user_directory import DirectoryUser

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    booking: AppointmentCreate,
    actor: DirectoryUser = Depends(get_current_actor),
    clock: Callable[[], date] = Depends(get_clock),
    db: Session = Depends(get_db)
):
    """Book an appointment in one of the doctor's free slots."""
    patient_id = booking.patient_id
    if patient_id is None:
        if actor.role != UserRole.PATIENT:
            raise ValidationError("patient_id is required when booking for a patient")
        patient_id = actor.id

    appointment = BookingService(db, clock=clock).book(
        patient_id=patient_id,
        doctor_id=booking.doctor_id,
        appointment_date=booking.appointment_date,
        appointment_time=booking.appointment_time,
        department=booking.department,
        appointment_type=booking.appointment_type,
        notes=booking.notes,
        requested_by=actor
    )
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    department: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List appointments visible to the caller, ordered by date and time."""
    filters = AppointmentFilters(
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status_filter,
        date_from=on_date or date_from,
        date_to=on_date or date_to,
        department=department
    )

    # Patients and doctors only ever see their own appointments
    if actor.role == UserRole.PATIENT:
        filters.patient_id = actor.id
    elif actor.role == UserRole.DOCTOR:
        filters.doctor_id = actor.id

    queries = AppointmentQueryService(db)
    appointments = queries.list(filters, skip=skip, limit=limit)

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(a) for a in appointments],
        pagination=Pagination(total=queries.count(filters), skip=skip, limit=limit)
    )

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    appointment = AppointmentQueryService(db).get(appointment_id, actor.id, actor.role)
    return AppointmentResponse.model_validate(appointment)

@router.get("/{appointment_id}/history", response_model=List[StatusChangeResponse])
def get_appointment_history(
    appointment_id: int,
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Every status change the appointment went through, oldest first."""
    queries = AppointmentQueryService(db)
    queries.get(appointment_id, actor.id, actor.role)
    return [StatusChangeResponse.model_validate(c) for c in queries.history(appointment_id)]

@router.get("/{appointment_id}/transitions", response_model=AllowedTransitionsResponse)
def get_allowed_transitions(
    appointment_id: int,
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Statuses the caller may move the appointment to, for enabling UI actions."""
    appointment = AppointmentQueryService(db).get(appointment_id, actor.id, actor.role)
    return AllowedTransitionsResponse(
        appointment_id=appointment.id,
        status=appointment.status,
        allowed=LifecycleEngine(db).allowed_targets(appointment, actor.id, actor.role)
    )

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    update: StatusUpdate,
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Move an appointment through its lifecycle."""
    appointment = LifecycleEngine(db).transition(
        appointment_id, actor.id, actor.role, update.status, reason=update.reason
    )
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    actor: DirectoryUser = Depends(get_current_actor),
    clock: Callable[[], date] = Depends(get_clock),
    db: Session = Depends(get_db)
):
    """Move an appointment to another free slot."""
    appointment = BookingService(db, clock=clock).reschedule(
        appointment_id,
        request.appointment_date,
        request.appointment_time,
        actor.id,
        actor.role
    )
    return AppointmentResponse.model_validate(appointment)
