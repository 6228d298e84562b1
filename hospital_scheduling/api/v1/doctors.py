from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import date
from typing import Callable

from ...core.database import get_db
from ...core.exceptions import ForbiddenError
from ...core.security import UserRole
from ...api.deps import get_clock, get_current_actor, require_role
from ...models.availability import Weekday
from ...schemas.appointment import DoctorStats
from ...schemas.availability import FreeSlotsResponse, WeeklyTemplate
from ...services.availability_service import AvailabilityService
from ...services.query_service import AppointmentQueryService
from ...services.slot_allocator import SlotAllocator
from ...services.user_directory import DirectoryUser

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("/{doctor_id}/availability", response_model=WeeklyTemplate)
def get_availability(
    doctor_id: int,
    _: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Weekly template; an all-unavailable week if the doctor never saved one."""
    return AvailabilityService(db).get_template(doctor_id)

@router.put("/{doctor_id}/availability", response_model=WeeklyTemplate)
def set_availability(
    doctor_id: int,
    template: WeeklyTemplate,
    actor: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Replace the doctor's weekly template. Doctors edit only their own."""
    return AvailabilityService(db).set_template(doctor_id, actor.id, template)

@router.get("/{doctor_id}/free-slots", response_model=FreeSlotsResponse)
def get_free_slots(
    doctor_id: int,
    day: date,
    _: DirectoryUser = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Slots still bookable for the doctor on ``day``."""
    return FreeSlotsResponse(
        doctor_id=doctor_id,
        day=day,
        weekday=Weekday.of(day),
        slots=SlotAllocator(db).free_slots(doctor_id, day)
    )

@router.get("/{doctor_id}/stats", response_model=DoctorStats)
def get_doctor_stats(
    doctor_id: int,
    actor: DirectoryUser = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN])),
    clock: Callable[[], date] = Depends(get_clock),
    db: Session = Depends(get_db)
):
    """Dashboard counters for a doctor (the doctor themself or an admin)."""
    if actor.role == UserRole.DOCTOR and actor.id != doctor_id:
        raise ForbiddenError("Only the doctor or an admin can view these statistics")
    return DoctorStats(**AppointmentQueryService(db).doctor_stats(doctor_id, clock()))
