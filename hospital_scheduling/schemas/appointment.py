from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime, time

from ..models.appointment import AppointmentStatus

class AppointmentCreate(BaseModel):
    """Booking request. Patients may omit ``patient_id`` to book for themselves."""
    patient_id: Optional[int] = None
    doctor_id: int
    appointment_date: date
    appointment_time: time
    department: str
    appointment_type: str
    notes: Optional[str] = None

class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: time
    department: str
    appointment_type: str
    notes: Optional[str] = None
    status: AppointmentStatus
    created_by: Optional[int] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class StatusUpdate(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=255)

class RescheduleRequest(BaseModel):
    appointment_date: date
    appointment_time: time

class Pagination(BaseModel):
    total: int
    skip: int
    limit: int

class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination

class StatusChangeResponse(BaseModel):
    from_status: Optional[AppointmentStatus] = None
    to_status: AppointmentStatus
    changed_by: Optional[int] = None
    reason: Optional[str] = None
    previous_date: Optional[date] = None
    previous_time: Optional[time] = None
    changed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AllowedTransitionsResponse(BaseModel):
    appointment_id: int
    status: AppointmentStatus
    allowed: List[AppointmentStatus]

class DoctorStats(BaseModel):
    doctor_id: int
    total_appointments: int
    total_patients: int
    upcoming_appointments: int
    completed_appointments: int
