from sqlalchemy import func
from sqlalchemy.orm import Session, Query
from pydantic import BaseModel
from datetime import date
from typing import List, Optional

from ..core.database import persistence_guard
from ..core.exceptions import ForbiddenError, NotFoundError, ValidationError
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus, AppointmentStatusChange

class AppointmentFilters(BaseModel):
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    status: Optional[AppointmentStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    department: Optional[str] = None

class AppointmentQueryService:
    """Read-only appointment lookups behind every dashboard."""

    def __init__(self, db: Session):
        self.db = db

    def _filtered(self, filters: AppointmentFilters) -> Query:
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise ValidationError("date_from must not be after date_to")

        query = self.db.query(Appointment)
        if filters.patient_id is not None:
            query = query.filter(Appointment.patient_id == filters.patient_id)
        if filters.doctor_id is not None:
            query = query.filter(Appointment.doctor_id == filters.doctor_id)
        if filters.status is not None:
            query = query.filter(Appointment.status == filters.status)
        if filters.date_from is not None:
            query = query.filter(Appointment.appointment_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(Appointment.appointment_date <= filters.date_to)
        if filters.department:
            query = query.filter(Appointment.department == filters.department)
        return query

    def list(
        self,
        filters: AppointmentFilters,
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Appointment]:
        """Matching appointments ordered by date, then time, then id."""
        query = self._filtered(filters).order_by(
            Appointment.appointment_date,
            Appointment.appointment_time,
            Appointment.id
        )
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)

        with persistence_guard(self.db, "list appointments"):
            return query.all()

    def count(self, filters: AppointmentFilters) -> int:
        with persistence_guard(self.db, "count appointments"):
            return self._filtered(filters).count()

    def get(
        self,
        appointment_id: int,
        viewer_id: Optional[int] = None,
        viewer_role: Optional[UserRole] = None
    ) -> Appointment:
        """Fetch one appointment; patients and doctors may only see their own."""
        with persistence_guard(self.db, "load an appointment"):
            appointment = self.db.query(Appointment).filter(
                Appointment.id == appointment_id
            ).first()

        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        if viewer_role == UserRole.PATIENT and appointment.patient_id != viewer_id:
            raise ForbiddenError("Patients can only view their own appointments")
        if viewer_role == UserRole.DOCTOR and appointment.doctor_id != viewer_id:
            raise ForbiddenError("Doctors can only view their own appointments")

        return appointment

    def history(self, appointment_id: int) -> List[AppointmentStatusChange]:
        with persistence_guard(self.db, "load appointment history"):
            return self.db.query(AppointmentStatusChange).filter(
                AppointmentStatusChange.appointment_id == appointment_id
            ).order_by(AppointmentStatusChange.id).all()

    def doctor_stats(self, doctor_id: int, today: date) -> dict:
        """Dashboard counters for one doctor."""
        base = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)

        with persistence_guard(self.db, "compute doctor statistics"):
            total_patients = self.db.query(
                func.count(func.distinct(Appointment.patient_id))
            ).filter(Appointment.doctor_id == doctor_id).scalar()

            return {
                "doctor_id": doctor_id,
                "total_appointments": base.count(),
                "total_patients": total_patients or 0,
                "upcoming_appointments": base.filter(
                    Appointment.appointment_date >= today,
                    Appointment.status.notin_([
                        AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED
                    ])
                ).count(),
                "completed_appointments": base.filter(
                    Appointment.status == AppointmentStatus.COMPLETED
                ).count(),
            }
