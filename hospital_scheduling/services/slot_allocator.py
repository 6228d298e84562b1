from sqlalchemy.orm import Session
from datetime import date, time
from typing import List, Set
from ..core.database import persistence_guard
from ..models.appointment import Appointment, AppointmentStatus
from .availability_service import AvailabilityService

class SlotAllocator:
    """Derives a doctor's free slots for a day from the template and live bookings.

    Nothing is cached: every call reads the current template and appointments,
    so the answer never lags behind a booking or cancellation.
    """

    def __init__(self, db: Session):
        self.db = db
        self.availability = AvailabilityService(db)

    def held_times(self, doctor_id: int, day: date) -> Set[time]:
        """Times on ``day`` occupied by the doctor's non-cancelled appointments."""
        with persistence_guard(self.db, "load booked slots"):
            rows = self.db.query(Appointment.appointment_time).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day,
                Appointment.status != AppointmentStatus.CANCELLED
            ).all()
        return {row.appointment_time for row in rows}

    def free_slots(self, doctor_id: int, day: date) -> List[time]:
        template_day = self.availability.get_template(doctor_id).for_day(day)
        if not template_day.available:
            return []

        held = self.held_times(doctor_id, day)
        return [slot for slot in sorted(template_day.slots) if slot not in held]

    def is_bookable(self, doctor_id: int, day: date, slot: time) -> bool:
        return slot in self.free_slots(doctor_id, day)
