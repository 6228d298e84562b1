from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import date, time
from typing import Callable, Optional, Union
import logging

from ..core.config import settings
from ..core.database import persistence_guard
from ..core.exceptions import (
    ForbiddenError, InvalidDateError, InvalidTransitionError,
    SlotUnavailableError, ValidationError
)
from ..core.locks import appointment_key, get_lock_manager, slot_key
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from .lifecycle import RESCHEDULE_ROLES, LifecycleEngine, coerce_role, record_status_change
from .slot_allocator import SlotAllocator
from .user_directory import DirectoryUser, UserDirectory

logger = logging.getLogger(__name__)

# Statuses an appointment may be moved to a new slot from
RESCHEDULABLE_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
})

class BookingService:
    """Books and reschedules appointments against doctors' availability.

    Slot acquisition runs under a lock keyed on (doctor, date, time): the
    slot is re-checked and the appointment committed while the lock is held,
    so concurrent requests for one slot produce exactly one booking.
    """

    def __init__(self, db: Session, clock: Callable[[], date] = date.today, locks=None):
        self.db = db
        self.clock = clock
        self.locks = locks or get_lock_manager()
        self.allocator = SlotAllocator(db)
        self.directory = UserDirectory(db)
        self.lifecycle = LifecycleEngine(db, locks=self.locks)

    def book(
        self,
        patient_id: int,
        doctor_id: int,
        appointment_date: date,
        appointment_time: time,
        department: str,
        appointment_type: str,
        notes: Optional[str] = None,
        requested_by: Optional[DirectoryUser] = None
    ) -> Appointment:
        """Create an appointment in a free slot."""
        missing = [
            name for name, value in (
                ("department", department), ("type", appointment_type)
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        self.directory.require_user(patient_id, UserRole.PATIENT)
        self.directory.require_user(doctor_id, UserRole.DOCTOR)

        if (requested_by is not None
                and requested_by.role == UserRole.PATIENT
                and requested_by.id != patient_id):
            raise ForbiddenError("Patients can only book appointments for themselves")

        self._check_date(appointment_date)

        initial_status = AppointmentStatus.SCHEDULED
        if (settings.REQUIRE_PATIENT_BOOKING_CONFIRMATION
                and requested_by is not None
                and requested_by.role == UserRole.PATIENT):
            initial_status = AppointmentStatus.PENDING

        with self.locks.hold(slot_key(doctor_id, appointment_date, appointment_time)):
            self._claim_slot(doctor_id, appointment_date, appointment_time)

            appointment = Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                department=department.strip(),
                appointment_type=appointment_type.strip(),
                notes=notes,
                status=initial_status,
                created_by=requested_by.id if requested_by else None
            )

            with persistence_guard(self.db, "book an appointment"):
                try:
                    self.db.add(appointment)
                    self.db.flush()
                    record_status_change(
                        self.db, appointment, None, initial_status,
                        changed_by=appointment.created_by
                    )
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    logger.warning(
                        f"Lost booking race for doctor {doctor_id} on "
                        f"{appointment_date} at {appointment_time}"
                    )
                    raise SlotUnavailableError()
                self.db.refresh(appointment)

        logger.info(
            f"Booked appointment {appointment.id} for patient {patient_id} with doctor "
            f"{doctor_id} on {appointment_date} at {appointment_time} ({initial_status.value})"
        )
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        new_date: date,
        new_time: time,
        requesting_user_id: int,
        requesting_role: Union[UserRole, str]
    ) -> Appointment:
        """Move an appointment to another slot as one atomic step.

        Either the appointment ends up on the new slot with status
        ``scheduled``, or it is left exactly as it was.
        """
        role = coerce_role(requesting_role)

        with self.locks.hold(appointment_key(appointment_id)):
            appointment = self.lifecycle.load_for_update(appointment_id)
            current = appointment.status

            try:
                if current not in RESCHEDULABLE_STATUSES:
                    raise InvalidTransitionError(
                        f"Cannot reschedule an appointment that is {current.value}"
                    )
                if current == AppointmentStatus.RESCHEDULED:
                    # Already awaiting a new slot; only the requester needs checking
                    if role not in RESCHEDULE_ROLES:
                        raise ForbiddenError(f"A {role.value} cannot reschedule appointments")
                    self.lifecycle.check_ownership(appointment, requesting_user_id, role)
                else:
                    self.lifecycle.authorize(
                        appointment, requesting_user_id, role,
                        AppointmentStatus.RESCHEDULED
                    )
                self._check_date(new_date)
            except (ForbiddenError, InvalidTransitionError, InvalidDateError):
                self.db.rollback()
                raise

            doctor_id = appointment.doctor_id
            old_date, old_time = appointment.appointment_date, appointment.appointment_time

            with self.locks.hold(slot_key(doctor_id, new_date, new_time)):
                try:
                    self._claim_slot(doctor_id, new_date, new_time)
                except SlotUnavailableError:
                    self.db.rollback()
                    raise

                with persistence_guard(self.db, "reschedule an appointment"):
                    try:
                        if current != AppointmentStatus.RESCHEDULED:
                            record_status_change(
                                self.db, appointment, current,
                                AppointmentStatus.RESCHEDULED,
                                changed_by=requesting_user_id
                            )
                        appointment.appointment_date = new_date
                        appointment.appointment_time = new_time
                        appointment.status = AppointmentStatus.SCHEDULED
                        record_status_change(
                            self.db, appointment, AppointmentStatus.RESCHEDULED,
                            AppointmentStatus.SCHEDULED,
                            changed_by=requesting_user_id,
                            previous_date=old_date,
                            previous_time=old_time
                        )
                        self.db.commit()
                    except IntegrityError:
                        self.db.rollback()
                        logger.warning(
                            f"Lost slot race while rescheduling appointment {appointment_id}"
                        )
                        raise SlotUnavailableError()
                    self.db.refresh(appointment)

        logger.info(
            f"Rescheduled appointment {appointment_id} from {old_date} {old_time} "
            f"to {new_date} {new_time}"
        )
        return appointment

    def _check_date(self, appointment_date: date) -> None:
        if appointment_date < self.clock():
            raise InvalidDateError(
                f"Cannot book {appointment_date.isoformat()}: date is in the past"
            )

    def _claim_slot(self, doctor_id: int, appointment_date: date, appointment_time: time) -> None:
        if not self.allocator.is_bookable(doctor_id, appointment_date, appointment_time):
            logger.warning(
                f"Slot {appointment_time} on {appointment_date} for doctor "
                f"{doctor_id} is not available"
            )
            raise SlotUnavailableError()
