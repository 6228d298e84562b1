from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, time
from typing import List
import logging

from ..core.database import persistence_guard
from ..core.exceptions import InvalidTemplateError, UnauthorizedError, UnavailableError
from ..core.locks import availability_key, get_lock_manager
from ..core.security import UserRole
from ..models.availability import DoctorAvailability, Weekday
from ..schemas.availability import DayAvailability, WeeklyTemplate
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

SLOT_FORMAT = "%H:%M"

def format_slot(slot: time) -> str:
    return slot.strftime(SLOT_FORMAT)

def parse_slot(value: str) -> time:
    return datetime.strptime(value, SLOT_FORMAT).time()

class AvailabilityService:
    """Stores each doctor's weekly template of bookable slots.

    Saves by one doctor run one at a time under a per-doctor lock, so the
    last writer's template is the one left standing.
    """

    def __init__(self, db: Session, locks=None):
        self.db = db
        self.locks = locks or get_lock_manager()

    def get_template(self, doctor_id: int) -> WeeklyTemplate:
        """Return the doctor's template, or an all-unavailable week if none was saved."""
        with persistence_guard(self.db, "load availability"):
            rows = self.db.query(DoctorAvailability).filter(
                DoctorAvailability.doctor_id == doctor_id
            ).all()

        return WeeklyTemplate(days={
            row.weekday: DayAvailability(
                available=row.available,
                slots=[parse_slot(value) for value in row.slots]
            )
            for row in rows
        })

    def set_template(
        self,
        doctor_id: int,
        requesting_user_id: int,
        template: WeeklyTemplate
    ) -> WeeklyTemplate:
        """Replace the doctor's whole template."""
        if requesting_user_id != doctor_id:
            logger.warning(
                f"User {requesting_user_id} tried to edit the schedule of doctor {doctor_id}"
            )
            raise UnauthorizedError()

        requester = UserDirectory(self.db).get_user(requesting_user_id)
        if requester is None or requester.role != UserRole.DOCTOR:
            raise UnauthorizedError("Only doctors can publish availability")

        normalized = {
            weekday: self._normalize_day(weekday, day)
            for weekday, day in template.days.items()
        }

        with self.locks.hold(availability_key(doctor_id)), \
                persistence_guard(self.db, "save availability"):
            try:
                self.db.query(DoctorAvailability).filter(
                    DoctorAvailability.doctor_id == doctor_id
                ).delete(synchronize_session=False)

                for weekday, slots in normalized.items():
                    self.db.add(DoctorAvailability(
                        doctor_id=doctor_id,
                        weekday=weekday,
                        available=template.days[weekday].available,
                        slots=[format_slot(slot) for slot in slots]
                    ))

                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.error(f"Concurrent availability save for doctor {doctor_id}: {str(e)}")
                raise UnavailableError("Availability is being updated, please retry") from e
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Doctor {doctor_id} saved availability template")
        return self.get_template(doctor_id)

    def _normalize_day(self, weekday: Weekday, day: DayAvailability) -> List[time]:
        if not day.available and day.slots:
            raise InvalidTemplateError(
                f"{weekday.value.capitalize()} is marked unavailable but has time slots"
            )

        for slot in day.slots:
            if slot.second or slot.microsecond or slot.tzinfo is not None:
                raise InvalidTemplateError(
                    f"Slot {slot.isoformat()} on {weekday.value} must be a whole minute"
                )

        if len(set(day.slots)) != len(day.slots):
            raise InvalidTemplateError(
                f"{weekday.value.capitalize()} has duplicate time slots"
            )

        return sorted(day.slots)
