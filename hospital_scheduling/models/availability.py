from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.sql import func
from datetime import date
import enum

from ..core.database import Base

class Weekday(str, enum.Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Weekday of a calendar date."""
        return list(cls)[day.weekday()]

class DoctorAvailability(Base):
    """One weekday of a doctor's weekly template."""
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    weekday = Column(
        SQLEnum(Weekday, name="weekday", native_enum=False,
                values_callable=lambda days: [d.value for d in days]),
        nullable=False,
    )
    available = Column(Boolean, nullable=False, default=False)
    slots = Column(JSON, nullable=False, default=list)  # sorted "HH:MM" strings

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("doctor_id", "weekday", name="uq_doctor_availability_day"),
    )

    def __repr__(self):
        return f"<DoctorAvailability(doctor_id={self.doctor_id}, weekday='{self.weekday}', slots={self.slots})>"
