from sqlalchemy import (
    Column, Integer, String, ForeignKey, Date, DateTime, Time, Text, Index,
    Enum as SQLEnum, text
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

def _status_column_type():
    # Store the lowercase values so the partial index below can match them
    return SQLEnum(
        AppointmentStatus,
        name="appointment_status",
        native_enum=False,
        values_callable=lambda statuses: [s.value for s in statuses],
    )

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Appointment details
    appointment_date = Column(Date, nullable=False, index=True)
    appointment_time = Column(Time, nullable=False)
    department = Column(String(100), nullable=False)
    appointment_type = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(_status_column_type(), nullable=False, default=AppointmentStatus.SCHEDULED)

    # Tracking
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_reason = Column(String(255), nullable=True)

    # Relationships
    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])
    status_changes = relationship(
        "AppointmentStatusChange",
        back_populates="appointment",
        order_by="AppointmentStatusChange.id",
    )

    __table_args__ = (
        # One live appointment per doctor slot; cancelled rows keep their history
        Index(
            "uq_appointments_active_slot",
            "doctor_id", "appointment_date", "appointment_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, "
            f"date='{self.appointment_date}', time='{self.appointment_time}', status='{self.status}')>"
        )

class AppointmentStatusChange(Base):
    __tablename__ = "appointment_status_changes"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    from_status = Column(_status_column_type(), nullable=True)
    to_status = Column(_status_column_type(), nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reason = Column(String(255), nullable=True)

    # Previous slot, set when the change moved the appointment
    previous_date = Column(Date, nullable=True)
    previous_time = Column(Time, nullable=True)

    changed_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment", back_populates="status_changes")

    def __repr__(self):
        return (
            f"<AppointmentStatusChange(appointment_id={self.appointment_id}, "
            f"{self.from_status} -> {self.to_status})>"
        )
