from sqlalchemy.orm import Session
from datetime import date, time
from typing import Dict, FrozenSet, List, Optional, Tuple, Union
import logging

from ..core.database import persistence_guard
from ..core.exceptions import (
    ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
)
from ..core.locks import appointment_key, get_lock_manager
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus, AppointmentStatusChange

logger = logging.getLogger(__name__)

Status = AppointmentStatus

TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.CANCELLED})

NON_TERMINAL_STATUSES = frozenset(set(Status) - TERMINAL_STATUSES)

_STAFF = frozenset({UserRole.DOCTOR, UserRole.ADMIN})
_EVERYONE = frozenset({UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN})

# Roles that may move an appointment to a new slot
RESCHEDULE_ROLES = _EVERYONE

# (from, to) -> roles allowed to request it
TRANSITIONS: Dict[Tuple[Status, Status], FrozenSet[UserRole]] = {
    (Status.PENDING, Status.SCHEDULED): _STAFF,
    (Status.PENDING, Status.CONFIRMED): _STAFF,
    (Status.SCHEDULED, Status.CONFIRMED): _STAFF,
    (Status.CONFIRMED, Status.CHECKED_IN): frozenset({UserRole.DOCTOR}),
    (Status.CHECKED_IN, Status.COMPLETED): frozenset({UserRole.DOCTOR}),
    (Status.SCHEDULED, Status.RESCHEDULED): _EVERYONE,
    (Status.CONFIRMED, Status.RESCHEDULED): _EVERYONE,
}
TRANSITIONS.update({
    (status, Status.CANCELLED): _EVERYONE for status in NON_TERMINAL_STATUSES
})


def can_transition(current: Status, target: Status) -> bool:
    """Whether the state machine has an edge from ``current`` to ``target``."""
    return (current, target) in TRANSITIONS


def roles_reaching(target: Status) -> FrozenSet[UserRole]:
    """Every role that may move an appointment into ``target`` from some state."""
    roles = set()
    for (_, to), allowed in TRANSITIONS.items():
        if to == target:
            roles |= allowed
    return frozenset(roles)


def coerce_role(role: Union[UserRole, str]) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        raise ValidationError(f"Unknown role: {role}")


def record_status_change(
    db: Session,
    appointment: Appointment,
    from_status: Optional[Status],
    to_status: Status,
    changed_by: Optional[int],
    reason: Optional[str] = None,
    previous_date: Optional[date] = None,
    previous_time: Optional[time] = None,
) -> AppointmentStatusChange:
    """Add an audit row; the caller commits it with the status change itself."""
    change = AppointmentStatusChange(
        appointment_id=appointment.id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        reason=reason,
        previous_date=previous_date,
        previous_time=previous_time,
    )
    db.add(change)
    return change


class LifecycleEngine:
    """The single authority on appointment status changes.

    Each change is checked against the TRANSITIONS table and the caller's
    role and ownership, under a per-appointment lock so two concurrent
    requests can never both validate against the same stale status.
    """

    def __init__(self, db: Session, locks=None):
        self.db = db
        self.locks = locks or get_lock_manager()

    def load_for_update(self, appointment_id: int) -> Appointment:
        with persistence_guard(self.db, "load an appointment"):
            appointment = (
                self.db.query(Appointment)
                .filter(Appointment.id == appointment_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def authorize(
        self,
        appointment: Appointment,
        user_id: int,
        role: UserRole,
        target: Status
    ) -> None:
        """Raise unless ``user_id`` acting as ``role`` may move ``appointment`` to ``target``."""
        if role not in roles_reaching(target):
            raise ForbiddenError(
                f"A {role.value} cannot mark appointments as {target.value}"
            )

        self.check_ownership(appointment, user_id, role)

        if not can_transition(appointment.status, target):
            raise InvalidTransitionError(
                f"Cannot change status from {appointment.status.value} to {target.value}"
            )

        if role not in TRANSITIONS[(appointment.status, target)]:
            raise ForbiddenError(
                f"A {role.value} cannot change status from "
                f"{appointment.status.value} to {target.value}"
            )

    def allowed_targets(
        self,
        appointment: Appointment,
        user_id: int,
        role: Union[UserRole, str]
    ) -> List[Status]:
        """Statuses this user could move the appointment to right now."""
        role = coerce_role(role)
        try:
            self.check_ownership(appointment, user_id, role)
        except ForbiddenError:
            return []
        return [
            to for (current, to), roles in TRANSITIONS.items()
            if current == appointment.status and role in roles
        ]

    def transition(
        self,
        appointment_id: int,
        requesting_user_id: int,
        requesting_role: Union[UserRole, str],
        target_status: Union[Status, str],
        reason: Optional[str] = None
    ) -> Appointment:
        role = coerce_role(requesting_role)
        try:
            target = Status(target_status)
        except ValueError:
            raise ValidationError(f"Unknown status: {target_status}")

        with self.locks.hold(appointment_key(appointment_id)):
            appointment = self.load_for_update(appointment_id)
            current = appointment.status

            try:
                self.authorize(appointment, requesting_user_id, role, target)
            except (ForbiddenError, InvalidTransitionError) as e:
                self.db.rollback()
                logger.warning(
                    f"Rejected {current.value} -> {target.value} on appointment "
                    f"{appointment_id} by user {requesting_user_id}: {e.detail}"
                )
                raise

            with persistence_guard(self.db, "change appointment status"):
                appointment.status = target
                if target == Status.CANCELLED:
                    appointment.cancelled_reason = reason
                record_status_change(
                    self.db, appointment, current, target,
                    changed_by=requesting_user_id, reason=reason
                )
                self.db.commit()
                self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment_id}: {current.value} -> {target.value} "
            f"by user {requesting_user_id}"
        )
        return appointment

    def check_ownership(self, appointment: Appointment, user_id: int, role: UserRole) -> None:
        if role == UserRole.PATIENT and appointment.patient_id != user_id:
            raise ForbiddenError("Patients can only manage their own appointments")
        if role == UserRole.DOCTOR and appointment.doctor_id != user_id:
            raise ForbiddenError("Doctors can only manage their own appointments")
