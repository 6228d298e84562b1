from datetime import timedelta

import pytest

from hospital_scheduling.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from hospital_scheduling.core.security import UserRole
from hospital_scheduling.models.appointment import AppointmentStatus as Status
from hospital_scheduling.models.availability import Weekday
from hospital_scheduling.schemas.availability import DayAvailability, WeeklyTemplate
from hospital_scheduling.services.availability_service import AvailabilityService
from hospital_scheduling.services.lifecycle import LifecycleEngine
from hospital_scheduling.services.query_service import AppointmentFilters, AppointmentQueryService

from tests.conftest import ELEVEN, NINE, NEXT_MONDAY, NEXT_TUESDAY, TEN, TODAY, book

FOLLOWING_MONDAY = NEXT_MONDAY + timedelta(days=7)


@pytest.fixture
def busy_week(db, doctor, other_doctor, patient, other_patient):
    """A handful of appointments across two doctors, two patients and two weeks."""
    week = WeeklyTemplate(days={
        Weekday.MONDAY: DayAvailability(available=True, slots=[NINE, TEN, ELEVEN]),
        Weekday.TUESDAY: DayAvailability(available=True, slots=[NINE]),
    })
    AvailabilityService(db).set_template(doctor.id, doctor.id, week)
    AvailabilityService(db).set_template(other_doctor.id, other_doctor.id, week)

    # Booked out of chronological order on purpose
    return {
        "late": book(db, patient, doctor, day=FOLLOWING_MONDAY, at=NINE),
        "eleven": book(db, patient, doctor, at=ELEVEN, department="Neurology"),
        "nine": book(db, other_patient, doctor, at=NINE),
        "tuesday": book(db, patient, other_doctor, day=NEXT_TUESDAY, at=NINE),
        "ten": book(db, patient, doctor, at=TEN),
    }


class TestAppointmentQueries:

    def test_results_ordered_by_date_then_time(self, db, busy_week):
        results = AppointmentQueryService(db).list(AppointmentFilters())

        assert [a.id for a in results] == [
            busy_week[key].id for key in ("nine", "ten", "eleven", "tuesday", "late")
        ]

    def test_order_is_stable_across_calls(self, db, busy_week):
        queries = AppointmentQueryService(db)
        first = [a.id for a in queries.list(AppointmentFilters(patient_id=busy_week["ten"].patient_id))]
        second = [a.id for a in queries.list(AppointmentFilters(patient_id=busy_week["ten"].patient_id))]
        assert first == second

    def test_filter_by_patient_and_doctor(self, db, busy_week, patient, doctor):
        results = AppointmentQueryService(db).list(
            AppointmentFilters(patient_id=patient.id, doctor_id=doctor.id)
        )
        assert [a.id for a in results] == [
            busy_week["ten"].id, busy_week["eleven"].id, busy_week["late"].id
        ]

    def test_filter_by_status(self, db, busy_week, patient):
        LifecycleEngine(db).transition(
            busy_week["eleven"].id, patient.id, UserRole.PATIENT, Status.CANCELLED
        )

        cancelled = AppointmentQueryService(db).list(AppointmentFilters(status=Status.CANCELLED))
        assert [a.id for a in cancelled] == [busy_week["eleven"].id]

    def test_filter_by_date_range(self, db, busy_week):
        results = AppointmentQueryService(db).list(
            AppointmentFilters(date_from=NEXT_TUESDAY, date_to=FOLLOWING_MONDAY)
        )
        assert [a.id for a in results] == [busy_week["tuesday"].id, busy_week["late"].id]

    def test_single_day(self, db, busy_week):
        results = AppointmentQueryService(db).list(
            AppointmentFilters(date_from=NEXT_MONDAY, date_to=NEXT_MONDAY)
        )
        assert len(results) == 3

    def test_inverted_range_rejected(self, db, busy_week):
        with pytest.raises(ValidationError):
            AppointmentQueryService(db).list(
                AppointmentFilters(date_from=FOLLOWING_MONDAY, date_to=NEXT_MONDAY)
            )

    def test_filter_by_department(self, db, busy_week):
        results = AppointmentQueryService(db).list(AppointmentFilters(department="Neurology"))
        assert [a.id for a in results] == [busy_week["eleven"].id]

    def test_pagination_and_count(self, db, busy_week):
        queries = AppointmentQueryService(db)
        everything = queries.list(AppointmentFilters())

        page = queries.list(AppointmentFilters(), skip=2, limit=2)

        assert [a.id for a in page] == [a.id for a in everything[2:4]]
        assert queries.count(AppointmentFilters()) == 5

    def test_get_respects_ownership(self, db, busy_week, patient, other_patient, other_doctor, admin):
        queries = AppointmentQueryService(db)
        appointment_id = busy_week["ten"].id

        assert queries.get(appointment_id, patient.id, UserRole.PATIENT).id == appointment_id
        assert queries.get(appointment_id, admin.id, UserRole.ADMIN).id == appointment_id
        with pytest.raises(ForbiddenError):
            queries.get(appointment_id, other_patient.id, UserRole.PATIENT)
        with pytest.raises(ForbiddenError):
            queries.get(appointment_id, other_doctor.id, UserRole.DOCTOR)
        with pytest.raises(NotFoundError):
            queries.get(987654)

    def test_doctor_stats(self, db, busy_week, doctor, patient):
        engine = LifecycleEngine(db)
        nine = busy_week["nine"]
        for target in (Status.CONFIRMED, Status.CHECKED_IN, Status.COMPLETED):
            engine.transition(nine.id, doctor.id, UserRole.DOCTOR, target)
        engine.transition(busy_week["eleven"].id, patient.id, UserRole.PATIENT, Status.CANCELLED)

        stats = AppointmentQueryService(db).doctor_stats(doctor.id, TODAY)

        assert stats == {
            "doctor_id": doctor.id,
            "total_appointments": 4,
            "total_patients": 2,
            "upcoming_appointments": 2,
            "completed_appointments": 1,
        }
