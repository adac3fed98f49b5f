"""Tests for the appointment transaction manager."""

import logging
from dataclasses import replace
from datetime import date, datetime, time

import pydantic
import pytest

from conftest import (
    ADMIN,
    BOOKING_DATE,
    BRAKE_OVERHAUL,
    CUSTOMER,
    CUSTOMER_ID,
    INSPECTION,
    MECHANIC,
    MECHANIC_ID,
    OIL_CHANGE,
    OTHER_CUSTOMER,
    OTHER_CUSTOMER_ID,
    SECOND_MECHANIC,
    SECOND_MECHANIC_ID,
    make_booking,
)
from mechanic_booking.core.config import settings
from mechanic_booking.core.errors import (
    InvalidTransition,
    MalformedTemporalInput,
    NotFound,
    PermissionDenied,
    SlotConflict,
    ValidationError,
)
from mechanic_booking.db.base import transaction
from mechanic_booking.db.models.appointment import Appointment, AppointmentService
from mechanic_booking.db.models.availability import BlockedRange, WorkingHoursWindow
from mechanic_booking.db.models.vehicle import Vehicle
from mechanic_booking.schemas.appointment import AppointmentUpdate
from mechanic_booking.scheduling.blocked import create_blocked_slot
from mechanic_booking.scheduling.conflicts import check_slot_availability
from mechanic_booking.services.appointments import AppointmentManager, check_transition, parse_status


def _config(**scheduling):
    return replace(settings, scheduling=replace(settings.scheduling, **scheduling))


def _blocks(db, appointment_id):
    return (
        db.query(BlockedRange)
        .filter(BlockedRange.related_appointment_id == appointment_id)
        .order_by(BlockedRange.slot_time)
        .all()
    )


class TestCreate:
    def test_creates_pending_appointment(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())

        appointment = manager.db.get(Appointment, result["appointmentId"])
        assert appointment.status == "Pending"
        assert appointment.user_id == CUSTOMER_ID
        assert appointment.appointment_date == datetime(2024, 6, 1, 9, 0)
        assert appointment.estimated_end_time == datetime(2024, 6, 1, 10, 0)
        assert appointment.service_duration == 60
        assert appointment.payment_method == "pay_at_shop"
        assert [(i.service_id, i.quantity) for i in appointment.line_items] == [(OIL_CHANGE, 1)]
        assert notifier.events == [("created", appointment.id, None)]

    def test_registers_new_vehicle(self, manager):
        result = manager.create(CUSTOMER, make_booking(license_plate="30F-999.99", year=2019))
        vehicle = manager.db.get(Vehicle, result["vehicleId"])
        assert vehicle.license_plate == "30F-999.99"
        assert vehicle.user_id == CUSTOMER_ID
        assert vehicle.year == 2019

    def test_reuses_vehicle_with_known_plate(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        second = manager.create(CUSTOMER, make_booking("2024-06-01 11:00:00"))
        assert first["vehicleId"] == second["vehicleId"]
        assert manager.db.query(Vehicle).count() == 1

    def test_existing_vehicle_id(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        second = manager.create(
            CUSTOMER, make_booking("2024-06-01 11:00:00", license_plate=None, vehicleId=first["vehicleId"])
        )
        assert second["vehicleId"] == first["vehicleId"]

    def test_unknown_vehicle_id(self, manager):
        with pytest.raises(NotFound):
            manager.create(CUSTOMER, make_booking(license_plate=None, vehicleId=404))

    def test_someone_elses_vehicle(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        with pytest.raises(PermissionDenied):
            manager.create(
                OTHER_CUSTOMER,
                make_booking("2024-06-01 11:00:00", license_plate=None, vehicleId=first["vehicleId"]),
            )

    def test_duration_sums_service_minutes_times_quantity(self, manager):
        result = manager.create(
            CUSTOMER,
            make_booking(services=[{"serviceId": INSPECTION, "quantity": 2}, OIL_CHANGE]),
        )
        appointment = manager.db.get(Appointment, result["appointmentId"])
        assert appointment.service_duration == 120
        assert appointment.estimated_end_time == datetime(2024, 6, 1, 11, 0)

    def test_zero_quantity_is_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            make_booking(services=[{"serviceId": OIL_CHANGE, "quantity": 0}])

    def test_bank_transfer_payment(self, manager):
        result = manager.create(CUSTOMER, make_booking(paymentMethod="Chuyển khoản ngân hàng"))
        assert manager.db.get(Appointment, result["appointmentId"]).payment_method == "bank_transfer"

    def test_booking_without_mechanic(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-05 15:00:00", mechanic_id=None))
        assert manager.db.get(Appointment, result["appointmentId"]).mechanic_id is None

    @pytest.mark.parametrize("field, value", [
        ("appointment_date", None),
        ("services", []),
        ("license_plate", None),
        ("license_plate", "   "),
    ])
    def test_missing_required_fields(self, manager, field, value):
        payload = make_booking().model_copy(update={field: value})
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, payload)
        assert manager.db.query(Appointment).count() == 0

    def test_unknown_service(self, manager):
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking(services=[OIL_CHANGE, 999]))
        assert manager.db.query(Appointment).count() == 0

    def test_malformed_start_is_rejected(self, manager):
        with pytest.raises(MalformedTemporalInput):
            manager.create(CUSTOMER, make_booking("next tuesday-ish"))

    def test_unknown_mechanic(self, manager):
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking(mechanic_id=CUSTOMER_ID))

    def test_mechanic_not_working_at_that_time(self, manager):
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking("2024-06-01 13:00:00"))
        # window end is exclusive
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking("2024-06-01 11:00:00", mechanic_id=SECOND_MECHANIC_ID))

    def test_double_booking_rejected_without_side_effects(self, manager, notifier):
        manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))

        with pytest.raises(SlotConflict) as exc_info:
            manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 09:30:00", license_plate="29A-555.55"))

        assert exc_info.value.appointments_count == 1
        assert manager.db.query(Appointment).count() == 1
        assert manager.db.query(Vehicle).filter(Vehicle.license_plate == "29A-555.55").count() == 0
        assert len(notifier.events) == 1

    def test_line_item_failure_rolls_back_everything(self, manager, monkeypatch):
        def failing_insert(self, appointment, selections):
            self.db.add(AppointmentService(appointment_id=appointment.id, service_id=selections[0].service_id))
            self.db.flush()
            raise RuntimeError("disk full")

        monkeypatch.setattr(AppointmentManager, "_replace_line_items", failing_insert)

        with pytest.raises(RuntimeError):
            manager.create(CUSTOMER, make_booking())

        assert manager.db.query(Appointment).count() == 0
        assert manager.db.query(AppointmentService).count() == 0
        assert manager.db.query(Vehicle).count() == 0

    def test_own_hold_is_converted(self, manager):
        head = create_blocked_slot(manager.db, MECHANIC_ID, datetime(2024, 6, 1, 9, 0), 60, held_by=CUSTOMER_ID)

        result = manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00", blockedId=head.id))

        rows = _blocks(manager.db, result["appointmentId"])
        assert [r.slot_time for r in rows] == [datetime(2024, 6, 1, 9, 0), datetime(2024, 6, 1, 10, 0)]

    def test_cannot_book_into_another_customers_hold(self, manager):
        head_id = create_blocked_slot(
            manager.db, MECHANIC_ID, datetime(2024, 6, 1, 9, 0), 60, held_by=OTHER_CUSTOMER_ID
        ).id

        with pytest.raises(PermissionDenied):
            manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00", blockedId=head_id))
        assert manager.db.query(Appointment).count() == 0
        assert manager.db.get(BlockedRange, head_id).related_appointment_id is None

    def test_booking_rows_are_not_a_hold(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        manager.confirm(first["appointmentId"], ADMIN)
        break_row = _blocks(manager.db, first["appointmentId"])[0]

        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00", blockedId=break_row.id))

    def test_hold_for_another_mechanic(self, manager):
        head_id = create_blocked_slot(
            manager.db, SECOND_MECHANIC_ID, datetime(2024, 6, 1, 9, 0), held_by=CUSTOMER_ID
        ).id
        with pytest.raises(ValidationError):
            manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00", blockedId=head_id))

    def test_swept_hold_id_still_books(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00", blockedId=5150))
        assert _blocks(manager.db, result["appointmentId"]) == []

    def test_multi_day_job_still_collides(self, manager):
        manager.db.add(WorkingHoursWindow(
            mechanic_id=MECHANIC_ID, work_date=date(2024, 5, 31), start_time=time(8, 0), end_time=time(17, 0)
        ))
        manager.db.commit()
        # 30 x 60 minutes: runs until 2024-06-01 14:00
        manager.create(
            CUSTOMER, make_booking("2024-05-31 08:00:00", services=[{"serviceId": OIL_CHANGE, "quantity": 30}])
        )

        check = check_slot_availability(manager.db, MECHANIC_ID, BOOKING_DATE, "09:00", 60)
        assert check.available is False
        assert check.appointments_count == 1

        with pytest.raises(SlotConflict):
            manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 09:00:00", license_plate="29A-555.55"))
        assert manager.db.query(Appointment).count() == 1

    def test_plate_of_another_customers_vehicle(self, manager):
        manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        with pytest.raises(PermissionDenied):
            manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 11:00:00"))
        assert manager.db.query(Appointment).count() == 1

    def test_someone_elses_hold_blocks_booking(self, manager):
        create_blocked_slot(manager.db, MECHANIC_ID, datetime(2024, 6, 1, 9, 0), 60)
        with pytest.raises(SlotConflict) as exc_info:
            manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        assert exc_info.value.blocked_count == 1

    def test_storage_index_rejects_concurrent_duplicate(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        original = manager.db.get(Appointment, result["appointmentId"])

        # simulates a request that passed its check before the first one committed
        with pytest.raises(SlotConflict):
            with transaction(manager.db):
                manager.db.add(Appointment(
                    user_id=OTHER_CUSTOMER_ID,
                    vehicle_id=original.vehicle_id,
                    mechanic_id=MECHANIC_ID,
                    appointment_date=original.appointment_date,
                    estimated_end_time=original.estimated_end_time,
                    service_duration=60,
                ))

        assert manager.db.query(Appointment).count() == 1


class TestStateMachine:
    @pytest.mark.parametrize("current, target", [
        ("Pending", "Confirmed"),
        ("Pending", "Canceled"),
        ("Confirmed", "Completed"),
        ("Confirmed", "Canceled"),
        ("Confirmed", "Confirmed"),
    ])
    def test_allowed(self, current, target):
        check_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        ("Pending", "Completed"),
        ("Completed", "Canceled"),
        ("Completed", "Pending"),
        ("Canceled", "Confirmed"),
        ("Confirmed", "Pending"),
    ])
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransition):
            check_transition(current, target)

    def test_status_names_are_case_insensitive(self):
        assert parse_status("cancelled") == "Canceled"
        assert parse_status("CONFIRMED") == "Confirmed"
        with pytest.raises(ValidationError):
            parse_status("archived")

    def test_confirm_then_complete(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())
        appointment_id = result["appointmentId"]

        assert manager.confirm(appointment_id, MECHANIC).status == "Confirmed"
        assert manager.complete(appointment_id, ADMIN).status == "Completed"
        assert notifier.events[1:] == [
            ("updated", appointment_id, "Pending"),
            ("updated", appointment_id, "Confirmed"),
        ]

    def test_complete_requires_confirmation(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(InvalidTransition):
            manager.complete(result["appointmentId"], ADMIN)

    def test_confirming_twice_is_a_no_op(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())
        manager.confirm(result["appointmentId"], ADMIN)
        manager.confirm(result["appointmentId"], ADMIN)
        assert len(notifier.events) == 2
        assert len(_blocks(manager.db, result["appointmentId"])) == 1

    def test_only_staff_confirm(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(PermissionDenied):
            manager.confirm(result["appointmentId"], CUSTOMER)
        with pytest.raises(PermissionDenied):
            manager.confirm(result["appointmentId"], SECOND_MECHANIC)


class TestCancel:
    def test_cancel(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())
        assert manager.cancel(result["appointmentId"], CUSTOMER) is True
        assert manager.db.get(Appointment, result["appointmentId"]).status == "Canceled"
        assert notifier.events[-1] == ("updated", result["appointmentId"], "Pending")

    def test_cancel_twice_changes_nothing(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())
        manager.cancel(result["appointmentId"], CUSTOMER)
        appointment = manager.db.get(Appointment, result["appointmentId"])
        before = (appointment.status, appointment.updated_at, appointment.notes)

        assert manager.cancel(result["appointmentId"], CUSTOMER) is True

        manager.db.expire_all()
        appointment = manager.db.get(Appointment, result["appointmentId"])
        assert (appointment.status, appointment.updated_at, appointment.notes) == before
        assert len(notifier.events) == 2

    def test_completed_cannot_be_canceled(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        manager.confirm(result["appointmentId"], ADMIN)
        manager.complete(result["appointmentId"], ADMIN)
        with pytest.raises(InvalidTransition):
            manager.cancel(result["appointmentId"], CUSTOMER)

    def test_other_customer_cannot_cancel(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(PermissionDenied):
            manager.cancel(result["appointmentId"], OTHER_CUSTOMER)

    def test_unknown_appointment(self, manager):
        with pytest.raises(NotFound):
            manager.cancel(31337, ADMIN)

    def test_cancel_releases_blocks(self, manager):
        result = manager.create(CUSTOMER, make_booking(services=[BRAKE_OVERHAUL]))
        manager.confirm(result["appointmentId"], ADMIN)
        assert len(_blocks(manager.db, result["appointmentId"])) == 3

        manager.cancel(result["appointmentId"], CUSTOMER)
        assert _blocks(manager.db, result["appointmentId"]) == []

    def test_blocks_linger_when_release_disabled(self, seeded, notifier):
        manager = AppointmentManager(seeded, config=_config(release_blocks_on_cancel=False), notifier=notifier)
        result = manager.create(CUSTOMER, make_booking(services=[BRAKE_OVERHAUL]))
        manager.confirm(result["appointmentId"], ADMIN)

        manager.cancel(result["appointmentId"], CUSTOMER)
        assert len(_blocks(seeded, result["appointmentId"])) == 3


class TestUpdate:
    def test_malformed_date_keeps_stored_start(self, manager, caplog):
        result = manager.create(CUSTOMER, make_booking())

        with caplog.at_level(logging.WARNING, logger="mechanic_booking.services.appointments"):
            updated = manager.update(
                result["appointmentId"], CUSTOMER, AppointmentUpdate(appointmentDate="31/31/2024 99:99", notes="late")
            )

        assert updated.appointment_date == datetime(2024, 6, 1, 9, 0)
        assert updated.notes == "late"
        assert "keeping" in caplog.text

    def test_legacy_day_first_date(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        updated = manager.update(
            result["appointmentId"], CUSTOMER, AppointmentUpdate(appointmentDate="01-06-2024 10:30")
        )
        assert updated.appointment_date == datetime(2024, 6, 1, 10, 30)
        assert updated.estimated_end_time == datetime(2024, 6, 1, 11, 30)

    def test_services_replaced(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        updated = manager.update(
            result["appointmentId"], CUSTOMER, AppointmentUpdate(services=[INSPECTION, INSPECTION])
        )
        assert updated.service_duration == 60
        assert sorted((i.service_id, i.quantity) for i in updated.line_items) == [(INSPECTION, 1), (INSPECTION, 1)]
        assert manager.db.query(AppointmentService).count() == 2

    def test_empty_service_list_rejected(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(ValidationError):
            manager.update(result["appointmentId"], CUSTOMER, AppointmentUpdate(services=[]))

    def test_reschedule_into_conflict(self, manager):
        manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        second = manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 10:00:00", license_plate="29A-555.55"))

        with pytest.raises(SlotConflict):
            manager.update(second["appointmentId"], OTHER_CUSTOMER, AppointmentUpdate(appointmentDate="2024-06-01 09:30"))
        assert manager.db.get(Appointment, second["appointmentId"]).appointment_date == datetime(2024, 6, 1, 10, 0)

    def test_reschedule_without_recheck(self, seeded):
        manager = AppointmentManager(seeded, config=_config(recheck_conflicts_on_update=False))
        manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        second = manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 10:00:00", license_plate="29A-555.55"))

        updated = manager.update(
            second["appointmentId"], OTHER_CUSTOMER, AppointmentUpdate(appointmentDate="2024-06-01 09:30")
        )
        assert updated.appointment_date == datetime(2024, 6, 1, 9, 30)

    def test_rescheduling_over_itself_is_fine(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        updated = manager.update(
            result["appointmentId"], CUSTOMER, AppointmentUpdate(appointmentDate="2024-06-01 09:30")
        )
        assert updated.appointment_date == datetime(2024, 6, 1, 9, 30)

    def test_confirmed_reschedule_moves_blocks(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00", services=[BRAKE_OVERHAUL]))
        manager.confirm(result["appointmentId"], ADMIN)

        manager.update(result["appointmentId"], ADMIN, AppointmentUpdate(appointmentDate="2024-06-01 09:00"))

        rows = _blocks(manager.db, result["appointmentId"])
        assert [r.slot_time for r in rows] == [
            datetime(2024, 6, 1, 10, 0),
            datetime(2024, 6, 1, 11, 0),
            datetime(2024, 6, 1, 11, 10),
        ]

    def test_status_change_through_update(self, manager, notifier):
        result = manager.create(CUSTOMER, make_booking())
        manager.update(result["appointmentId"], ADMIN, AppointmentUpdate(status="Confirmed"))
        assert notifier.events[-1] == ("updated", result["appointmentId"], "Pending")
        assert len(_blocks(manager.db, result["appointmentId"])) == 1

    def test_customer_cannot_confirm_through_update(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(PermissionDenied):
            manager.update(result["appointmentId"], CUSTOMER, AppointmentUpdate(status="Confirmed"))

    def test_invalid_status_change(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(InvalidTransition):
            manager.update(result["appointmentId"], ADMIN, AppointmentUpdate(status="Completed"))

    def test_other_customer_cannot_update(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(PermissionDenied):
            manager.update(result["appointmentId"], OTHER_CUSTOMER, AppointmentUpdate(notes="mine now"))

    def test_vehicle_details_updated(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        manager.update(
            result["appointmentId"],
            CUSTOMER,
            AppointmentUpdate(vehicleId=result["vehicleId"], licensePlate="51A-678.90", brand="Toyota"),
        )
        vehicle = manager.db.get(Vehicle, result["vehicleId"])
        assert vehicle.license_plate == "51A-678.90"
        assert vehicle.brand == "Toyota"

    def test_cannot_switch_to_another_customers_vehicle(self, manager):
        mine = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        theirs = manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 11:00:00", license_plate="29A-555.55"))

        with pytest.raises(PermissionDenied):
            manager.update(
                mine["appointmentId"],
                CUSTOMER,
                AppointmentUpdate(vehicleId=theirs["vehicleId"], licensePlate="29A-555.55"),
            )
        assert manager.db.get(Appointment, mine["appointmentId"]).vehicle_id == mine["vehicleId"]

    def test_plate_already_registered(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        second = manager.create(CUSTOMER, make_booking("2024-06-01 11:00:00", license_plate="30F-999.99"))

        with pytest.raises(ValidationError):
            manager.update(
                second["appointmentId"],
                CUSTOMER,
                AppointmentUpdate(vehicleId=second["vehicleId"], licensePlate=make_booking().license_plate),
            )
        assert manager.db.get(Vehicle, second["vehicleId"]).license_plate == "30F-999.99"
        assert manager.db.get(Vehicle, first["vehicleId"]) is not None

    def test_reschedule_outside_working_hours(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(ValidationError):
            manager.update(result["appointmentId"], CUSTOMER, AppointmentUpdate(appointmentDate="2024-06-01 13:00"))
        assert manager.db.get(Appointment, result["appointmentId"]).appointment_date == datetime(2024, 6, 1, 9, 0)

    def test_reassign_to_mechanic_off_duty(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        with pytest.raises(ValidationError):
            manager.update(result["appointmentId"], ADMIN, AppointmentUpdate(mechanicId=SECOND_MECHANIC_ID))

    def test_assigning_a_mechanic(self, manager):
        result = manager.create(CUSTOMER, make_booking("2024-06-01 10:00:00", mechanic_id=None))
        updated = manager.update(result["appointmentId"], ADMIN, AppointmentUpdate(mechanicId=SECOND_MECHANIC_ID))
        assert updated.mechanic_id == SECOND_MECHANIC_ID


class TestSoftDeleteAndRestore:
    def test_soft_delete_hides_appointment(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        assert manager.soft_delete(result["appointmentId"], CUSTOMER) is True

        with pytest.raises(NotFound):
            manager.get(result["appointmentId"], CUSTOMER)
        assert manager.list_for_customer(CUSTOMER) == []
        assert [a.id for a in manager.list_deleted(ADMIN)] == [result["appointmentId"]]

    def test_soft_delete_releases_blocks(self, manager):
        result = manager.create(CUSTOMER, make_booking(services=[BRAKE_OVERHAUL]))
        manager.confirm(result["appointmentId"], ADMIN)
        manager.soft_delete(result["appointmentId"], ADMIN)
        assert _blocks(manager.db, result["appointmentId"]) == []

    def test_only_owner_or_admin_delete(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(PermissionDenied):
            manager.soft_delete(result["appointmentId"], OTHER_CUSTOMER)
        with pytest.raises(PermissionDenied):
            manager.soft_delete(result["appointmentId"], MECHANIC)

    def test_restore_rebuilds_blocks(self, manager):
        result = manager.create(CUSTOMER, make_booking(services=[BRAKE_OVERHAUL]))
        manager.confirm(result["appointmentId"], ADMIN)
        manager.soft_delete(result["appointmentId"], CUSTOMER)

        restored = manager.restore(result["appointmentId"], ADMIN)

        assert restored.is_deleted is False
        assert len(_blocks(manager.db, result["appointmentId"])) == 3

    def test_restore_requires_admin(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        manager.soft_delete(result["appointmentId"], CUSTOMER)
        with pytest.raises(PermissionDenied):
            manager.restore(result["appointmentId"], CUSTOMER)

    def test_restore_of_live_appointment(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        with pytest.raises(NotFound):
            manager.restore(result["appointmentId"], ADMIN)

    def test_restore_into_taken_slot(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 09:00:00"))
        manager.soft_delete(first["appointmentId"], CUSTOMER)
        manager.create(OTHER_CUSTOMER, make_booking("2024-06-01 09:00:00", license_plate="29A-555.55"))

        with pytest.raises(SlotConflict):
            manager.restore(first["appointmentId"], ADMIN)
        assert manager.db.get(Appointment, first["appointmentId"]).is_deleted is True


class TestReads:
    def test_get_respects_ownership(self, manager):
        result = manager.create(CUSTOMER, make_booking())
        assert manager.get(result["appointmentId"], CUSTOMER).id == result["appointmentId"]
        assert manager.get(result["appointmentId"], MECHANIC).id == result["appointmentId"]
        with pytest.raises(PermissionDenied):
            manager.get(result["appointmentId"], OTHER_CUSTOMER)

    def test_list_all_filters(self, manager):
        manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        second = manager.create(CUSTOMER, make_booking("2024-06-01 10:00:00"))
        manager.create(CUSTOMER, make_booking("2024-06-03 10:00:00", mechanic_id=None))
        manager.cancel(second["appointmentId"], CUSTOMER)

        assert len(manager.list_all(ADMIN)) == 3
        assert len(manager.list_all(ADMIN, date_from="2024-06-01", date_to="2024-06-01")) == 2
        assert [a.id for a in manager.list_all(ADMIN, status="canceled")] == [second["appointmentId"]]
        assert len(manager.list_all(MECHANIC)) == 2
        assert manager.list_all(SECOND_MECHANIC) == []

    def test_customers_cannot_list_everything(self, manager):
        with pytest.raises(PermissionDenied):
            manager.list_all(CUSTOMER)

    def test_dashboard_stats(self, manager):
        first = manager.create(CUSTOMER, make_booking("2024-06-01 08:00:00"))
        manager.create(CUSTOMER, make_booking("2024-06-01 10:00:00"))
        manager.confirm(first["appointmentId"], ADMIN)

        stats = manager.dashboard_stats(ADMIN, today=BOOKING_DATE)

        assert stats["totalAppointments"] == 2
        assert stats["byStatus"] == {"Pending": 1, "Confirmed": 1, "Completed": 0, "Canceled": 0}
        assert stats["today"] == 2
        assert len(manager.recent(ADMIN, limit=1)) == 1
        with pytest.raises(PermissionDenied):
            manager.dashboard_stats(MECHANIC)
