"""
Appointment transaction manager

Owns the appointment lifecycle. Every write runs inside ``transaction(db)``:
conflict checks, vehicle resolution, the appointment row, its line items and
its blocked ranges commit together or not at all. Notifications go out only
after the commit.

    Pending ──> Confirmed ──> Completed
       │            │
       └────────────┴──> Canceled

Completed and Canceled are terminal. Soft delete is a separate flag that only
``restore`` clears.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from mechanic_booking.core.config import AppConfig, settings
from mechanic_booking.core.errors import (
    InvalidTransition,
    MalformedTemporalInput,
    NotFound,
    PermissionDenied,
    SlotConflict,
    ValidationError,
)
from mechanic_booking.core.security import Capability, Principal, ROLE_MECHANIC
from mechanic_booking.db.base import transaction
from mechanic_booking.db.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentService,
    AppointmentStatus,
)
from mechanic_booking.db.models.availability import BlockedRange
from mechanic_booking.db.models.service import Service
from mechanic_booking.db.models.user import User
from mechanic_booking.db.models.vehicle import Vehicle
from mechanic_booking.schemas.appointment import (
    AppointmentCreate,
    AppointmentUpdate,
    ServiceSelection,
    normalize_payment_method,
)
from mechanic_booking.scheduling.blocked import (
    attach_hold,
    block_for_appointment,
    cleanup_expired_blocks,
    hold_row_ids,
    release_for_appointment,
)
from mechanic_booking.scheduling.conflicts import check_slot_availability
from mechanic_booking.scheduling.timeparse import normalize_instant, now_local, parse_date
from mechanic_booking.scheduling.working_hours import has_working_hours
from mechanic_booking.services.notifications import LoggingNotifier, Notifier, dispatch

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {AppointmentStatus.CONFIRMED.value, AppointmentStatus.CANCELED.value},
    AppointmentStatus.CONFIRMED.value: {AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELED.value},
    AppointmentStatus.COMPLETED.value: set(),
    AppointmentStatus.CANCELED.value: set(),
}

_STATUS_ALIASES = {s.value.lower(): s.value for s in AppointmentStatus}
_STATUS_ALIASES["cancelled"] = AppointmentStatus.CANCELED.value


def parse_status(value: str) -> str:
    status = _STATUS_ALIASES.get(str(value).strip().lower())
    if status is None:
        raise ValidationError(f"Unknown status: {value}")
    return status


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless current -> target is allowed. Same status is allowed."""
    if current == target:
        return
    if target not in _TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot change status from {current} to {target}")


class AppointmentManager:

    def __init__(self, db: Session, config: AppConfig = settings, notifier: Optional[Notifier] = None):
        self.db = db
        self.config = config
        self.notifier = notifier or LoggingNotifier()

    @property
    def _grid(self) -> int:
        return self.config.scheduling.slot_width_minutes

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def _get_live(self, appointment_id: int) -> Appointment:
        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.is_deleted == False)  # noqa: E712
            .first()
        )
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    def _get_mechanic(self, mechanic_id: int) -> User:
        mechanic = self.db.query(User).filter(User.id == mechanic_id, User.role == ROLE_MECHANIC).first()
        if not mechanic:
            raise ValidationError("Mechanic not found")
        return mechanic

    def _load_services(self, selections: List[ServiceSelection]) -> Dict[int, Service]:
        ids = {s.service_id for s in selections}
        services = {
            s.id: s
            for s in self.db.query(Service).filter(Service.id.in_(ids), Service.is_active == True).all()  # noqa: E712
        }
        missing = sorted(ids - set(services))
        if missing:
            raise ValidationError(f"Unknown service id(s): {', '.join(str(i) for i in missing)}")
        return services

    def _total_duration(self, selections: List[ServiceSelection]) -> int:
        services = self._load_services(selections)
        return sum(services[s.service_id].estimated_minutes * s.quantity for s in selections)

    # ------------------------------------------------------------------
    # write helpers (run inside the caller's transaction)
    # ------------------------------------------------------------------

    def _ensure_free(
        self,
        mechanic_id: int,
        start: datetime,
        duration: int,
        exclude_appointment_id: Optional[int] = None,
        exclude_blocked_id: Optional[int] = None,
    ) -> None:
        check = check_slot_availability(
            self.db,
            mechanic_id,
            start.date(),
            start.time(),
            duration,
            exclude_appointment_id=exclude_appointment_id,
            exclude_blocked_id=exclude_blocked_id,
        )
        if not check.available:
            logger.warning(
                "Slot conflict for mechanic %s at %s (%d appointment(s), %d blocked)",
                mechanic_id, start, check.appointments_count, check.blocked_count,
            )
            raise SlotConflict(
                "Mechanic already has an appointment at this time",
                appointments_count=check.appointments_count,
                blocked_count=check.blocked_count,
            )

    def _own_hold(self, principal: Principal, payload: AppointmentCreate) -> Optional[int]:
        """The caller's provisional hold to book into; None when none was given or it was swept."""
        if payload.blocked_id is None:
            return None
        head = self.db.query(BlockedRange).filter(BlockedRange.id == payload.blocked_id).first()
        if head is None:
            logger.warning("Hold %s expired before booking; not converted", payload.blocked_id)
            return None
        if not head.is_provisional:
            raise ValidationError("Blocked slot is not a provisional hold")
        Capability.require_hold(principal, head)
        if head.mechanic_id != payload.mechanic_id:
            raise ValidationError("Hold was placed for another mechanic")
        return head.id

    def _resolve_vehicle(self, principal: Principal, payload: AppointmentCreate) -> Vehicle:
        if payload.vehicle_id:
            vehicle = self.db.query(Vehicle).filter(Vehicle.id == payload.vehicle_id).first()
            if not vehicle:
                raise NotFound("Vehicle not found")
            if vehicle.user_id != principal.user_id and not principal.is_admin:
                raise PermissionDenied("Vehicle belongs to another customer")
            return vehicle

        plate = payload.license_plate.strip()
        vehicle = self.db.query(Vehicle).filter(Vehicle.license_plate == plate).first()
        if vehicle:
            if vehicle.user_id != principal.user_id and not principal.is_admin:
                raise PermissionDenied("Vehicle belongs to another customer")
            return vehicle

        vehicle = Vehicle(
            user_id=principal.user_id,
            license_plate=plate,
            brand=payload.brand,
            model=payload.model,
            year=payload.year or now_local().year,
        )
        self.db.add(vehicle)
        self.db.flush()
        logger.info("Registered vehicle %s (%s) for user %s", vehicle.id, plate, principal.user_id)
        return vehicle

    def _replace_line_items(self, appointment: Appointment, selections: List[ServiceSelection]) -> None:
        self.db.query(AppointmentService).filter(
            AppointmentService.appointment_id == appointment.id
        ).delete(synchronize_session=False)
        for selection in selections:
            self.db.add(
                AppointmentService(
                    appointment_id=appointment.id,
                    service_id=selection.service_id,
                    quantity=selection.quantity,
                )
            )
        self.db.flush()
        self.db.expire(appointment, ["line_items"])

    def _apply_status(self, appointment: Appointment, target: str) -> None:
        appointment.status = target
        if target == AppointmentStatus.CANCELED.value:
            if self.config.scheduling.release_blocks_on_cancel:
                release_for_appointment(self.db, appointment.id)
        elif target == AppointmentStatus.CONFIRMED.value and appointment.mechanic_id is not None:
            self.db.flush()
            block_for_appointment(self.db, appointment, self._grid)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def create(self, principal: Principal, payload: AppointmentCreate) -> dict:
        if not payload.appointment_date:
            raise ValidationError("appointmentDate is required")
        if not payload.services:
            raise ValidationError("At least one service is required")
        if not payload.vehicle_id and not (payload.license_plate and payload.license_plate.strip()):
            raise ValidationError("Please provide vehicleId or licensePlate")

        start = normalize_instant(payload.appointment_date)
        duration = self._total_duration(payload.services)
        end = start + timedelta(minutes=duration)

        if payload.mechanic_id is not None:
            self._get_mechanic(payload.mechanic_id)
            if not has_working_hours(self.db, payload.mechanic_id, start):
                raise ValidationError("Mechanic has no working hours at this time")

        hold_id = self._own_hold(principal, payload)

        with transaction(self.db):
            if payload.mechanic_id is not None:
                self._ensure_free(payload.mechanic_id, start, duration, exclude_blocked_id=hold_id)

            vehicle = self._resolve_vehicle(principal, payload)
            appointment = Appointment(
                user_id=principal.user_id,
                vehicle_id=vehicle.id,
                mechanic_id=payload.mechanic_id,
                appointment_date=start,
                estimated_end_time=end,
                service_duration=duration,
                status=AppointmentStatus.PENDING.value,
                notes=payload.notes,
                payment_method=normalize_payment_method(payload.payment_method),
            )
            self.db.add(appointment)
            self.db.flush()

            self._replace_line_items(appointment, payload.services)

            if hold_id is not None:
                if hold_row_ids(self.db, hold_id):
                    attach_hold(self.db, hold_id, appointment.id)
                else:
                    logger.warning("Hold %s expired before booking; not converted", hold_id)

        self.db.refresh(appointment)
        logger.info(
            "Appointment %s booked by user %s for %s (%d min, mechanic %s)",
            appointment.id, principal.user_id, start, duration, payload.mechanic_id,
        )
        dispatch(self.notifier, "appointment_created", appointment)
        return {"appointmentId": appointment.id, "vehicleId": vehicle.id}

    def update(self, appointment_id: int, principal: Principal, payload: AppointmentUpdate) -> Appointment:
        appointment = self._get_live(appointment_id)
        Capability.require_manage(principal, appointment)
        previous_status = appointment.status

        target_status = previous_status
        if payload.status:
            target_status = parse_status(payload.status)
            check_transition(previous_status, target_status)
            if target_status in (AppointmentStatus.CONFIRMED.value, AppointmentStatus.COMPLETED.value) \
                    and target_status != previous_status:
                Capability.require_staff(principal)

        start = appointment.appointment_date
        if payload.appointment_date:
            try:
                start = normalize_instant(payload.appointment_date)
            except MalformedTemporalInput:
                logger.warning(
                    "Unrecognized appointmentDate %r for appointment %s; keeping %s",
                    payload.appointment_date, appointment.id, appointment.appointment_date,
                )

        duration = appointment.service_duration
        if payload.services is not None:
            if not payload.services:
                raise ValidationError("At least one service is required")
            duration = self._total_duration(payload.services)

        mechanic_id = appointment.mechanic_id
        if payload.mechanic_id is not None and payload.mechanic_id != appointment.mechanic_id:
            self._get_mechanic(payload.mechanic_id)
            mechanic_id = payload.mechanic_id

        moved = start != appointment.appointment_date or mechanic_id != appointment.mechanic_id
        timing_changed = moved or duration != appointment.service_duration

        if moved and mechanic_id is not None and target_status in ACTIVE_STATUSES:
            if not has_working_hours(self.db, mechanic_id, start):
                raise ValidationError("Mechanic has no working hours at this time")

        with transaction(self.db):
            if (
                timing_changed
                and mechanic_id is not None
                and target_status in ACTIVE_STATUSES
                and self.config.scheduling.recheck_conflicts_on_update
            ):
                self._ensure_free(mechanic_id, start, duration, exclude_appointment_id=appointment.id)

            if payload.services is not None:
                self._replace_line_items(appointment, payload.services)

            appointment.appointment_date = start
            appointment.service_duration = duration
            appointment.estimated_end_time = start + timedelta(minutes=duration)
            appointment.mechanic_id = mechanic_id

            if payload.notes is not None:
                appointment.notes = payload.notes
            if payload.payment_method is not None:
                appointment.payment_method = normalize_payment_method(payload.payment_method)

            if payload.vehicle_id and payload.license_plate:
                self._update_vehicle(appointment, principal, payload)

            if target_status != previous_status:
                self._apply_status(appointment, target_status)
            elif timing_changed and appointment.status == AppointmentStatus.CONFIRMED.value \
                    and mechanic_id is not None:
                self.db.flush()
                block_for_appointment(self.db, appointment, self._grid)

        self.db.refresh(appointment)
        logger.info("Appointment %s updated by user %s", appointment.id, principal.user_id)
        dispatch(self.notifier, "appointment_updated", appointment, previous_status)
        return appointment

    def _update_vehicle(self, appointment: Appointment, principal: Principal, payload: AppointmentUpdate) -> None:
        vehicle = self.db.query(Vehicle).filter(Vehicle.id == payload.vehicle_id).first()
        if not vehicle:
            raise NotFound("Vehicle not found")
        # the vehicle must belong to the appointment's customer
        if vehicle.user_id != appointment.user_id or (
            vehicle.user_id != principal.user_id and not principal.is_admin
        ):
            raise PermissionDenied("Vehicle belongs to another customer")

        plate = payload.license_plate.strip()
        taken = (
            self.db.query(Vehicle.id)
            .filter(Vehicle.license_plate == plate, Vehicle.id != vehicle.id)
            .first()
        )
        if taken:
            raise ValidationError(f"License plate {plate} is already registered")
        vehicle.license_plate = plate
        if payload.brand is not None:
            vehicle.brand = payload.brand
        if payload.model is not None:
            vehicle.model = payload.model
        if payload.year is not None:
            vehicle.year = payload.year
        appointment.vehicle_id = vehicle.id

    def _transition(self, appointment_id: int, principal: Principal, target: str) -> Appointment:
        appointment = self._get_live(appointment_id)
        Capability.require_staff(principal, appointment)
        previous_status = appointment.status
        check_transition(previous_status, target)
        if previous_status == target:
            return appointment

        with transaction(self.db):
            self._apply_status(appointment, target)

        self.db.refresh(appointment)
        logger.info("Appointment %s %s -> %s", appointment.id, previous_status, target)
        dispatch(self.notifier, "appointment_updated", appointment, previous_status)
        return appointment

    def confirm(self, appointment_id: int, principal: Principal) -> Appointment:
        return self._transition(appointment_id, principal, AppointmentStatus.CONFIRMED.value)

    def complete(self, appointment_id: int, principal: Principal) -> Appointment:
        return self._transition(appointment_id, principal, AppointmentStatus.COMPLETED.value)

    def cancel(self, appointment_id: int, principal: Principal) -> bool:
        appointment = self._get_live(appointment_id)
        Capability.require_manage(principal, appointment)

        previous_status = appointment.status
        if previous_status == AppointmentStatus.COMPLETED.value:
            raise InvalidTransition("Cannot cancel a completed appointment")
        if previous_status == AppointmentStatus.CANCELED.value:
            return True

        with transaction(self.db):
            self._apply_status(appointment, AppointmentStatus.CANCELED.value)

        self.db.refresh(appointment)
        logger.info("Appointment %s canceled by user %s", appointment.id, principal.user_id)
        dispatch(self.notifier, "appointment_updated", appointment, previous_status)
        return True

    def soft_delete(self, appointment_id: int, principal: Principal) -> bool:
        appointment = self._get_live(appointment_id)
        Capability.require_owner_or_admin(principal, appointment)

        with transaction(self.db):
            appointment.is_deleted = True
            release_for_appointment(self.db, appointment.id)

        logger.info("Appointment %s soft-deleted by user %s", appointment.id, principal.user_id)
        return True

    def restore(self, appointment_id: int, principal: Principal) -> Appointment:
        Capability.require_admin(principal)
        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.is_deleted == True)  # noqa: E712
            .first()
        )
        if not appointment:
            raise NotFound("Deleted appointment not found")

        with transaction(self.db):
            if appointment.mechanic_id is not None and appointment.status in ACTIVE_STATUSES:
                self._ensure_free(
                    appointment.mechanic_id,
                    appointment.appointment_date,
                    appointment.service_duration,
                    exclude_appointment_id=appointment.id,
                )
            appointment.is_deleted = False
            self.db.flush()
            if appointment.status == AppointmentStatus.CONFIRMED.value and appointment.mechanic_id is not None:
                block_for_appointment(self.db, appointment, self._grid)

        self.db.refresh(appointment)
        logger.info("Appointment %s restored by user %s", appointment.id, principal.user_id)
        return appointment

    def expire_provisional_blocks(self, now: Optional[datetime] = None) -> int:
        return cleanup_expired_blocks(self.db, now=now, grace_minutes=self.config.scheduling.block_grace_minutes)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, appointment_id: int, principal: Principal) -> Appointment:
        appointment = self._get_live(appointment_id)
        if not Capability.can_manage(principal, appointment):
            raise PermissionDenied("You do not have permission to view this appointment")
        return appointment

    def list_for_customer(self, principal: Principal) -> List[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(Appointment.user_id == principal.user_id, Appointment.is_deleted == False)  # noqa: E712
            .order_by(Appointment.appointment_date.desc())
            .all()
        )

    def list_all(
        self,
        principal: Principal,
        date_from=None,
        date_to=None,
        status: Optional[str] = None,
        mechanic_id: Optional[int] = None,
    ) -> List[Appointment]:
        """Staff listing. Mechanics only ever see their own assignments."""
        Capability.require_staff(principal)
        query = self.db.query(Appointment).filter(Appointment.is_deleted == False)  # noqa: E712

        if principal.is_mechanic:
            mechanic_id = principal.user_id
        if mechanic_id is not None:
            query = query.filter(Appointment.mechanic_id == mechanic_id)
        if date_from:
            query = query.filter(Appointment.appointment_date >= datetime.combine(parse_date(date_from), time.min))
        if date_to:
            upper = datetime.combine(parse_date(date_to), time.min) + timedelta(days=1)
            query = query.filter(Appointment.appointment_date < upper)
        if status:
            query = query.filter(Appointment.status == parse_status(status))

        return query.order_by(Appointment.appointment_date.desc(), Appointment.id.desc()).all()

    def list_deleted(self, principal: Principal) -> List[Appointment]:
        Capability.require_admin(principal)
        return (
            self.db.query(Appointment)
            .filter(Appointment.is_deleted == True)  # noqa: E712
            .order_by(Appointment.updated_at.desc(), Appointment.id.desc())
            .all()
        )

    def recent(self, principal: Principal, limit: int = 5) -> List[Appointment]:
        Capability.require_admin(principal)
        return (
            self.db.query(Appointment)
            .filter(Appointment.is_deleted == False)  # noqa: E712
            .order_by(Appointment.created_at.desc(), Appointment.id.desc())
            .limit(limit)
            .all()
        )

    def dashboard_stats(self, principal: Principal, today: Optional[date] = None) -> dict:
        Capability.require_admin(principal)
        now = now_local()
        today = today or now.date()
        day_start = datetime.combine(today, time.min)
        live = Appointment.is_deleted == False  # noqa: E712

        by_status = {s.value: 0 for s in AppointmentStatus}
        rows = (
            self.db.query(Appointment.status, func.count(Appointment.id))
            .filter(live)
            .group_by(Appointment.status)
            .all()
        )
        for status, count in rows:
            by_status[status] = int(count)

        todays = (
            self.db.query(func.count(Appointment.id))
            .filter(
                live,
                Appointment.appointment_date >= day_start,
                Appointment.appointment_date < day_start + timedelta(days=1),
            )
            .scalar() or 0
        )
        upcoming = (
            self.db.query(func.count(Appointment.id))
            .filter(live, Appointment.status.in_(ACTIVE_STATUSES), Appointment.appointment_date >= now)
            .scalar() or 0
        )
        return {
            "totalAppointments": sum(by_status.values()),
            "byStatus": by_status,
            "today": int(todays),
            "upcoming": int(upcoming),
        }
