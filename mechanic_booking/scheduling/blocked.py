"""
Blocked-range store

Persisted instants at which a mechanic cannot take new work. Two producers:

- confirmed appointments: one row per whole grid unit of service after the
  start (the start itself is occupied by the appointment row) plus a
  trailing break-time row at start + duration;
- provisional holds placed while a customer is still filling in a booking:
  no appointment reference, all rows flagged break-time and grouped by the
  id of their first row, swept after the grace period unless converted.

Functions that are part of a larger unit of work (``block_for_appointment``,
``release_for_appointment``) only flush; the caller's transaction commits.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from mechanic_booking.core.config import settings
from mechanic_booking.core.errors import NotFound, ValidationError
from mechanic_booking.core.security import Capability, Principal
from mechanic_booking.db.base import transaction
from mechanic_booking.db.models.appointment import Appointment
from mechanic_booking.db.models.availability import BlockedRange
from mechanic_booking.db.models.user import User
from mechanic_booking.scheduling.timeparse import now_local

logger = logging.getLogger(__name__)


def _day_bounds(target_date: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(target_date, time.min)
    return start, start + timedelta(days=1)


def derive_block_times(
    start: datetime,
    duration_minutes: int,
    grid_minutes: int = 60,
) -> List[Tuple[datetime, bool]]:
    """
    Instants to block for a service of duration_minutes starting at start.

    Returns (instant, is_break_time) pairs: start + k*grid for k >= 1 while
    strictly before the end, then the break row at the end.
    """
    if grid_minutes <= 0:
        raise ValueError("grid_minutes must be positive")
    end = start + timedelta(minutes=duration_minutes)
    step = timedelta(minutes=grid_minutes)

    instants = []
    current = start + step
    while current < end:
        instants.append((current, False))
        current += step
    instants.append((end, True))
    return instants


def block_for_appointment(
    db: Session,
    appointment: Appointment,
    grid_minutes: Optional[int] = None,
) -> List[BlockedRange]:
    """Replace the rows tied to appointment with a fresh derivation."""
    if appointment.mechanic_id is None:
        raise ValidationError("Cannot block time for an appointment without a mechanic")
    grid = grid_minutes or settings.scheduling.slot_width_minutes

    release_for_appointment(db, appointment.id)
    rows = [
        BlockedRange(
            mechanic_id=appointment.mechanic_id,
            slot_time=instant,
            is_break_time=is_break,
            related_appointment_id=appointment.id,
            is_blocked=True,
        )
        for instant, is_break in derive_block_times(
            appointment.appointment_date, appointment.service_duration, grid
        )
    ]
    db.add_all(rows)
    db.flush()
    logger.info(
        "Blocked %d range(s) for appointment %s (mechanic %s)",
        len(rows), appointment.id, appointment.mechanic_id,
    )
    return rows


def release_for_appointment(db: Session, appointment_id: int) -> int:
    deleted = (
        db.query(BlockedRange)
        .filter(BlockedRange.related_appointment_id == appointment_id)
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info("Released %d blocked range(s) of appointment %s", deleted, appointment_id)
    return deleted


def create_blocked_slot(
    db: Session,
    mechanic_id: int,
    slot_time: datetime,
    duration_minutes: Optional[int] = None,
    grid_minutes: Optional[int] = None,
    held_by: Optional[int] = None,
) -> BlockedRange:
    """
    Place a provisional hold starting at slot_time.

    The head row blocks slot_time itself; with a duration the hour rows and
    the trailing break row follow. All rows share the head's id as their
    hold_head_id and are inserted atomically.
    """
    if duration_minutes is not None and duration_minutes < 0:
        raise ValidationError("durationMinutes must not be negative")
    grid = grid_minutes or settings.scheduling.slot_width_minutes

    with transaction(db):
        mechanic = db.query(User).filter(User.id == mechanic_id, User.role == "mechanic").first()
        if not mechanic:
            raise NotFound("Mechanic not found")

        head = BlockedRange(
            mechanic_id=mechanic_id,
            slot_time=slot_time,
            is_break_time=True,
            related_appointment_id=None,
            is_blocked=True,
            held_by=held_by,
        )
        db.add(head)
        db.flush()
        head.hold_head_id = head.id

        if duration_minutes:
            for instant, _ in derive_block_times(slot_time, duration_minutes, grid):
                db.add(
                    BlockedRange(
                        mechanic_id=mechanic_id,
                        slot_time=instant,
                        is_break_time=True,
                        related_appointment_id=None,
                        is_blocked=True,
                        hold_head_id=head.id,
                        held_by=held_by,
                    )
                )
        db.flush()

    db.refresh(head)
    logger.info(
        "Provisional hold %s placed for mechanic %s at %s (user %s)", head.id, mechanic_id, slot_time, held_by
    )
    return head


def _hold_rows(db: Session, head: BlockedRange):
    """Unattached rows of the hold headed by head."""
    group = head.hold_head_id or head.id
    return db.query(BlockedRange).filter(
        or_(BlockedRange.hold_head_id == group, BlockedRange.id == head.id),
        BlockedRange.related_appointment_id.is_(None),
    )


def get_blocked_slot(db: Session, blocked_id: int) -> BlockedRange:
    head = db.query(BlockedRange).filter(BlockedRange.id == blocked_id).first()
    if not head:
        raise NotFound("Blocked slot not found")
    return head


def hold_row_ids(db: Session, blocked_id: int) -> List[int]:
    """Ids of the rows making up the hold whose head is blocked_id. Empty once swept."""
    head = db.query(BlockedRange).filter(BlockedRange.id == blocked_id).first()
    if not head:
        return []
    if not head.is_provisional:
        return [head.id]
    return [row.id for row in _hold_rows(db, head).all()]


def attach_hold(db: Session, blocked_id: int, appointment_id: int) -> int:
    """Point a provisional hold at its appointment. Flush only."""
    head = get_blocked_slot(db, blocked_id)
    if head.related_appointment_id not in (None, appointment_id):
        raise ValidationError("Blocked slot belongs to another appointment")

    updated = _hold_rows(db, head).update(
        {BlockedRange.related_appointment_id: appointment_id},
        synchronize_session=False,
    )
    db.refresh(head)
    db.flush()
    return updated


def _authorize_change(db: Session, principal: Principal, head: BlockedRange) -> None:
    if head.is_provisional:
        Capability.require_hold(principal, head)
        return
    # rows of a booking are its break buffer; only staff on that booking may drop them
    appointment = db.query(Appointment).filter(Appointment.id == head.related_appointment_id).first()
    Capability.require_staff(principal, appointment)


def convert_blocked_to_appointment(
    db: Session,
    blocked_id: int,
    appointment_id: int,
    principal: Principal,
) -> int:
    with transaction(db):
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFound("Appointment not found")
        head = get_blocked_slot(db, blocked_id)

        Capability.require_manage(principal, appointment)
        _authorize_change(db, principal, head)
        if appointment.mechanic_id != head.mechanic_id:
            raise ValidationError("Hold and appointment are for different mechanics")

        updated = attach_hold(db, blocked_id, appointment_id)
    logger.info("Hold %s converted to appointment %s (%d row(s))", blocked_id, appointment_id, updated)
    return updated


def delete_blocked_slot(db: Session, blocked_id: int, principal: Principal) -> int:
    """
    Delete a blocked range. A provisional row releases its whole hold; a row
    tied to an appointment is removed alone.
    """
    with transaction(db):
        head = get_blocked_slot(db, blocked_id)
        _authorize_change(db, principal, head)

        if head.is_provisional:
            deleted = _hold_rows(db, head).delete(synchronize_session=False)
        else:
            db.delete(head)
            deleted = 1
    logger.info("Deleted %d blocked range(s) starting from %s", deleted, blocked_id)
    return deleted


def cleanup_expired_blocks(
    db: Session,
    now: Optional[datetime] = None,
    grace_minutes: Optional[int] = None,
) -> int:
    """Delete provisional break-time rows created more than grace_minutes ago."""
    now = now or now_local()
    grace = settings.scheduling.block_grace_minutes if grace_minutes is None else grace_minutes
    cutoff = now - timedelta(minutes=grace)

    with transaction(db):
        deleted = (
            db.query(BlockedRange)
            .filter(
                BlockedRange.is_break_time == True,  # noqa: E712
                BlockedRange.related_appointment_id.is_(None),
                BlockedRange.created_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
    if deleted:
        logger.info("cleanup_expired_blocks: %d expired hold row(s) removed", deleted)
    return deleted


def get_mechanic_blocked_slots(db: Session, mechanic_id: int, target_date: date) -> List[BlockedRange]:
    day_start, day_end = _day_bounds(target_date)
    return (
        db.query(BlockedRange)
        .filter(
            BlockedRange.mechanic_id == mechanic_id,
            BlockedRange.slot_time >= day_start,
            BlockedRange.slot_time < day_end,
            BlockedRange.is_blocked == True,  # noqa: E712
        )
        .order_by(BlockedRange.slot_time, BlockedRange.id)
        .all()
    )


def active_blocks_on(db: Session, target_date: date, mechanic_ids=None) -> List[BlockedRange]:
    day_start, day_end = _day_bounds(target_date)
    query = db.query(BlockedRange).filter(
        BlockedRange.slot_time >= day_start,
        BlockedRange.slot_time < day_end,
        BlockedRange.is_blocked == True,  # noqa: E712
    )
    if mechanic_ids is not None:
        query = query.filter(BlockedRange.mechanic_id.in_(list(mechanic_ids)))
    return query.all()
