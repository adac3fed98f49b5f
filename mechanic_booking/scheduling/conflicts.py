"""
Conflict detection

Decides whether a proposed [start, start + duration) interval is free for a
mechanic. Appointments collide on half-open interval overlap; blocked ranges
collide when their instant falls inside the proposed interval.

Outside a transaction the answer is advisory. The transaction manager runs it
again inside its unit of work, and the active-slot unique index backs it up
at commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from mechanic_booking.core.errors import ValidationError
from mechanic_booking.db.models.appointment import ACTIVE_STATUSES, Appointment
from mechanic_booking.db.models.availability import BlockedRange
from mechanic_booking.scheduling.blocked import hold_row_ids
from mechanic_booking.scheduling.timeparse import TemporalInput, parse_date, parse_time

logger = logging.getLogger(__name__)


@dataclass
class SlotCheck:
    available: bool
    appointments_count: int = 0
    blocked_count: int = 0

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "appointmentsCount": self.appointments_count,
            "blockedCount": self.blocked_count,
        }


def overlaps(start1, end1, start2, end2):
    return max(start1, start2) < min(end1, end2)


def proposed_interval(target_date: TemporalInput, start_time: TemporalInput, duration_minutes: int):
    if duration_minutes is None or int(duration_minutes) <= 0:
        raise ValidationError("durationMinutes must be a positive number of minutes")
    start = datetime.combine(parse_date(target_date), parse_time(start_time))
    return start, start + timedelta(minutes=int(duration_minutes))


def count_colliding_appointments(
    db: Session,
    mechanic_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> int:
    query = db.query(Appointment).filter(
        Appointment.mechanic_id == mechanic_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.is_deleted == False,  # noqa: E712
        Appointment.appointment_date < end,
        # jobs of any length, including ones that started on an earlier day
        Appointment.estimated_end_time > start,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    count = 0
    for appt in query.all():
        if overlaps(appt.appointment_date, appt.estimated_end_time, start, end):
            count += 1
    return count


def count_colliding_blocks(
    db: Session,
    mechanic_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[int] = None,
    exclude_blocked_id: Optional[int] = None,
) -> int:
    query = db.query(BlockedRange).filter(
        BlockedRange.mechanic_id == mechanic_id,
        BlockedRange.is_blocked == True,  # noqa: E712
        BlockedRange.slot_time >= start,
        BlockedRange.slot_time < end,
    )
    if exclude_appointment_id is not None:
        query = query.filter(
            or_(
                BlockedRange.related_appointment_id.is_(None),
                BlockedRange.related_appointment_id != exclude_appointment_id,
            )
        )
    if exclude_blocked_id is not None:
        own_hold = hold_row_ids(db, exclude_blocked_id)
        if own_hold:
            query = query.filter(BlockedRange.id.notin_(own_hold))
    return query.count()


def check_slot_availability(
    db: Session,
    mechanic_id: int,
    target_date: TemporalInput,
    start_time: TemporalInput,
    duration_minutes: int,
    exclude_appointment_id: Optional[int] = None,
    exclude_blocked_id: Optional[int] = None,
) -> SlotCheck:
    """
    Count what collides with [start, start + duration) for mechanic_id.

    Canceled, completed and soft-deleted appointments never collide. Rows tied
    to exclude_appointment_id and the hold headed by exclude_blocked_id are
    ignored so an edit or a hold owner does not collide with itself.
    """
    start, end = proposed_interval(target_date, start_time, duration_minutes)

    appointments_count = count_colliding_appointments(db, mechanic_id, start, end, exclude_appointment_id)
    blocked_count = count_colliding_blocks(
        db, mechanic_id, start, end, exclude_appointment_id, exclude_blocked_id
    )
    available = appointments_count == 0 and blocked_count == 0
    if not available:
        logger.debug(
            "Mechanic %s busy in [%s, %s): %d appointment(s), %d blocked range(s)",
            mechanic_id, start, end, appointments_count, blocked_count,
        )
    return SlotCheck(available, appointments_count, blocked_count)
