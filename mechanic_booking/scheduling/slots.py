"""
Slot grid and availability listing.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from mechanic_booking.core.config import settings
from mechanic_booking.db.models.appointment import AppointmentStatus, Appointment
from mechanic_booking.scheduling.blocked import active_blocks_on
from mechanic_booking.scheduling.working_hours import get_working_windows

SLOT_AVAILABLE = "available"
SLOT_BOOKED = "booked"


def generate_slot_grid(start: time, end: time, width_minutes: int = 60) -> Iterator[time]:
    """
    Yield slot start times from start, spaced width_minutes apart, keeping
    only slots that end by `end`. Each call starts a fresh sequence.
    """
    if width_minutes <= 0:
        raise ValueError("width_minutes must be positive")
    anchor = date.min
    current = datetime.combine(anchor, start)
    limit = datetime.combine(anchor, end)
    step = timedelta(minutes=width_minutes)
    while current + step <= limit:
        yield current.time()
        current += step


def _hhmm(value) -> str:
    return value.strftime("%H:%M")


def list_available_slots(
    db: Session,
    target_date: date,
    mechanic_id: Optional[int] = None,
    width_minutes: Optional[int] = None,
) -> List[dict]:
    """
    One entry per grid slot of every working window on target_date.

    A slot is booked when a live appointment of that mechanic, or one of the
    mechanic's blocked ranges, starts at exactly that time of day.
    """
    width = width_minutes or settings.scheduling.slot_width_minutes
    windows = get_working_windows(db, target_date, mechanic_id)
    if not windows:
        return []

    mechanic_ids = {w.mechanic_id for w in windows}
    day_start = datetime.combine(target_date, time.min)
    appointments = (
        db.query(Appointment)
        .filter(
            Appointment.mechanic_id.in_(mechanic_ids),
            Appointment.appointment_date >= day_start,
            Appointment.appointment_date < day_start + timedelta(days=1),
            Appointment.status != AppointmentStatus.CANCELED.value,
            Appointment.is_deleted == False,  # noqa: E712
        )
        .all()
    )

    taken = {(a.mechanic_id, _hhmm(a.appointment_date)) for a in appointments}
    taken.update((b.mechanic_id, _hhmm(b.slot_time)) for b in active_blocks_on(db, target_date, mechanic_ids))

    slots = []
    for window in windows:
        for slot in generate_slot_grid(window.start_time, window.end_time, width):
            key = (window.mechanic_id, _hhmm(slot))
            slots.append({
                "time": key[1],
                "label": key[1],
                "mechanicId": window.mechanic_id,
                "mechanicName": window.mechanic_name,
                "status": SLOT_BOOKED if key in taken else SLOT_AVAILABLE,
            })

    # sorted() is stable, ties keep window enumeration order
    return sorted(slots, key=lambda s: s["time"])
