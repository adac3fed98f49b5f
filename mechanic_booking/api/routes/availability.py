# mechanic_booking/api/routes/availability.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from mechanic_booking.core.config import settings
from mechanic_booking.core.errors import PermissionDenied, ValidationError
from mechanic_booking.core.security import Capability, Principal, get_current_user
from mechanic_booking.db.base import get_db
from mechanic_booking.schemas.availability import (
    BlockedCountResponse,
    BlockedSlotCreate,
    BlockedSlotCreated,
    BlockedSlotResponse,
    ConvertBlockedRequest,
    SlotCheckResponse,
    WorkingWindowResponse,
)
from mechanic_booking.scheduling.blocked import (
    cleanup_expired_blocks,
    convert_blocked_to_appointment,
    create_blocked_slot,
    delete_blocked_slot,
    get_mechanic_blocked_slots,
)
from mechanic_booking.scheduling.conflicts import check_slot_availability
from mechanic_booking.scheduling.timeparse import normalize_instant, parse_date
from mechanic_booking.scheduling.working_hours import get_working_windows

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/check", response_model=SlotCheckResponse)
def check_availability(
    mechanic_id: int = Query(..., alias="mechanicId"),
    date: str = Query(..., description="date in YYYY-MM-DD"),
    start_time: str = Query(..., alias="startTime", description="HH:MM"),
    duration_minutes: int = Query(..., alias="durationMinutes"),
    exclude_appointment_id: Optional[int] = Query(None, alias="excludeAppointmentId"),
    exclude_blocked_id: Optional[int] = Query(None, alias="excludeBlockedId"),
    db: Session = Depends(get_db),
):
    """Advisory check; booking re-checks inside its own transaction."""
    check = check_slot_availability(
        db,
        mechanic_id,
        date,
        start_time,
        duration_minutes,
        exclude_appointment_id=exclude_appointment_id,
        exclude_blocked_id=exclude_blocked_id,
    )
    return SlotCheckResponse(
        available=check.available,
        appointments_count=check.appointments_count,
        blocked_count=check.blocked_count,
    )


@router.get("/working-hours", response_model=List[WorkingWindowResponse])
def working_hours(
    date: str = Query(..., description="date in YYYY-MM-DD"),
    mechanic_id: Optional[int] = Query(None, alias="mechanicId"),
    db: Session = Depends(get_db),
):
    return get_working_windows(db, parse_date(date), mechanic_id)


# Provisional holds

@router.post("/blocked", response_model=BlockedSlotCreated, status_code=201)
def hold_slot(
    payload: BlockedSlotCreate,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    head = create_blocked_slot(
        db,
        payload.mechanic_id,
        normalize_instant(payload.slot_time),
        payload.duration_minutes,
        held_by=current_user.user_id,
    )
    return BlockedSlotCreated(blocked_id=head.id)


@router.delete("/blocked/{blocked_id}", response_model=BlockedCountResponse)
def release_slot(
    blocked_id: int,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    return BlockedCountResponse(count=delete_blocked_slot(db, blocked_id, current_user))


@router.post("/blocked/{blocked_id}/convert", response_model=BlockedCountResponse)
def convert_hold(
    blocked_id: int,
    payload: ConvertBlockedRequest,
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    updated = convert_blocked_to_appointment(db, blocked_id, payload.appointment_id, current_user)
    return BlockedCountResponse(count=updated)


@router.get("/mechanics/{mechanic_id}/blocked", response_model=List[BlockedSlotResponse])
def mechanic_blocked_slots(
    mechanic_id: int,
    date: str = Query(..., description="date in YYYY-MM-DD"),
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    if current_user.is_mechanic and current_user.user_id != mechanic_id:
        raise PermissionDenied("Mechanics can only view their own blocked time")
    return get_mechanic_blocked_slots(db, mechanic_id, parse_date(date))


# Cron entry point for the hold sweep

@router.post("/blocked/cleanup", response_model=BlockedCountResponse)
def cleanup_blocked(
    grace_minutes: Optional[int] = Query(None, alias="graceMinutes"),
    x_cron_secret: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    # a scheduler presents the shared secret; otherwise an admin may trigger it
    if settings.cron_secret:
        if x_cron_secret != settings.cron_secret:
            Capability.require_admin(get_current_user(x_user_id, x_user_role))
    elif x_user_id:
        Capability.require_admin(get_current_user(x_user_id, x_user_role))

    if grace_minutes is not None and grace_minutes < 0:
        raise ValidationError("graceMinutes must not be negative")
    deleted = cleanup_expired_blocks(db, grace_minutes=grace_minutes)
    return BlockedCountResponse(count=deleted)
