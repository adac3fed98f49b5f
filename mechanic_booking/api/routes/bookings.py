# mechanic_booking/api/routes/bookings.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from mechanic_booking.core.errors import ValidationError
from mechanic_booking.core.security import Principal, get_current_user, ROLE_MECHANIC
from mechanic_booking.db.base import get_db
from mechanic_booking.db.models.service import Service
from mechanic_booking.db.models.user import User
from mechanic_booking.schemas.appointment import (
    AppointmentCreate,
    AppointmentCreated,
    AppointmentResponse,
    AppointmentUpdate,
    StatusResponse,
)
from mechanic_booking.schemas.availability import AvailableSlotsResponse
from mechanic_booking.schemas.service import ServiceResponse
from mechanic_booking.schemas.user import MechanicResponse
from mechanic_booking.scheduling.slots import list_available_slots
from mechanic_booking.scheduling.timeparse import parse_date
from mechanic_booking.services.appointments import AppointmentManager

router = APIRouter(prefix="/bookings", tags=["bookings"])


def get_manager(db: Session = Depends(get_db)) -> AppointmentManager:
    return AppointmentManager(db)


# Public slot listing

@router.get("/available-slots", response_model=AvailableSlotsResponse)
def available_slots(
    date: Optional[str] = Query(None, description="date in YYYY-MM-DD"),
    mechanic_id: Optional[int] = Query(None, alias="mechanicId"),
    db: Session = Depends(get_db),
):
    if not date:
        raise ValidationError("Please provide the date to book")
    target_date = parse_date(date)

    slots = list_available_slots(db, target_date, mechanic_id)
    return AvailableSlotsResponse(
        date=target_date.isoformat(),
        available_slots=slots,
        message=None if slots else "No mechanic is working on this date",
    )


@router.get("/mechanics", response_model=List[MechanicResponse])
def list_mechanics(db: Session = Depends(get_db)):
    return db.query(User).filter(User.role == ROLE_MECHANIC).order_by(User.full_name).all()


@router.get("/services", response_model=List[ServiceResponse])
def list_services(db: Session = Depends(get_db)):
    return db.query(Service).filter(Service.is_active == True).order_by(Service.id).all()  # noqa: E712


# Customer creates appointment

@router.post("/appointments", response_model=AppointmentCreated, status_code=201)
def create_appointment(
    payload: AppointmentCreate,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    result = manager.create(current_user, payload)
    return AppointmentCreated(appointment_id=result["appointmentId"], vehicle_id=result["vehicleId"])


@router.get("/my-appointments", response_model=List[AppointmentResponse])
def my_appointments(
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return [AppointmentResponse.from_appointment(a) for a in manager.list_for_customer(current_user)]


# Staff listing

@router.get("/appointments", response_model=List[AppointmentResponse])
def list_appointments(
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    status: Optional[str] = Query(None),
    mechanic_id: Optional[int] = Query(None, alias="mechanicId"),
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    appointments = manager.list_all(
        current_user, date_from=date_from, date_to=date_to, status=status, mechanic_id=mechanic_id
    )
    return [AppointmentResponse.from_appointment(a) for a in appointments]


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return AppointmentResponse.from_appointment(manager.get(appointment_id, current_user))


@router.put("/appointments/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    payload: AppointmentUpdate,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return AppointmentResponse.from_appointment(manager.update(appointment_id, current_user, payload))


@router.post("/appointments/{appointment_id}/cancel", response_model=StatusResponse)
def cancel_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    manager.cancel(appointment_id, current_user)
    return StatusResponse(message="Appointment canceled")


@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return AppointmentResponse.from_appointment(manager.confirm(appointment_id, current_user))


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return AppointmentResponse.from_appointment(manager.complete(appointment_id, current_user))


@router.delete("/appointments/{appointment_id}", response_model=StatusResponse)
def delete_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    manager.soft_delete(appointment_id, current_user)
    return StatusResponse(message="Appointment deleted")


# Admin recovery

@router.get("/admin/deleted-appointments", response_model=List[AppointmentResponse])
def deleted_appointments(
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return [AppointmentResponse.from_appointment(a) for a in manager.list_deleted(current_user)]


@router.post("/admin/appointments/{appointment_id}/restore", response_model=AppointmentResponse)
def restore_appointment(
    appointment_id: int,
    manager: AppointmentManager = Depends(get_manager),
    current_user: Principal = Depends(get_current_user),
):
    return AppointmentResponse.from_appointment(manager.restore(appointment_id, current_user))
