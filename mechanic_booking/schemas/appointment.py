# mechanic_booking/schemas/appointment.py
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from mechanic_booking.db.models.appointment import PaymentMethod


def normalize_payment_method(value: Optional[str]) -> str:
    """Free-text payment choice -> bank_transfer | pay_at_shop."""
    if not value:
        return PaymentMethod.PAY_AT_SHOP.value
    lowered = str(value).lower()
    if "bank" in lowered or "transfer" in lowered or "chuyển khoản" in lowered:
        return PaymentMethod.BANK_TRANSFER.value
    return PaymentMethod.PAY_AT_SHOP.value


# --- SERVICE SELECTION ---
class ServiceSelection(BaseModel):
    service_id: int = Field(alias="serviceId")
    quantity: int = Field(default=1, ge=1)

    class Config:
        populate_by_name = True


def _to_selection(item: Any) -> ServiceSelection:
    if isinstance(item, ServiceSelection):
        return item
    if isinstance(item, bool):
        raise ValueError("service entries must be ids or {serviceId, quantity} objects")
    if isinstance(item, int):
        return ServiceSelection(service_id=item)
    if isinstance(item, str) and item.strip().isdigit():
        return ServiceSelection(service_id=int(item))
    if isinstance(item, dict):
        service_id = item.get("serviceId", item.get("service_id", item.get("id")))
        if service_id is None:
            raise ValueError("service entry is missing serviceId")
        quantity = item.get("quantity")
        return ServiceSelection(service_id=int(service_id), quantity=1 if quantity is None else quantity)
    raise ValueError("service entries must be ids or {serviceId, quantity} objects")


def _normalize_services(value):
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [_to_selection(item) for item in value]


# --- CREATE ---
class AppointmentCreate(BaseModel):
    # kept as raw input so the time normalizer decides what is malformed
    appointment_date: Optional[Union[str, datetime]] = Field(default=None, alias="appointmentDate")
    services: Optional[List[ServiceSelection]] = None
    mechanic_id: Optional[int] = Field(default=None, alias="mechanicId")

    vehicle_id: Optional[int] = Field(default=None, alias="vehicleId")
    license_plate: Optional[str] = Field(default=None, alias="licensePlate")
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None

    notes: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    blocked_id: Optional[int] = Field(default=None, alias="blockedId")

    class Config:
        populate_by_name = True

    @field_validator("services", mode="before")
    @classmethod
    def _services(cls, value):
        return _normalize_services(value)


# --- UPDATE ---
class AppointmentUpdate(BaseModel):
    appointment_date: Optional[Union[str, datetime]] = Field(default=None, alias="appointmentDate")
    services: Optional[List[ServiceSelection]] = None
    mechanic_id: Optional[int] = Field(default=None, alias="mechanicId")
    status: Optional[str] = Field(
        default=None,
        description="Allowed values: Pending, Confirmed, Completed, Canceled",
    )

    vehicle_id: Optional[int] = Field(default=None, alias="vehicleId")
    license_plate: Optional[str] = Field(default=None, alias="licensePlate")
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None

    notes: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")

    class Config:
        populate_by_name = True

    @field_validator("services", mode="before")
    @classmethod
    def _services(cls, value):
        return _normalize_services(value)


# --- RESPONSES ---
class AppointmentCreated(BaseModel):
    success: bool = True
    message: str = "Appointment booked"
    appointment_id: int = Field(alias="appointmentId")
    vehicle_id: int = Field(alias="vehicleId")

    class Config:
        populate_by_name = True


class LineItemResponse(BaseModel):
    service_id: int = Field(alias="serviceId")
    service_name: Optional[str] = Field(default=None, alias="serviceName")
    quantity: int
    price: Optional[float] = None
    estimated_minutes: Optional[int] = Field(default=None, alias="estimatedMinutes")

    class Config:
        populate_by_name = True


class AppointmentResponse(BaseModel):
    id: int
    user_id: int = Field(alias="userId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    vehicle_id: int = Field(alias="vehicleId")
    license_plate: Optional[str] = Field(default=None, alias="licensePlate")
    brand: Optional[str] = None
    model: Optional[str] = None
    mechanic_id: Optional[int] = Field(default=None, alias="mechanicId")
    mechanic_name: Optional[str] = Field(default=None, alias="mechanicName")
    appointment_date: datetime = Field(alias="appointmentDate")
    estimated_end_time: datetime = Field(alias="estimatedEndTime")
    service_duration: int = Field(alias="serviceDuration")
    status: str
    notes: Optional[str] = None
    payment_method: str = Field(alias="paymentMethod")
    services: List[LineItemResponse] = []
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    class Config:
        from_attributes = True
        populate_by_name = True

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentResponse":
        vehicle = appointment.vehicle
        return cls(
            id=appointment.id,
            user_id=appointment.user_id,
            customer_name=appointment.customer.full_name if appointment.customer else None,
            vehicle_id=appointment.vehicle_id,
            license_plate=vehicle.license_plate if vehicle else None,
            brand=vehicle.brand if vehicle else None,
            model=vehicle.model if vehicle else None,
            mechanic_id=appointment.mechanic_id,
            mechanic_name=appointment.mechanic.full_name if appointment.mechanic else None,
            appointment_date=appointment.appointment_date,
            estimated_end_time=appointment.estimated_end_time,
            service_duration=appointment.service_duration,
            status=appointment.status,
            notes=appointment.notes,
            payment_method=appointment.payment_method,
            services=[
                LineItemResponse(
                    service_id=item.service_id,
                    service_name=item.service.name if item.service else None,
                    quantity=item.quantity,
                    price=item.service.price if item.service else None,
                    estimated_minutes=item.service.estimated_minutes if item.service else None,
                )
                for item in appointment.line_items
            ],
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class StatusResponse(BaseModel):
    success: bool = True
    message: str

