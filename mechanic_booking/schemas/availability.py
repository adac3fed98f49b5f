# mechanic_booking/schemas/availability.py
from pydantic import BaseModel, Field, conint
from typing import List, Optional, Union
from datetime import date, datetime, time


class SlotResponse(BaseModel):
    time: str
    label: str
    mechanic_id: int = Field(alias="mechanicId")
    mechanic_name: Optional[str] = Field(default=None, alias="mechanicName")
    status: str

    class Config:
        populate_by_name = True


class AvailableSlotsResponse(BaseModel):
    success: bool = True
    date: str
    available_slots: List[SlotResponse] = Field(alias="availableSlots")
    message: Optional[str] = None

    class Config:
        populate_by_name = True


class SlotCheckResponse(BaseModel):
    success: bool = True
    available: bool
    appointments_count: int = Field(alias="appointmentsCount")
    blocked_count: int = Field(alias="blockedCount")

    class Config:
        populate_by_name = True


class BlockedSlotCreate(BaseModel):
    mechanic_id: int = Field(alias="mechanicId")
    # raw value, parsed by the time normalizer
    slot_time: Union[str, datetime] = Field(alias="slotTime")
    duration_minutes: Optional[conint(ge=0)] = Field(default=None, alias="durationMinutes")

    class Config:
        populate_by_name = True


class BlockedSlotResponse(BaseModel):
    id: int
    mechanic_id: int = Field(alias="mechanicId")
    slot_time: datetime = Field(alias="slotTime")
    is_break_time: bool = Field(alias="isBreakTime")
    related_appointment_id: Optional[int] = Field(default=None, alias="relatedAppointmentId")
    is_blocked: bool = Field(alias="isBlocked")
    hold_head_id: Optional[int] = Field(default=None, alias="holdHeadId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class BlockedSlotCreated(BaseModel):
    success: bool = True
    blocked_id: int = Field(alias="blockedId")

    class Config:
        populate_by_name = True


class ConvertBlockedRequest(BaseModel):
    appointment_id: int = Field(alias="appointmentId")

    class Config:
        populate_by_name = True


class BlockedCountResponse(BaseModel):
    success: bool = True
    count: int


class WorkingWindowResponse(BaseModel):
    mechanic_id: int = Field(alias="mechanicId")
    mechanic_name: Optional[str] = Field(default=None, alias="mechanicName")
    work_date: date = Field(alias="workDate")
    start_time: time = Field(alias="startTime")
    end_time: time = Field(alias="endTime")

    class Config:
        from_attributes = True
        populate_by_name = True
