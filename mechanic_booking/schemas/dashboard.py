# mechanic_booking/schemas/dashboard.py
from pydantic import BaseModel, Field
from typing import Dict, List

from mechanic_booking.schemas.appointment import AppointmentResponse


class KPIItem(BaseModel):
    total_appointments: int = Field(alias="totalAppointments")
    appointments_today: int = Field(alias="appointmentsToday")
    upcoming_appointments: int = Field(alias="upcomingAppointments")
    total_mechanics: int = Field(alias="totalMechanics")
    active_services: int = Field(alias="activeServices")

    class Config:
        populate_by_name = True


class DashboardResponse(BaseModel):
    kpis: KPIItem
    appointments_by_status: Dict[str, int] = Field(alias="appointmentsByStatus")
    recent_appointments: List[AppointmentResponse] = Field(alias="recentAppointments")

    class Config:
        populate_by_name = True
