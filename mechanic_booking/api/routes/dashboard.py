# mechanic_booking/api/routes/dashboard.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import func

from mechanic_booking.core.security import Principal, get_current_user, ROLE_MECHANIC
from mechanic_booking.db.base import get_db
from mechanic_booking.db.models.service import Service
from mechanic_booking.db.models.user import User
from mechanic_booking.schemas.appointment import AppointmentResponse
from mechanic_booking.schemas.dashboard import DashboardResponse, KPIItem
from mechanic_booking.services.appointments import AppointmentManager

router = APIRouter(prefix="/admin/dashboard", tags=["admin-dashboard"])


@router.get("", response_model=DashboardResponse)
def admin_dashboard(
    recent_limit: int = Query(5, ge=1, le=50, alias="recentLimit"),
    db: Session = Depends(get_db),
    current_user: Principal = Depends(get_current_user),
):
    manager = AppointmentManager(db)
    stats = manager.dashboard_stats(current_user)
    recent = manager.recent(current_user, limit=recent_limit)

    total_mechanics = db.query(func.count(User.id)).filter(User.role == ROLE_MECHANIC).scalar() or 0
    active_services = db.query(func.count(Service.id)).filter(Service.is_active == True).scalar() or 0  # noqa: E712

    kpis = KPIItem(
        total_appointments=stats["totalAppointments"],
        appointments_today=stats["today"],
        upcoming_appointments=stats["upcoming"],
        total_mechanics=int(total_mechanics),
        active_services=int(active_services),
    )
    return DashboardResponse(
        kpis=kpis,
        appointments_by_status=stats["byStatus"],
        recent_appointments=[AppointmentResponse.from_appointment(a) for a in recent],
    )
