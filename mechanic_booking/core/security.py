# mechanic_booking/core/security.py
"""
Caller identity and role checks.

Authentication happens upstream; the gateway forwards the verified user id
and role as X-User-Id / X-User-Role. Every role rule in the engine goes
through Capability so the rules live in one place.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from mechanic_booking.core.errors import PermissionDenied

ROLE_CUSTOMER = "customer"
ROLE_MECHANIC = "mechanic"
ROLE_ADMIN = "admin"

ROLES = (ROLE_CUSTOMER, ROLE_MECHANIC, ROLE_ADMIN)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_mechanic(self) -> bool:
        return self.role == ROLE_MECHANIC


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    if not x_user_id:
        raise PermissionDenied("Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise PermissionDenied("Invalid user id") from None

    role = (x_user_role or ROLE_CUSTOMER).strip().lower()
    if role not in ROLES:
        raise PermissionDenied(f"Unknown role: {x_user_role}")
    return Principal(user_id=user_id, role=role)


class Capability:
    """Role rules over appointments."""

    @staticmethod
    def can_manage(principal: Principal, appointment) -> bool:
        """Admins manage everything; customers their own bookings; mechanics the ones assigned to them."""
        if principal.is_admin:
            return True
        if principal.is_mechanic:
            return appointment.mechanic_id == principal.user_id
        return appointment.user_id == principal.user_id

    @staticmethod
    def require_manage(principal: Principal, appointment) -> None:
        if not Capability.can_manage(principal, appointment):
            raise PermissionDenied("You do not have permission to modify this appointment")

    @staticmethod
    def require_admin(principal: Principal) -> None:
        if not principal.is_admin:
            raise PermissionDenied("Admin only")

    @staticmethod
    def require_staff(principal: Principal, appointment=None) -> None:
        """Admin, or a mechanic (the assigned one when an appointment is given)."""
        if principal.is_admin:
            return
        if principal.is_mechanic and (appointment is None or appointment.mechanic_id == principal.user_id):
            return
        raise PermissionDenied("Staff only")

    @staticmethod
    def can_hold(principal: Principal, blocked) -> bool:
        """A provisional hold is changed by whoever placed it, the held mechanic or an admin."""
        if principal.is_admin:
            return True
        if principal.is_mechanic and blocked.mechanic_id == principal.user_id:
            return True
        return blocked.held_by is not None and blocked.held_by == principal.user_id

    @staticmethod
    def require_hold(principal: Principal, blocked) -> None:
        if not Capability.can_hold(principal, blocked):
            raise PermissionDenied("You do not have permission to change this hold")

    @staticmethod
    def require_owner_or_admin(principal: Principal, appointment) -> None:
        if principal.is_admin or appointment.user_id == principal.user_id:
            return
        raise PermissionDenied("You do not have permission to delete this appointment")
