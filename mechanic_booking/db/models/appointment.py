# mechanic_booking/db/models/appointment.py
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from mechanic_booking.db.base import ACTIVE_SLOT_INDEX, Base
from mechanic_booking.scheduling.timeparse import now_local


class AppointmentStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAY_AT_SHOP = "pay_at_shop"


# Statuses that still hold the mechanic's time
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

_active_slot_where = "status IN ('Pending', 'Confirmed') AND is_deleted = {false}"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # one live appointment per mechanic and start instant, enforced by storage
        Index(
            ACTIVE_SLOT_INDEX,
            "mechanic_id",
            "appointment_date",
            unique=True,
            sqlite_where=text(_active_slot_where.format(false="0")),
            postgresql_where=text(_active_slot_where.format(false="false")),
        ),
        Index("ix_appointments_date", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    mechanic_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # civil time in the operating timezone
    appointment_date = Column(DateTime, nullable=False)
    estimated_end_time = Column(DateTime, nullable=False)
    service_duration = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    is_deleted = Column(Boolean, nullable=False, default=False)

    notes = Column(String, nullable=True)
    payment_method = Column(String, nullable=False, default=PaymentMethod.PAY_AT_SHOP.value)

    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    # relationships
    customer = relationship("User", foreign_keys=[user_id])
    mechanic = relationship("User", foreign_keys=[mechanic_id])
    vehicle = relationship("Vehicle", foreign_keys=[vehicle_id])
    line_items = relationship(
        "AppointmentService",
        back_populates="appointment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    blocked_ranges = relationship("BlockedRange", back_populates="appointment")


class AppointmentService(Base):
    __tablename__ = "appointment_services"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    appointment = relationship("Appointment", back_populates="line_items")
    service = relationship("Service", lazy="joined")
