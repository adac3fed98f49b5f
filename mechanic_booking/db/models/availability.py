# mechanic_booking/db/models/availability.py
from sqlalchemy import Column, Integer, Time, Date, ForeignKey, Boolean, DateTime, String, CheckConstraint, Index
from sqlalchemy.orm import relationship
from mechanic_booking.db.base import Base
from mechanic_booking.scheduling.timeparse import now_local


class WorkingHoursWindow(Base):
    """
    A mechanic's declared working hours for one calendar date.
    Written by scheduling administration; read-only to the booking engine.
    leave_status / is_unavailable mark a row that is a leave request or an
    unavailability note rather than a working window.
    """
    __tablename__ = "staff_schedules"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_staff_schedules_start_before_end"),
        Index("ix_staff_schedules_date_mechanic", "work_date", "mechanic_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    mechanic_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    work_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    leave_status = Column(String, nullable=True)  # ApprovedLeave, PendingLeave, RejectedLeave
    is_unavailable = Column(Boolean, nullable=False, default=False)

    mechanic = relationship("User", back_populates="working_hours")


class BlockedRange(Base):
    """
    A time instant a mechanic cannot take new work at.
    related_appointment_id is NULL while the block is a provisional hold;
    such break-time rows expire after the grace period.
    """
    __tablename__ = "blocked_time_slots"
    __table_args__ = (
        Index("ix_blocked_time_slots_mechanic_time", "mechanic_id", "slot_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    mechanic_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    slot_time = Column(DateTime, nullable=False)
    is_break_time = Column(Boolean, nullable=False, default=False)
    related_appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    is_blocked = Column(Boolean, nullable=False, default=True)
    # provisional holds: id of the hold's first row, and who placed it
    hold_head_id = Column(Integer, nullable=True, index=True)
    held_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_local)

    appointment = relationship("Appointment", back_populates="blocked_ranges")

    @property
    def is_provisional(self) -> bool:
        return self.related_appointment_id is None
