# mechanic_booking/db/models/vehicle.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from mechanic_booking.db.base import Base
from mechanic_booking.scheduling.timeparse import now_local


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    license_plate = Column(String, nullable=False, unique=True, index=True)
    brand = Column(String, nullable=True)
    model = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=now_local)

    owner = relationship("User", back_populates="vehicles")
