# mechanic_booking/db/models/user.py
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from mechanic_booking.db.base import Base


class User(Base):
    """
    Customers, mechanics and admins.
    Owned by the identity service; this engine only reads names and roles.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer", server_default="customer")

    vehicles = relationship("Vehicle", back_populates="owner", lazy="selectin")
    working_hours = relationship("WorkingHoursWindow", back_populates="mechanic")
