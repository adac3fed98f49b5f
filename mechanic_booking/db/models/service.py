# mechanic_booking/db/models/service.py

from sqlalchemy import Column, Integer, String, Boolean, Float
from mechanic_booking.db.base import Base


class Service(Base):
    """Catalog entry. Read-only here; estimated_minutes drives booking duration."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    description = Column(String, nullable=True)

    price = Column(Float, nullable=False, default=0)

    # Duration (in minutes)
    estimated_minutes = Column(Integer, nullable=False, default=60)

    is_active = Column(Boolean, default=True)
