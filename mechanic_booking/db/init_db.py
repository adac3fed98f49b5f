# mechanic_booking/db/init_db.py
from mechanic_booking.db.base import Base, engine

# Import every model so relationships resolve and create_all sees all tables
from mechanic_booking.db.models import appointment, availability, service, user, vehicle  # noqa: F401


def init_db(bind=engine) -> None:
    Base.metadata.create_all(bind=bind)
