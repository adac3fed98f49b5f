# mechanic_booking/main.py
from fastapi import FastAPI

from mechanic_booking.core.errors import register_error_handlers
from mechanic_booking.db.init_db import init_db
from mechanic_booking.api.routes import bookings as bookings_router
from mechanic_booking.api.routes import availability as availability_router
from mechanic_booking.api.routes import dashboard as dashboard_router


app = FastAPI(title="Mechanic Booking API")
register_error_handlers(app)


@app.on_event("startup")
def startup():
    init_db()


@app.get("/")
def root():
    return {"message": "Mechanic Booking API running"}


app.include_router(bookings_router.router)
app.include_router(availability_router.router)
app.include_router(dashboard_router.router)
