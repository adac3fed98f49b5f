# mechanic_booking/db/base.py
import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from mechanic_booking.core.config import AppConfig, settings
from mechanic_booking.core.errors import BookingError, SlotConflict, StorageFailure

logger = logging.getLogger(__name__)

Base = declarative_base()

# Name of the partial unique index guarding (mechanic, start) for live bookings
ACTIVE_SLOT_INDEX = "uq_appointments_active_mechanic_slot"


def build_engine(config: AppConfig = settings, **kwargs) -> Engine:
    url = config.database.url
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        # SQLite only enforces FKs when asked to
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    if config.database.log_slow_queries:
        threshold = config.database.slow_query_threshold

        @event.listens_for(engine, "before_cursor_execute")
        def before_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            conn.info.setdefault("query_start_time", []).append(time.time())

        @event.listens_for(engine, "after_cursor_execute")
        def after_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            total = time.time() - conn.info["query_start_time"].pop(-1)
            if total > threshold:
                logger.warning("Slow query (%.2fs): %s...", total, statement[:200])

    return engine


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a multi-statement unit of work.

    Commits on success. On any exception the session is rolled back before
    the error propagates; database errors are reported as StorageFailure,
    and a hit on the active-slot unique index as SlotConflict.
    """
    try:
        yield db
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if ACTIVE_SLOT_INDEX in str(e.orig) or "appointments.mechanic_id, appointments.appointment_date" in str(e.orig):
            logger.warning("Concurrent booking rejected by %s", ACTIVE_SLOT_INDEX)
            raise SlotConflict("Mechanic already has an appointment at this time") from e
        logger.error("Integrity error, transaction rolled back", exc_info=True)
        raise StorageFailure() from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error, transaction rolled back", exc_info=True)
        raise StorageFailure() from e
    except Exception:
        db.rollback()
        logger.error("Unexpected error, transaction rolled back", exc_info=True)
        raise
