"""
Notification port

The engine only announces that an appointment was created or changed. Push,
in-app and realtime delivery belong to another service which plugs in by
implementing Notifier.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class Notifier(ABC):

    @abstractmethod
    def appointment_created(self, appointment) -> None:
        pass

    @abstractmethod
    def appointment_updated(self, appointment, previous_status: Optional[str]) -> None:
        """Called after a committed change; previous_status is the status before it."""
        pass


class LoggingNotifier(Notifier):
    """Default notifier: records the event in the log."""

    def appointment_created(self, appointment) -> None:
        logger.info(
            "Appointment %s created for customer %s (mechanic %s, %s)",
            appointment.id, appointment.user_id, appointment.mechanic_id, appointment.appointment_date,
        )

    def appointment_updated(self, appointment, previous_status: Optional[str]) -> None:
        if previous_status and previous_status != appointment.status:
            logger.info(
                "Appointment %s status %s -> %s", appointment.id, previous_status, appointment.status
            )
        else:
            logger.info("Appointment %s updated", appointment.id)


def dispatch(notifier: Notifier, event: str, *args) -> None:
    """Deliver an event without letting a delivery failure reach the caller."""
    try:
        getattr(notifier, event)(*args)
    except Exception:
        logger.warning("Notification %s failed", event, exc_info=True)
