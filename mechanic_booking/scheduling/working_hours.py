"""
Working-hours source

Read-only view of the mechanics' declared working windows per date. Rows that
carry a leave marker or are flagged unavailable are not working time.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List, Optional

from sqlalchemy.orm import Session

from mechanic_booking.db.models.availability import WorkingHoursWindow
from mechanic_booking.db.models.user import User


@dataclass(frozen=True)
class WorkingWindow:
    mechanic_id: int
    mechanic_name: str
    work_date: date
    start_time: time
    end_time: time

    def contains(self, moment: time) -> bool:
        return self.start_time <= moment < self.end_time


def get_working_windows(
    db: Session,
    work_date: date,
    mechanic_id: Optional[int] = None,
) -> List[WorkingWindow]:
    """Active windows on work_date, ordered by start time then mechanic id."""
    query = (
        db.query(WorkingHoursWindow, User.full_name)
        .join(User, User.id == WorkingHoursWindow.mechanic_id)
        .filter(
            WorkingHoursWindow.work_date == work_date,
            WorkingHoursWindow.leave_status.is_(None),
            WorkingHoursWindow.is_unavailable == False,  # noqa: E712
        )
    )
    if mechanic_id is not None:
        query = query.filter(WorkingHoursWindow.mechanic_id == mechanic_id)

    rows = query.order_by(
        WorkingHoursWindow.start_time, WorkingHoursWindow.mechanic_id, WorkingHoursWindow.id
    ).all()
    return [
        WorkingWindow(
            mechanic_id=w.mechanic_id,
            mechanic_name=name,
            work_date=w.work_date,
            start_time=w.start_time,
            end_time=w.end_time,
        )
        for w, name in rows
    ]


def has_working_hours(db: Session, mechanic_id: int, start: datetime) -> bool:
    """True when one of the mechanic's windows on that date contains the start time."""
    windows = get_working_windows(db, start.date(), mechanic_id)
    return any(w.contains(start.time()) for w in windows)
