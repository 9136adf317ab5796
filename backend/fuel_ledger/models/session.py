"""Work shifts and the daily sessions transfers/transactions are grouped by.

The ledger never mutates these; they are only foreign grouping keys.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class SessionStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


class Shift(SQLModel, table=True):
    __tablename__ = "shift"

    id: Optional[int] = Field(default=None, primary_key=True)
    shift_code: str = Field(index=True, unique=True, max_length=20)
    shift_name: str = Field(max_length=50)
    start_time: time
    end_time: time
    description: Optional[str] = None
    is_active: bool = Field(default=True)

    @property
    def is_overnight(self) -> bool:
        return self.end_time < self.start_time

    def duration_minutes(self) -> int:
        anchor = date(2000, 1, 1)
        start = datetime.combine(anchor, self.start_time)
        end = datetime.combine(anchor, self.end_time)
        if end < start:
            end += timedelta(days=1)
        return int((end - start).total_seconds() // 60)

    def is_active_at(self, moment: time) -> bool:
        if self.is_overnight:
            return moment >= self.start_time or moment <= self.end_time
        return self.start_time <= moment <= self.end_time


class DailySession(SQLModel, table=True):
    __tablename__ = "daily_session"
    __table_args__ = (UniqueConstraint("session_date", "shift_id", name="uq_session_date_shift"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_date: date = Field(index=True)
    shift_id: int = Field(foreign_key="shift.id", index=True)
    session_name: Optional[str] = Field(default=None, max_length=100)
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    notes: Optional[str] = None

    def duration_hours(self) -> float | None:
        if not self.start_datetime or not self.end_datetime:
            return None
        return round((self.end_datetime - self.start_datetime).total_seconds() / 3600, 2)
