from datetime import date, timedelta
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from leaveflow.core.exceptions import ValidationError
from leaveflow.models.holiday import Holiday
from leaveflow.models.leave_request import LeaveRequestType

HALF_DAY_TYPES = {LeaveRequestType.HALF_DAY_MORNING.value, LeaveRequestType.HALF_DAY_AFTERNOON.value}


def load_holidays(db: Session, start_date: date, end_date: date) -> Set[date]:
    rows = db.query(Holiday.date).filter(
        Holiday.is_active == True,
        Holiday.date >= start_date,
        Holiday.date <= end_date,
    ).all()
    return {row[0] for row in rows}


def count_business_days(start_date: date, end_date: date, holidays: Optional[Iterable[date]] = None) -> int:
    """Weekdays between both dates inclusive, minus holidays."""
    skip = set(holidays or ())
    days = 0
    current = start_date
    while current <= end_date:
        if current.weekday() < 5 and current not in skip:
            days += 1
        current += timedelta(days=1)
    return days


def calculate_leave_days(
    start_date: date,
    end_date: date,
    request_type: str = LeaveRequestType.FULL_DAY.value,
    holidays: Optional[Iterable[date]] = None
) -> float:
    """
    Number of leave days a request consumes.
    Half-day requests take half a day off the business-day count.
    """
    if end_date < start_date:
        raise ValidationError(
            "End date cannot be before start date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        )

    request_type = getattr(request_type, "value", request_type)
    business_days = count_business_days(start_date, end_date, holidays)
    if business_days == 0:
        raise ValidationError("The selected dates contain no working days")

    days = float(business_days)
    if request_type in HALF_DAY_TYPES:
        days = max(0.0, days - 0.5)
    return days
