"""
Filtering and summary statistics for the attendance records view.
"""
import math
from datetime import date, datetime
from typing import Iterable, List, Optional, Union

from .models import AttendanceRecord


def _as_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def filter_records(records: Iterable[AttendanceRecord], search_term: str = "",
                   filter_date: Union[date, datetime, str, None] = None) -> List[AttendanceRecord]:
    """Records whose name or class contains ``search_term`` (case-insensitive),
    created on ``filter_date`` when given."""
    term = (search_term or "").strip().lower()
    day = _as_date(filter_date)

    filtered = []
    for record in records:
        if term and term not in record.student_name.lower() and term not in record.student_class.lower():
            continue
        if day is not None and (record.created_at is None or record.created_at.date() != day):
            continue
        filtered.append(record)
    return filtered


def compute_stats(records: Iterable[AttendanceRecord], today: Optional[date] = None) -> dict:
    """Total, today's count, unique members and average attendance per day of the month.

    The average rounds halves up (5 records on day 2 gives 3).
    """
    records = list(records)
    today = today or date.today()

    today_count = sum(
        1 for record in records
        if record.created_at is not None and record.created_at.date() == today
    )
    unique_members = len({record.student_name for record in records})

    return {
        'total_records': len(records),
        'today_records': today_count,
        'unique_members': unique_members,
        'average_attendance': math.floor(len(records) / max(1, today.day) + 0.5),
    }
