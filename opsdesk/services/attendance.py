"""
Attendance classification and employee matching.

Attendance sheets are free text: supervisors type "Present", "p", "Sick",
custom notes, or leave cells blank. Everything here is total; an unknown
status simply does not count toward any tally.
"""

import enum
from typing import Any, Iterable, NamedTuple, Optional

from opsdesk.schemas.payroll import AttendanceRecord, Employee, canonical_id

PAID_STATUSES = frozenset({"present", "off", "sick", "p"})
DEDUCTION_STATUSES = frozenset({"leave", "joined", "absent"})
ABSENT_STATUS = "absent"

LONG_MONTH_MARKER_DAY = 31


class DayClass(str, enum.Enum):
    PAID = "paid"
    DEDUCTION = "deduction"
    ABSENT = "absent"
    NEUTRAL = "neutral"

    @property
    def is_paid(self) -> bool:
        return self is DayClass.PAID

    @property
    def is_deduction(self) -> bool:
        # Every absent day is also a deduction day
        return self in (DayClass.DEDUCTION, DayClass.ABSENT)

    @property
    def is_absent(self) -> bool:
        return self is DayClass.ABSENT


class DayTally(NamedTuple):
    paid: int
    deduction: int
    absent: int


def classify(status: Any) -> DayClass:
    if status is None:
        return DayClass.NEUTRAL
    value = str(status).strip().lower()
    if value in PAID_STATUSES:
        return DayClass.PAID
    if value == ABSENT_STATUS:
        return DayClass.ABSENT
    if value in DEDUCTION_STATUSES:
        return DayClass.DEDUCTION
    return DayClass.NEUTRAL


def days_in_period(record: AttendanceRecord) -> int:
    """31 when the day-31 cell holds anything, else 30. Not calendar aware."""
    marker = record.days.get(LONG_MONTH_MARKER_DAY)
    if marker is not None and marker.strip() != "":
        return 31
    return 30


def tally(record: AttendanceRecord, days_in_month: int) -> DayTally:
    paid = deduction = absent = 0
    for day in range(1, days_in_month + 1):
        day_class = classify(record.days.get(day))
        if day_class.is_paid:
            paid += 1
        if day_class.is_deduction:
            deduction += 1
        if day_class.is_absent:
            absent += 1
    return DayTally(paid, deduction, absent)


def _normalised_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def match_attendance(employee: Employee, records: Iterable[AttendanceRecord]) -> Optional[AttendanceRecord]:
    """
    Find the attendance record belonging to an employee.

    Ids are compared in canonical string form first; only when no record
    carries the employee's id is the trimmed, case-insensitive name tried.

    Args:
        employee: The employee to resolve
        records: Attendance records for the same period and type

    Returns:
        The first matching record, or None
    """
    records = list(records)
    employee_id = canonical_id(employee.employee_id)
    if employee_id:
        for record in records:
            if canonical_id(record.employee_id) == employee_id:
                return record

    name = _normalised_name(employee.name)
    if name:
        for record in records:
            if _normalised_name(record.name) == name:
                return record
    return None
