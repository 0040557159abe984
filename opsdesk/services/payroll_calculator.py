"""
Payroll Calculator

Turns one period's employees and attendance into payroll result rows.

Rules:
- Labour: paid days x day rate, plus overtime at 1.25x the hourly rate.
  More than three absences in a period doubles every absent day in the
  deduction count.
- Staff: fixed 30-day month, no overtime, externally maintained deductions
  are taken off net pay.
- In both variants the attendance-based deduction amount is reported but
  not subtracted from net salary; consumers decide whether to apply it.

Every function is pure and total: unmatched employees get an all-zero row,
bad numbers default to zero. One row per input employee, in input order.
"""

import logging
from typing import Any, Iterable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from opsdesk.core.config import settings
from opsdesk.schemas.payroll import (
    AttendanceRecord,
    Employee,
    LabourPayrollRow,
    PayrollRow,
    PayrollType,
    StaffPayrollRow,
    money,
)
from opsdesk.services.attendance import days_in_period, match_attendance, tally

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

HIGH_OT_HOURS = 50
VERY_HIGH_OT_HOURS = 80


def _coerce(items: Optional[Iterable[Any]], model: Type[M]) -> List[M]:
    return [item if isinstance(item, model) else model.model_validate(item) for item in (items or [])]


def effective_deduction_days(deduction_days: int, absent_days: int) -> int:
    """Apply the absence penalty: above the threshold each absent day counts twice."""
    if absent_days > settings.absence_penalty_threshold:
        return (deduction_days - absent_days) + (absent_days * 2)
    return deduction_days


def ot_hours_warning(ot_hours: float) -> Optional[str]:
    if ot_hours > VERY_HIGH_OT_HOURS:
        return "Very high OT - please verify"
    if ot_hours > HIGH_OT_HOURS:
        return "High OT hours"
    return None


def _labour_row(
    employee: Employee,
    records: List[AttendanceRecord],
    days_in_month: Optional[int],
) -> LabourPayrollRow:
    record = match_attendance(employee, records)
    if record is None:
        logger.debug(f"No attendance for labour employee {employee.employee_id!r}; emitting zero row")
        return LabourPayrollRow(
            employee_id=employee.employee_id,
            name=employee.name,
            designation=employee.designation,
        )

    period_days = days_in_month or days_in_period(record)
    counts = tally(record, period_days)

    rate_per_day = employee.rate_per_day
    rate_per_hour = rate_per_day / settings.labour_hours_per_day
    salary_before_ot = rate_per_day * counts.paid

    effective_days = effective_deduction_days(counts.deduction, counts.absent)
    deduction_amount = rate_per_day * effective_days

    ot_hours = employee.ot_hours
    ot_pay = ot_hours * (rate_per_hour * settings.ot_multiplier)
    net_salary = salary_before_ot + ot_pay

    warning = ot_hours_warning(ot_hours)
    if warning:
        logger.warning(f"{warning}: employee {employee.employee_id!r} has {ot_hours:.2f} OT hours")

    return LabourPayrollRow(
        employee_id=employee.employee_id,
        name=employee.name,
        designation=employee.designation,
        paid_days=counts.paid,
        deduction_days=counts.deduction,
        absent_days=counts.absent,
        effective_deduction_days=effective_days,
        deduction_amount=money(deduction_amount),
        rate_per_hour=money(rate_per_hour),
        salary_before_ot=money(salary_before_ot),
        ot_hours=money(ot_hours),
        ot_pay=money(ot_pay),
        net_salary=money(net_salary),
    )


def _staff_row(employee: Employee, records: List[AttendanceRecord]) -> StaffPayrollRow:
    record = match_attendance(employee, records)
    if record is None:
        logger.debug(f"No attendance for staff employee {employee.employee_id!r}; emitting zero row")
        return StaffPayrollRow(
            employee_id=employee.employee_id,
            name=employee.name,
            designation=employee.designation,
        )

    counts = tally(record, settings.staff_days_in_month)

    rate_per_day = employee.rate_per_day
    gross_salary = rate_per_day * counts.paid
    attendance_deduction = rate_per_day * counts.deduction
    other_deductions = employee.deductions
    net_salary = gross_salary - other_deductions

    return StaffPayrollRow(
        employee_id=employee.employee_id,
        name=employee.name,
        designation=employee.designation,
        paid_days=counts.paid,
        deduction_days=counts.deduction,
        deduction_amount=money(attendance_deduction + other_deductions),
        rate_per_hour=money(rate_per_day / settings.labour_hours_per_day),
        net_salary=money(net_salary),
        gross_salary=money(gross_salary),
        attendance_deduction=money(attendance_deduction),
        other_deductions=money(other_deductions),
    )


def calculate_labour(
    employees: Iterable[Union[Employee, dict]],
    attendance: Iterable[Union[AttendanceRecord, dict]],
    days_in_month: Optional[int] = None,
) -> List[LabourPayrollRow]:
    """
    Calculate labour payroll rows.

    Args:
        employees: Labour employees for the period (models or raw dicts)
        attendance: Labour attendance records for the same period
        days_in_month: Calendar length of the period. When omitted the length
            is inferred per record (31 if day 31 is filled in, else 30).

    Returns:
        One LabourPayrollRow per employee, in input order
    """
    records = _coerce(attendance, AttendanceRecord)
    rows = [_labour_row(emp, records, days_in_month) for emp in _coerce(employees, Employee)]
    logger.info(f"Calculated labour payroll: {len(rows)} rows from {len(records)} attendance records")
    return rows


def calculate_staff(
    employees: Iterable[Union[Employee, dict]],
    attendance: Iterable[Union[AttendanceRecord, dict]],
) -> List[StaffPayrollRow]:
    """
    Calculate staff payroll rows (30-day month, no OT).

    Args:
        employees: Staff employees; ``deductions`` carries fixed monthly deductions
        attendance: Staff attendance records for the same period

    Returns:
        One StaffPayrollRow per employee, in input order
    """
    records = _coerce(attendance, AttendanceRecord)
    rows = [_staff_row(emp, records) for emp in _coerce(employees, Employee)]
    logger.info(f"Calculated staff payroll: {len(rows)} rows from {len(records)} attendance records")
    return rows


def calculate_payroll(
    payroll_type: PayrollType,
    employees: Iterable[Union[Employee, dict]],
    attendance: Iterable[Union[AttendanceRecord, dict]],
    days_in_month: Optional[int] = None,
) -> List[PayrollRow]:
    if PayrollType(payroll_type) is PayrollType.STAFF:
        return calculate_staff(employees, attendance)
    return calculate_labour(employees, attendance, days_in_month)
