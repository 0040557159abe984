"""
Saved payroll storage.

The session layer only needs "load the saved rows for a period" and
"replace the saved rows for a period"; anything that can do both (the
SQLAlchemy table below, a spreadsheet adapter, a fake in tests) will do.
"""

import logging
from typing import List, Protocol, Sequence

from sqlalchemy.orm import Session

from opsdesk.models.payroll import PayrollEntry
from opsdesk.schemas.payroll import PaymentMethod, PayrollType, SavedPayrollRow, canonical_id

logger = logging.getLogger(__name__)

_AMOUNT_COLUMNS = (
    "paid_days", "deduction_days", "absent_days", "effective_deduction_days",
    "deduction_amount", "rate_per_hour", "salary_before_ot", "ot_hours", "ot_pay",
    "gross_salary", "attendance_deduction", "other_deductions", "net_salary",
)


class PayrollRepository(Protocol):
    def load(self, payroll_type: PayrollType, year: int, month: int) -> List[SavedPayrollRow]: ...

    def save(self, payroll_type: PayrollType, year: int, month: int, rows: Sequence[SavedPayrollRow]) -> None: ...


def _entry_to_row(entry: PayrollEntry) -> SavedPayrollRow:
    values = {column: getattr(entry, column) for column in _AMOUNT_COLUMNS}
    return SavedPayrollRow(
        employee_id=entry.employee_id,
        name=entry.name,
        designation=entry.designation,
        is_cash=bool(entry.is_cash),
        payment_method=entry.payment_method,
        **values,
    )


class SqlPayrollRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, payroll_type: PayrollType, year: int, month: int) -> List[SavedPayrollRow]:
        entries = self.db.query(PayrollEntry).filter(
            PayrollEntry.payroll_type == PayrollType(payroll_type).value,
            PayrollEntry.year == year,
            PayrollEntry.month == month,
        ).order_by(PayrollEntry.id).all()
        return [_entry_to_row(e) for e in entries]

    def save(self, payroll_type: PayrollType, year: int, month: int, rows: Sequence[SavedPayrollRow]) -> None:
        """
        Replace the saved rows for a period in a single transaction.

        Args:
            payroll_type: Labour or staff
            year: Payroll year
            month: Payroll month (1-12)
            rows: Rows to persist; each carries its cash/bank marker
        """
        type_value = PayrollType(payroll_type).value
        try:
            self.db.query(PayrollEntry).filter(
                PayrollEntry.payroll_type == type_value,
                PayrollEntry.year == year,
                PayrollEntry.month == month,
            ).delete(synchronize_session=False)

            for row in rows:
                self.db.add(PayrollEntry(
                    payroll_type=type_value,
                    year=year,
                    month=month,
                    employee_id=canonical_id(row.employee_id),
                    name=row.name,
                    designation=row.designation,
                    is_cash=row.is_cash,
                    payment_method=PaymentMethod(row.payment_method).value,
                    **{column: getattr(row, column) for column in _AMOUNT_COLUMNS},
                ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Saved {len(rows)} {type_value} payroll rows for {month}/{year}")
