"""
Cash / bank split of payroll rows.

Cash is a per-employee flag independent of selection; everyone not flagged
is paid by bank transfer. Ids are normalised before every lookup because
employee and attendance sheets disagree on whether ids are numbers.
"""

from typing import Any, Iterable, List, Optional, Sequence, TypeVar

from opsdesk.schemas.payroll import (
    PaymentCounts,
    PaymentMethod,
    PaymentTotals,
    PayrollRow,
    SavedPayrollRow,
    canonical_id,
    money,
    parse_amount,
)

R = TypeVar("R", bound=PayrollRow)

FILTER_ALL = "all"
FILTER_BANK = "bank"
FILTER_CASH = "cash"


class CashFlags:
    def __init__(self, ids: Optional[Iterable[Any]] = None):
        self._ids = {canonical_id(i) for i in (ids or [])}

    def add(self, employee_id: Any) -> None:
        self._ids.add(canonical_id(employee_id))

    def discard(self, employee_id: Any) -> None:
        self._ids.discard(canonical_id(employee_id))

    def toggle(self, employee_id: Any) -> bool:
        """Flip the flag and return the new state."""
        key = canonical_id(employee_id)
        if key in self._ids:
            self._ids.remove(key)
            return False
        self._ids.add(key)
        return True

    def is_cash(self, employee_id: Any) -> bool:
        return canonical_id(employee_id) in self._ids

    def ids(self) -> List[str]:
        return sorted(self._ids)

    def copy(self) -> "CashFlags":
        return CashFlags(self._ids)

    def __contains__(self, employee_id: Any) -> bool:
        return self.is_cash(employee_id)

    def __len__(self) -> int:
        return len(self._ids)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CashFlags):
            return NotImplemented
        return self._ids == other._ids

    def __repr__(self) -> str:
        return f"CashFlags({self.ids()!r})"


def payment_method_for(is_cash: bool) -> PaymentMethod:
    return PaymentMethod.CASH if is_cash else PaymentMethod.BANK


def is_saved_cash(row: SavedPayrollRow) -> bool:
    return bool(row.is_cash) or row.payment_method == PaymentMethod.CASH


def filter_rows(rows: Sequence[R], flags: CashFlags, method: str = FILTER_ALL) -> List[R]:
    if method == FILTER_CASH:
        return [r for r in rows if flags.is_cash(r.employee_id)]
    if method == FILTER_BANK:
        return [r for r in rows if not flags.is_cash(r.employee_id)]
    return list(rows)


def payment_counts(rows: Sequence[PayrollRow], flags: CashFlags) -> PaymentCounts:
    cash = sum(1 for r in rows if flags.is_cash(r.employee_id))
    return PaymentCounts(total=len(rows), bank=len(rows) - cash, cash=cash)


def _amount(row: PayrollRow, field: str) -> float:
    # Overrides are not re-validated, so the field may hold any user value
    return parse_amount(getattr(row, field, 0))


def payment_totals(rows: Sequence[PayrollRow], flags: CashFlags) -> PaymentTotals:
    """Sum the rows, splitting net salary into bank and cash. Empty input gives zeros."""
    totals = {
        "paid_days": 0.0, "deduction_amount": 0.0, "salary_before_ot": 0.0,
        "ot_pay": 0.0, "net_salary": 0.0, "bank_salary": 0.0, "cash_salary": 0.0,
    }
    cash_count = 0
    for row in rows:
        for field in ("paid_days", "deduction_amount", "salary_before_ot", "ot_pay", "net_salary"):
            totals[field] += _amount(row, field)
        net = _amount(row, "net_salary")
        if flags.is_cash(row.employee_id):
            cash_count += 1
            totals["cash_salary"] += net
        else:
            totals["bank_salary"] += net

    return PaymentTotals(
        count=len(rows),
        bank_count=len(rows) - cash_count,
        cash_count=cash_count,
        paid_days=totals["paid_days"],
        **{k: money(v) for k, v in totals.items() if k != "paid_days"},
    )
