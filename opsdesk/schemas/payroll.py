import enum
import math
import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EmployeeId = Union[int, str]

_NUMBER_PREFIX = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_CENT = Decimal("0.01")


def canonical_id(value: Any) -> str:
    """Single string form for employee ids coming from differently-typed sources.

    ``12``, ``12.0``, ``"12"`` and ``" 12 "`` all normalise to ``"12"``.
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_amount(value: Any) -> float:
    """Lenient numeric parse: blanks, junk, NaN and infinities become 0.0.

    A leading numeric prefix is honoured, so ``"12.5 AED"`` parses as 12.5.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        match = _NUMBER_PREFIX.match(str(value))
        if not match:
            return 0.0
        number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def money(value: float) -> float:
    # Half-up on the exact binary value: 0.125 -> 0.13
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return float(Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


class PayrollType(str, enum.Enum):
    LABOUR = "labour"
    STAFF = "staff"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    BANK = "Bank Transfer"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _optional_type(value: Any) -> Optional[PayrollType]:
    if value is None or value == "":
        return None
    try:
        return PayrollType(value)
    except ValueError:
        return None


class Employee(CamelModel):
    employee_id: Optional[EmployeeId] = None
    name: Optional[str] = None
    designation: Optional[str] = None
    type: Optional[PayrollType] = None
    rate_per_day: float = 0.0
    ot_hours: float = 0.0
    deductions: float = 0.0

    @field_validator("rate_per_day", "ot_hours", "deductions", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        return parse_amount(value)

    @field_validator("name", "designation", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Optional[PayrollType]:
        return _optional_type(value)


class AttendanceRecord(CamelModel):
    employee_id: Optional[EmployeeId] = None
    name: Optional[str] = None
    type: Optional[PayrollType] = None
    days: Dict[int, str] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Optional[PayrollType]:
        return _optional_type(value)

    @field_validator("days", mode="before")
    @classmethod
    def _coerce_days(cls, value: Any) -> Dict[int, str]:
        if not value:
            return {}
        items = value.items() if isinstance(value, dict) else enumerate(value, start=1)
        days: Dict[int, str] = {}
        for key, status in items:
            try:
                day = int(str(key).strip())
            except ValueError:
                continue
            if status is None:
                continue
            days[day] = str(status)
        return days


class PayrollRow(CamelModel):
    model_config = ConfigDict(frozen=True)

    employee_id: Optional[EmployeeId] = None
    name: Optional[str] = None
    designation: Optional[str] = None
    paid_days: int = 0
    deduction_days: int = 0
    deduction_amount: float = 0.0
    rate_per_hour: float = 0.0
    net_salary: float = 0.0


class LabourPayrollRow(PayrollRow):
    absent_days: int = 0
    effective_deduction_days: int = 0
    salary_before_ot: float = Field(default=0.0, alias="salaryBeforeOT")
    ot_hours: float = 0.0
    ot_pay: float = 0.0


class StaffPayrollRow(PayrollRow):
    gross_salary: float = 0.0
    attendance_deduction: float = 0.0
    other_deductions: float = 0.0


class SavedPayrollRow(PayrollRow):
    """A row as written to, and read back from, the payroll store.

    Values may have been hand-edited before saving, so counts are floats here.
    """
    paid_days: float = 0
    deduction_days: float = 0
    absent_days: float = 0
    effective_deduction_days: float = 0
    salary_before_ot: float = Field(default=0.0, alias="salaryBeforeOT")
    ot_hours: float = 0.0
    ot_pay: float = 0.0
    gross_salary: float = 0.0
    attendance_deduction: float = 0.0
    other_deductions: float = 0.0
    is_cash: bool = False
    payment_method: PaymentMethod = PaymentMethod.BANK

    @field_validator(
        "paid_days", "deduction_days", "absent_days", "effective_deduction_days",
        "deduction_amount", "rate_per_hour", "net_salary", "salary_before_ot",
        "ot_hours", "ot_pay", "gross_salary", "attendance_deduction", "other_deductions",
        mode="before",
    )
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        return parse_amount(value)

    @field_validator("payment_method", mode="before")
    @classmethod
    def _coerce_method(cls, value: Any) -> PaymentMethod:
        if isinstance(value, str) and value.strip().lower() == "cash":
            return PaymentMethod.CASH
        return PaymentMethod.BANK


ROW_MODELS = {
    PayrollType.LABOUR: LabourPayrollRow,
    PayrollType.STAFF: StaffPayrollRow,
}


class Draft(CamelModel):
    overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    selected_ids: List[str] = Field(default_factory=list)
    cash_employee_ids: List[str] = Field(default_factory=list)
    saved_at: datetime
    schema_version: int

    @field_validator("selected_ids", "cash_employee_ids", mode="before")
    @classmethod
    def _canonical_ids(cls, value: Any) -> List[str]:
        return [canonical_id(v) for v in (value or [])]

    @field_validator("overrides", mode="before")
    @classmethod
    def _canonical_keys(cls, value: Any) -> Dict[str, Dict[str, Any]]:
        return {canonical_id(k): dict(v or {}) for k, v in (value or {}).items()}

    @property
    def has_changes(self) -> bool:
        return bool(self.overrides) or bool(self.cash_employee_ids)


class PaymentCounts(CamelModel):
    total: int = 0
    bank: int = 0
    cash: int = 0


class PaymentTotals(CamelModel):
    count: int = 0
    paid_days: float = 0.0
    deduction_amount: float = 0.0
    salary_before_ot: float = Field(default=0.0, alias="salaryBeforeOT")
    ot_pay: float = 0.0
    net_salary: float = 0.0
    bank_salary: float = 0.0
    cash_salary: float = 0.0
    bank_count: int = 0
    cash_count: int = 0


class SaveSummary(CamelModel):
    saved: int
    cash_count: int
    bank_count: int
    message: str


class CalculatePayrollRequest(CamelModel):
    type: PayrollType
    month: int = Field(ge=1, le=12)
    year: int
    employees: List[Employee] = Field(default_factory=list)
    attendance: List[AttendanceRecord] = Field(default_factory=list)
    days_in_month: Optional[int] = Field(default=None, ge=28, le=31)


class SavePayrollRequest(CamelModel):
    type: PayrollType
    month: int = Field(ge=1, le=12)
    year: int
    data: List[SavedPayrollRow] = Field(default_factory=list)
