from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from opsdesk.database import Base


class PayrollEntry(Base):
    """One saved payroll row for an employee in a (type, year, month) period."""
    __tablename__ = "payroll_entries"
    __table_args__ = (
        UniqueConstraint("payroll_type", "year", "month", "employee_id", name="uq_payroll_period_employee"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payroll_type = Column(String, index=True, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    employee_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=True)
    designation = Column(String, nullable=True)

    paid_days = Column(Float, default=0.0)
    deduction_days = Column(Float, default=0.0)
    absent_days = Column(Float, default=0.0)
    effective_deduction_days = Column(Float, default=0.0)
    deduction_amount = Column(Float, default=0.0)
    rate_per_hour = Column(Float, default=0.0)
    salary_before_ot = Column(Float, default=0.0)
    ot_hours = Column(Float, default=0.0)
    ot_pay = Column(Float, default=0.0)
    gross_salary = Column(Float, default=0.0)
    attendance_deduction = Column(Float, default=0.0)
    other_deductions = Column(Float, default=0.0)
    net_salary = Column(Float, default=0.0)

    is_cash = Column(Boolean, default=False)
    payment_method = Column(String, default="Bank Transfer")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PayrollDraft(Base):
    """Unsaved overrides/selection/cash flags, stored as a JSON document per draft key."""
    __tablename__ = "payroll_drafts"

    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
