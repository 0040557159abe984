"""
Payroll Router

Handles HTTP endpoints for payroll operations.
Calculation is delegated to the payroll calculator; storage to the payroll store.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opsdesk.core.exceptions import NoSelectionError, PersistenceError
from opsdesk.database import get_db
from opsdesk.schemas.payroll import CalculatePayrollRequest, PayrollType, SavePayrollRequest
from opsdesk.services.payment_partition import is_saved_cash
from opsdesk.services.payroll_calculator import calculate_payroll
from opsdesk.services.payroll_store import SqlPayrollRepository

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payroll",
    tags=["payroll"],
)


@router.post("/calculate")
def calculate(request: CalculatePayrollRequest):
    """
    Calculate payroll rows for one period. Nothing is persisted.
    """
    rows = calculate_payroll(request.type, request.employees, request.attendance, request.days_in_month)
    return {
        "success": True,
        "data": [r.model_dump(mode="json", by_alias=True) for r in rows],
    }


@router.get("")
def get_saved_payroll(
    type: PayrollType = Query(...),
    month: int = Query(..., ge=1, le=12),
    year: int = Query(...),
    db: Session = Depends(get_db),
):
    """
    Get the saved payroll for a period, if any.
    """
    try:
        rows = SqlPayrollRepository(db).load(type, year, month)
    except SQLAlchemyError as e:
        logger.error(f"Reading saved payroll failed: {e}")
        raise PersistenceError("Could not read saved payroll")

    return {
        "success": True,
        "data": [r.model_dump(mode="json", by_alias=True) for r in rows],
        "savedFromSheet": bool(rows),
        "cashCount": sum(1 for r in rows if is_saved_cash(r)),
    }


@router.post("")
def save_payroll(request: SavePayrollRequest, db: Session = Depends(get_db)):
    """
    Replace the saved payroll for a period with the submitted rows.
    """
    if not request.data:
        raise NoSelectionError()

    try:
        SqlPayrollRepository(db).save(request.type, request.year, request.month, request.data)
    except SQLAlchemyError as e:
        logger.error(f"Saving payroll failed: {e}")
        raise PersistenceError("Could not save payroll", details={"reason": str(e.__class__.__name__)})

    cash = sum(1 for r in request.data if is_saved_cash(r))
    return {
        "success": True,
        "message": f"Saved {len(request.data)} records ({cash} cash, {len(request.data) - cash} bank)",
    }
