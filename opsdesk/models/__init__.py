# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import payroll

# Explicit class exports for cleaner imports
from .payroll import PayrollDraft, PayrollEntry

__all__ = [
    "PayrollDraft",
    "PayrollEntry",
]
