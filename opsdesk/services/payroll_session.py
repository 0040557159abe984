"""
Payroll Session

Reconciles three layers of payroll data for one (type, year, month) period:

1. rows freshly computed from employees + attendance (or loaded from a save)
2. in-memory user overrides, mirrored to a debounced local draft
3. the saved payroll for the period in the payroll store

Architecture:
- Calculator -> Session (this module) -> DraftStore / PayrollRepository
- Display rows are always recomputed as ``merge(rows, overrides)``; the
  computed rows themselves are never edited
- Storage failures come back as ``ApiResponse.fail``; the in-memory state is
  left exactly as it was so the user can retry
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from opsdesk.core.exceptions import NoSelectionError, PersistenceError
from opsdesk.core.schemas import ApiResponse
from opsdesk.schemas.payroll import (
    ROW_MODELS,
    AttendanceRecord,
    Employee,
    PaymentCounts,
    PaymentTotals,
    PayrollRow,
    PayrollType,
    SavedPayrollRow,
    SaveSummary,
    canonical_id,
)
from opsdesk.services import payment_partition
from opsdesk.services.drafts import DraftStore, PayrollDraftManager, Scheduler, ThreadingScheduler, draft_key
from opsdesk.services.overrides import OverrideSet, copy_overrides, merge_rows, resolve_field
from opsdesk.services.payment_partition import CashFlags, is_saved_cash, payment_method_for
from opsdesk.services.payroll_calculator import calculate_payroll
from opsdesk.services.payroll_store import PayrollRepository

logger = logging.getLogger(__name__)

SOURCE_DRAFT = "draft"
SOURCE_SAVED = "saved"
SOURCE_FRESH = "fresh"


class PayrollSession:
    def __init__(
        self,
        payroll_type: Union[PayrollType, str],
        year: int,
        month: int,
        draft_store: DraftStore,
        repository: PayrollRepository,
        scheduler: Optional[Scheduler] = None,
        draft_delay: Optional[float] = None,
        draft_version: Optional[int] = None,
    ):
        self.payroll_type = PayrollType(payroll_type)
        self.year = year
        self.month = month
        self.repository = repository
        self.drafts = PayrollDraftManager(
            draft_store,
            draft_key(self.payroll_type, year, month),
            scheduler or ThreadingScheduler(),
            delay=draft_delay,
            version=draft_version,
        )

        self.rows: List[PayrollRow] = []
        self.overrides: OverrideSet = {}
        self.selected_ids: Set[str] = set()
        self.cash = CashFlags()
        self.restored_from: Optional[str] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    @property
    def row_model(self):
        return ROW_MODELS[self.payroll_type]

    @property
    def has_draft(self) -> bool:
        return self.drafts.has_draft

    @property
    def draft_timestamp(self) -> Optional[datetime]:
        return self.drafts.draft_timestamp

    def employee_ids(self) -> List[str]:
        return [canonical_id(r.employee_id) for r in self.rows]

    def calculate(
        self,
        employees: Iterable[Union[Employee, dict]],
        attendance: Iterable[Union[AttendanceRecord, dict]],
        days_in_month: Optional[int] = None,
    ) -> List[PayrollRow]:
        """
        Compute rows for the period and restore edits in precedence order.

        Precedence (first match wins):
        1. A local draft holding overrides or cash flags
        2. Cash flags recorded on the saved payroll for the period
        3. Nothing: no overrides, no cash flags, everyone selected

        Returns:
            Display rows (computed rows with overrides applied)
        """
        self.rows = calculate_payroll(self.payroll_type, employees, attendance, days_in_month)
        # Edits made before a recalculation must not be lost to the debounce window
        self.drafts.flush()
        self._restore_state()
        return self.display_rows()

    def _restore_state(self) -> None:
        valid_ids = self.employee_ids()
        valid = set(valid_ids)

        draft = self.drafts.load()
        if draft is not None and draft.has_changes:
            self.overrides = copy_overrides(draft.overrides)
            restored = {i for i in draft.selected_ids if i in valid}
            self.selected_ids = restored or set(valid_ids)
            self.cash = CashFlags(i for i in draft.cash_employee_ids if i in valid)
            self.restored_from = SOURCE_DRAFT
            logger.info(
                f"Restored payroll draft {self.drafts.key}: {len(self.overrides)} overridden rows, "
                f"{len(self.cash)} cash employees"
            )
            return

        saved = self._load_saved()
        self.overrides = {}
        self.selected_ids = set(valid_ids)
        if saved:
            self.cash = CashFlags(
                canonical_id(r.employee_id) for r in saved
                if is_saved_cash(r) and canonical_id(r.employee_id) in valid
            )
            self.restored_from = SOURCE_SAVED
        else:
            self.cash = CashFlags()
            self.restored_from = SOURCE_FRESH

    def _load_saved(self) -> List[SavedPayrollRow]:
        try:
            return self.repository.load(self.payroll_type, self.year, self.month)
        except Exception as e:
            logger.warning(f"Could not read saved payroll for {self.drafts.key}: {e}")
            return []

    def open_saved(self) -> bool:
        """
        Use the saved payroll for the period as the baseline, without recalculating.

        Returns:
            True if saved rows were found and loaded; False leaves the session untouched
        """
        try:
            saved = self.repository.load(self.payroll_type, self.year, self.month)
        except Exception as e:
            logger.warning(f"Could not read saved payroll for {self.drafts.key}: {e}")
            return False
        if not saved:
            return False

        self.rows = list(saved)
        self.overrides = {}
        self.selected_ids = set(self.employee_ids())
        self.cash = CashFlags(canonical_id(r.employee_id) for r in saved if is_saved_cash(r))
        self.restored_from = SOURCE_SAVED
        logger.info(f"Loaded {len(saved)} saved payroll rows for {self.drafts.key}")
        return True

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------
    def display_rows(self) -> List[PayrollRow]:
        return merge_rows(self.rows, self.overrides)

    def selected_rows(self) -> List[PayrollRow]:
        return [r for r in self.display_rows() if canonical_id(r.employee_id) in self.selected_ids]

    def filter_rows(self, method: str = payment_partition.FILTER_ALL) -> List[PayrollRow]:
        return payment_partition.filter_rows(self.display_rows(), self.cash, method)

    def payment_counts(self) -> PaymentCounts:
        return payment_partition.payment_counts(self.display_rows(), self.cash)

    def totals(self) -> PaymentTotals:
        return payment_partition.payment_totals(self.selected_rows(), self.cash)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def set_override(self, employee_id: Any, field: str, value: Any) -> None:
        """Record an override. Equal-to-computed values are still recorded."""
        name = resolve_field(self.row_model, field)
        self.overrides.setdefault(canonical_id(employee_id), {})[name] = value
        self._schedule_draft()

    def clear_override(self, employee_id: Any, field: Optional[str] = None) -> None:
        key = canonical_id(employee_id)
        entry = self.overrides.get(key)
        if entry is None:
            return
        if field is None:
            del self.overrides[key]
        else:
            entry.pop(resolve_field(self.row_model, field), None)
            if not entry:
                del self.overrides[key]
        self._schedule_draft()

    def is_field_modified(self, employee_id: Any, field: str) -> bool:
        name = resolve_field(self.row_model, field)
        return name in self.overrides.get(canonical_id(employee_id), {})

    def is_selected(self, employee_id: Any) -> bool:
        return canonical_id(employee_id) in self.selected_ids

    def toggle_selection(self, employee_id: Any) -> None:
        key = canonical_id(employee_id)
        if key in self.selected_ids:
            self.selected_ids.discard(key)
        else:
            self.selected_ids.add(key)
        self._schedule_draft()

    def toggle_select_all(self) -> None:
        all_ids = set(self.employee_ids())
        if all_ids and all_ids <= self.selected_ids:
            self.selected_ids = set()
        else:
            self.selected_ids = all_ids
        self._schedule_draft()

    def set_selected(self, employee_ids: Iterable[Any]) -> None:
        self.selected_ids = {canonical_id(i) for i in employee_ids}
        self._schedule_draft()

    def is_cash(self, employee_id: Any) -> bool:
        return self.cash.is_cash(employee_id)

    def toggle_cash(self, employee_id: Any) -> bool:
        flag = self.cash.toggle(employee_id)
        self._schedule_draft()
        return flag

    def set_cash(self, employee_id: Any, is_cash: bool) -> None:
        if is_cash:
            self.cash.add(employee_id)
        else:
            self.cash.discard(employee_id)
        self._schedule_draft()

    def _schedule_draft(self) -> None:
        self.drafts.schedule_save(self.overrides, self.selected_ids, self.cash.ids())

    def clear_draft(self) -> ApiResponse[None]:
        """Discard the local draft and reset edits; everyone becomes selected again."""
        try:
            self.drafts.clear()
        except Exception as e:
            logger.error(f"Failed to discard payroll draft {self.drafts.key}: {e}", exc_info=True)
            error = PersistenceError("Could not discard the draft", details={"reason": str(e)})
            return ApiResponse.fail(error.message, code=error.error_code, details=error.details)

        self.overrides = {}
        self.cash = CashFlags()
        self.selected_ids = set(self.employee_ids())
        return ApiResponse.ok(None)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------
    def _saved_row(self, row: PayrollRow, cash: CashFlags) -> SavedPayrollRow:
        is_cash = cash.is_cash(row.employee_id)
        data = row.model_dump(warnings=False)
        data.update(is_cash=is_cash, payment_method=payment_method_for(is_cash))
        return SavedPayrollRow.model_validate(data)

    def save(self, selected_ids: Optional[Iterable[Any]] = None) -> ApiResponse[SaveSummary]:
        """
        Persist the selected display rows, tagged Cash or Bank Transfer.

        Args:
            selected_ids: Ids to save; defaults to the session's selection

        Returns:
            ok(SaveSummary) on success. fail(NO_SELECTION) when nothing is
            selected (no write is attempted) and fail(PERSISTENCE_FAILED) when
            the store rejects the write; on failure nothing in the session changes.
        """
        if selected_ids is None:
            selection = set(self.selected_ids)
        else:
            selection = {canonical_id(i) for i in selected_ids}
        cash = self.cash.copy()
        display = self.display_rows()

        try:
            payload = [
                self._saved_row(row, cash) for row in display
                if canonical_id(row.employee_id) in selection
            ]
        except ValidationError as e:
            logger.warning(f"Rejected payroll save for {self.drafts.key}: {e.error_count()} invalid values")
            return ApiResponse.fail(
                "Some edited values are not valid",
                code="INVALID_ROW",
                details={"errors": e.errors(include_url=False)},
            )

        if not payload:
            error = NoSelectionError()
            return ApiResponse.fail(error.message, code=error.error_code)

        try:
            self.repository.save(self.payroll_type, self.year, self.month, payload)
        except Exception as e:
            logger.error(f"Failed to save payroll for {self.drafts.key}: {e}", exc_info=True)
            error = PersistenceError(f"Failed to save payroll: {e}")
            return ApiResponse.fail(error.message, code=error.error_code)

        cash_count = sum(1 for r in payload if r.is_cash)
        self.rows = display
        self.overrides = {}
        self.cash = CashFlags()
        try:
            self.drafts.clear()
        except Exception as e:
            # The save itself succeeded; a leftover draft is only a stale convenience copy
            logger.warning(f"Saved payroll but could not remove draft {self.drafts.key}: {e}")

        summary = SaveSummary(
            saved=len(payload),
            cash_count=cash_count,
            bank_count=len(payload) - cash_count,
            message=f"Saved {len(payload)} {self.payroll_type.value} payroll records for {self.month}/{self.year}",
        )
        logger.info(summary.message)
        return ApiResponse.ok(summary)
