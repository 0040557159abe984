import copy
import json
import pytest
from opsdesk.schemas.payroll import PaymentMethod, PayrollType, SavedPayrollRow
from opsdesk.services.payroll_session import SOURCE_DRAFT, SOURCE_FRESH, SOURCE_SAVED

from conftest import SlowDraftStore, month_days

EMPLOYEES = [
    {"employeeId": 1, "name": "Ravi", "designation": "Mason", "ratePerDay": 100, "otHours": 10},
    {"employeeId": "2", "name": "Anil", "designation": "Helper", "ratePerDay": 80},
    {"employeeId": 3, "name": "Sunil", "designation": "Helper", "ratePerDay": 90},
]
ATTENDANCE = [
    {"employeeId": "1", "name": "Ravi", "days": month_days(*(["Present"] * 22 + ["Off"] * 3 + ["Absent"] * 2))},
    {"employeeId": 2, "name": "Anil", "days": month_days(*(["Present"] * 26))},
    {"employeeId": 3, "name": "Sunil", "days": month_days(*(["Present"] * 20))},
]
KEY = "payroll_draft_labour_2024_5"


def _state(session):
    return (copy.deepcopy(session.overrides), set(session.selected_ids), session.cash.ids())


@pytest.fixture
def session(make_session):
    s = make_session()
    s.calculate(EMPLOYEES, ATTENDANCE)
    return s


def test_fresh_period_selects_everyone(session):
    assert session.restored_from == SOURCE_FRESH
    assert session.selected_ids == {"1", "2", "3"}
    assert session.overrides == {}
    assert len(session.cash) == 0
    assert session.display_rows() == session.rows

def test_override_applies_to_display_only(session):
    session.set_override(1, "netSalary", 3000)
    display = {r.employee_id: r for r in session.display_rows()}
    assert display[1].net_salary == 3000
    assert session.rows[0].net_salary == 2656.25
    assert session.is_field_modified("1", "net_salary")
    assert not session.is_field_modified("1", "ot_pay")

def test_override_equal_to_computed_value_is_still_recorded(session, scheduler, draft_store):
    session.set_override(1, "paid_days", 25)
    assert session.overrides == {"1": {"paid_days": 25}}
    scheduler.run_pending()
    assert json.loads(draft_store.get(KEY))["overrides"] == {"1": {"paid_days": 25}}

def test_clearing_all_edits_deletes_the_draft(session, scheduler, draft_store):
    session.set_override(1, "ot_pay", 0)
    scheduler.run_pending()
    assert KEY in draft_store

    session.clear_override(1, "ot_pay")
    scheduler.run_pending()
    assert KEY not in draft_store
    assert session.overrides == {}

def test_draft_restores_on_recalculate(session, make_session, scheduler):
    session.set_override(2, "net_salary", 1234.5)
    session.toggle_cash(3)
    session.toggle_selection(1)
    scheduler.run_pending()

    reopened = make_session()
    display = reopened.calculate(EMPLOYEES, ATTENDANCE)

    assert reopened.restored_from == SOURCE_DRAFT
    assert reopened.overrides == {"2": {"net_salary": 1234.5}}
    assert reopened.selected_ids == {"2", "3"}
    assert reopened.is_cash(3) and reopened.is_cash("3")
    assert [r.net_salary for r in display if r.employee_id == "2"] == [1234.5]
    assert reopened.has_draft

def test_draft_selection_falls_back_to_everyone(make_session, draft_store):
    draft_store.set(KEY, json.dumps({
        "overrides": {"1": {"net_salary": 1}},
        "selectedIds": ["99"],
        "cashEmployeeIds": ["99", 3],
        "savedAt": "2024-05-31T10:00:00+00:00",
        "schemaVersion": 1,
    }))
    session = make_session()
    session.calculate(EMPLOYEES, ATTENDANCE)
    assert session.selected_ids == {"1", "2", "3"}
    assert session.cash.ids() == ["3"]

def test_stale_schema_draft_is_ignored(make_session, draft_store):
    draft_store.set(KEY, json.dumps({
        "overrides": {"1": {"net_salary": 1}},
        "selectedIds": [],
        "cashEmployeeIds": [],
        "savedAt": "2024-05-31T10:00:00+00:00",
        "schemaVersion": 0,
    }))
    session = make_session()
    session.calculate(EMPLOYEES, ATTENDANCE)
    assert session.restored_from == SOURCE_FRESH
    assert session.overrides == {}

def test_saved_payroll_restores_cash_flags_only(make_session, repository):
    repository.saved[(PayrollType.LABOUR, 2024, 5)] = [
        SavedPayrollRow(employee_id="1", net_salary=9999, is_cash=True),
        SavedPayrollRow(employee_id="2", net_salary=1, payment_method="Cash"),
        SavedPayrollRow(employee_id="3", net_salary=1),
        SavedPayrollRow(employee_id="77", is_cash=True),
    ]
    session = make_session()
    session.calculate(EMPLOYEES, ATTENDANCE)

    assert session.restored_from == SOURCE_SAVED
    assert session.cash.ids() == ["1", "2"]
    assert session.overrides == {}
    assert session.selected_ids == {"1", "2", "3"}
    assert session.display_rows()[0].net_salary == 2656.25

def test_unreadable_saved_payroll_falls_back_to_fresh(make_session, repository):
    repository.fail_loads = True
    session = make_session()
    session.calculate(EMPLOYEES, ATTENDANCE)
    assert session.restored_from == SOURCE_FRESH

def test_open_saved_uses_saved_rows_as_baseline(make_session, repository):
    repository.saved[(PayrollType.LABOUR, 2024, 5)] = [
        SavedPayrollRow(employee_id="1", net_salary=500, payment_method=PaymentMethod.CASH),
        SavedPayrollRow(employee_id="2", net_salary=600),
    ]
    session = make_session()
    assert session.open_saved()
    assert [r.net_salary for r in session.display_rows()] == [500, 600]
    assert session.cash.ids() == ["1"]
    assert session.selected_ids == {"1", "2"}

    assert not make_session(month=6).open_saved()

def test_toggle_select_all(session):
    session.toggle_select_all()
    assert session.selected_ids == set()
    session.toggle_select_all()
    assert session.selected_ids == {"1", "2", "3"}

def test_save_writes_selected_rows_with_payment_method(session, repository, scheduler, draft_store):
    session.set_override(1, "net_salary", 3000)
    session.set_cash(2, True)
    session.toggle_selection(3)
    scheduler.run_pending()

    result = session.save()

    assert result.success
    assert result.data.saved == 2
    assert result.data.cash_count == 1
    saved = repository.saved[(PayrollType.LABOUR, 2024, 5)]
    assert [(r.employee_id, r.net_salary, r.is_cash, r.payment_method) for r in saved] == [
        (1, 3000, False, PaymentMethod.BANK),
        ("2", 2080, True, PaymentMethod.CASH),
    ]
    assert KEY not in draft_store
    assert session.overrides == {}
    assert len(session.cash) == 0
    assert session.display_rows()[0].net_salary == 3000

def test_save_with_explicit_selection(session, repository):
    result = session.save(selected_ids=[3])
    assert result.success
    assert [r.employee_id for r in repository.saved[(PayrollType.LABOUR, 2024, 5)]] == [3]

def test_save_with_no_selection_is_refused(session, repository):
    session.set_selected([])
    result = session.save()
    assert not result.success
    assert result.error.code == "NO_SELECTION"
    assert result.error.message == "No employees selected to save"
    assert repository.save_calls == 0

def test_failed_save_leaves_state_untouched(session, repository, scheduler, draft_store):
    session.set_override(1, "net_salary", 3000)
    session.toggle_cash(2)
    session.toggle_selection(3)
    scheduler.run_pending()
    before = _state(session)
    draft_before = draft_store.get(KEY)

    repository.fail_saves = True
    result = session.save()

    assert not result.success
    assert result.error.code == "PERSISTENCE_FAILED"
    assert _state(session) == before
    assert draft_store.get(KEY) == draft_before

    repository.fail_saves = False
    assert session.save().success

def test_failed_save_keeps_pending_draft_write(session, repository, scheduler, draft_store):
    session.set_override(1, "net_salary", 3000)
    repository.fail_saves = True
    session.save()
    scheduler.run_pending()
    assert json.loads(draft_store.get(KEY))["overrides"] == {"1": {"net_salary": 3000}}

def test_invalid_override_value_is_reported_not_raised(session, repository):
    session.set_override(1, "name", ["not", "a", "name"])
    result = session.save()
    assert not result.success
    assert result.error.code == "INVALID_ROW"
    assert repository.save_calls == 0

def test_clear_draft_resets_everything(session, scheduler, draft_store):
    session.set_override(1, "net_salary", 1)
    session.toggle_cash(1)
    session.set_selected([2])
    scheduler.run_pending()

    result = session.clear_draft()

    assert result.success
    assert KEY not in draft_store
    assert session.overrides == {}
    assert len(session.cash) == 0
    assert session.selected_ids == {"1", "2", "3"}
    assert not session.has_draft

def test_totals_cover_selected_rows_split_by_method(session):
    session.set_cash("2", True)
    session.toggle_selection(3)
    totals = session.totals()
    assert totals.count == 2
    assert totals.cash_count == 1
    assert totals.bank_count == 1
    assert totals.cash_salary == 2080
    assert totals.bank_salary == 2656.25
    assert totals.net_salary == 2656.25 + 2080

    counts = session.payment_counts()
    assert (counts.total, counts.bank, counts.cash) == (3, 2, 1)
    assert [r.employee_id for r in session.filter_rows("cash")] == ["2"]
    assert [r.employee_id for r in session.filter_rows("bank")] == [1, 3]

def test_staff_session_rejects_labour_only_fields(make_session):
    session = make_session(payroll_type="staff")
    session.calculate([{"employeeId": "S1", "ratePerDay": 100}], [])
    from opsdesk.core.exceptions import UnknownFieldError
    with pytest.raises(UnknownFieldError):
        session.set_override("S1", "otPay", 1)

def test_successful_save_removes_draft_written_in_the_background(repository):
    from opsdesk.services.drafts import ThreadingScheduler
    from opsdesk.services.payroll_session import PayrollSession

    store = SlowDraftStore()
    session = PayrollSession(
        PayrollType.LABOUR, 2024, 5,
        draft_store=store, repository=repository,
        scheduler=ThreadingScheduler(), draft_delay=0.01,
    )
    session.calculate(EMPLOYEES, ATTENDANCE)
    session.set_override(1, "net_salary", 3000)
    assert store.write_started.wait(timeout=5)

    assert session.save().success
    assert store.get(KEY) is None

    reopened = PayrollSession(
        PayrollType.LABOUR, 2024, 5,
        draft_store=store, repository=repository,
        scheduler=ThreadingScheduler(), draft_delay=0.01,
    )
    reopened.calculate(EMPLOYEES, ATTENDANCE)
    assert reopened.overrides == {}
