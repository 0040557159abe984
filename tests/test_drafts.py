import json
import time
from opsdesk.schemas.payroll import PayrollType
from opsdesk.services.drafts import InMemoryDraftStore, PayrollDraftManager, SqlDraftStore, ThreadingScheduler, draft_key

from conftest import SlowDraftStore, TestingSessionLocal

KEY = "payroll_draft_labour_2024_5"


def _manager(store, scheduler, version=1):
    return PayrollDraftManager(store, KEY, scheduler, delay=0.5, version=version)

def test_draft_key_is_namespaced_by_period():
    assert draft_key(PayrollType.LABOUR, 2024, 5) == KEY
    assert draft_key("staff", 2024, 12, prefix="drafts") == "drafts_staff_2024_12"

def test_save_is_debounced_and_last_write_wins(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    manager.schedule_save({"1": {"net_salary": 10}}, ["1"], [])
    manager.schedule_save({"1": {"net_salary": 20}}, ["1"], ["1"])

    assert draft_store.get(KEY) is None
    assert len(scheduler.pending) == 1
    assert scheduler.pending[0]["delay"] == 0.5

    scheduler.run_pending()

    stored = json.loads(draft_store.get(KEY))
    assert stored["overrides"] == {"1": {"net_salary": 20}}
    assert stored["cashEmployeeIds"] == ["1"]
    assert stored["selectedIds"] == ["1"]
    assert stored["schemaVersion"] == 1
    assert "savedAt" in stored
    assert manager.has_draft

def test_snapshot_is_taken_when_scheduled(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    overrides = {"1": {"net_salary": 10}}
    manager.schedule_save(overrides, [], [])
    overrides["1"]["net_salary"] = 99
    scheduler.run_pending()
    assert json.loads(draft_store.get(KEY))["overrides"] == {"1": {"net_salary": 10}}

def test_empty_state_deletes_instead_of_writing(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    manager.schedule_save({"1": {"net_salary": 10}}, ["1"], [])
    scheduler.run_pending()
    assert KEY in draft_store

    manager.schedule_save({}, ["1"], [])
    scheduler.run_pending()
    assert KEY not in draft_store
    assert not manager.has_draft
    assert manager.draft_timestamp is None

def test_load_round_trip(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    manager.schedule_save({"1": {"paid_days": 0}}, [1, "2"], [2])
    manager.flush()

    draft = _manager(draft_store, scheduler).load()
    assert draft.overrides == {"1": {"paid_days": 0}}
    assert draft.selected_ids == ["1", "2"]
    assert draft.cash_employee_ids == ["2"]

def test_flush_runs_pending_write_once(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    manager.schedule_save({"1": {"net_salary": 1}}, [], [])
    manager.flush()
    assert KEY in draft_store
    draft_store.delete(KEY)
    scheduler.run_pending()
    assert KEY not in draft_store

def test_version_mismatch_is_treated_as_absent(draft_store, scheduler):
    _manager(draft_store, scheduler, version=1).schedule_save({"1": {"net_salary": 1}}, [], [])
    scheduler.run_pending()

    manager = _manager(draft_store, scheduler, version=2)
    assert manager.load() is None
    assert not manager.has_draft

def test_corrupt_draft_is_treated_as_absent(draft_store, scheduler):
    draft_store.set(KEY, "{not json")
    assert _manager(draft_store, scheduler).load() is None
    draft_store.set(KEY, json.dumps({"schemaVersion": 1, "overrides": []}))
    assert _manager(draft_store, scheduler).load() is None

def test_clear_cancels_pending_write(draft_store, scheduler):
    manager = _manager(draft_store, scheduler)
    manager.schedule_save({"1": {"net_salary": 1}}, [], [])
    manager.clear()
    scheduler.run_pending()
    assert KEY not in draft_store
    assert not manager.pending

def test_store_errors_in_debounced_write_are_logged(scheduler, caplog):
    class BrokenStore(InMemoryDraftStore):
        def set(self, key, value):
            raise OSError("disk full")

    manager = _manager(BrokenStore(), scheduler)
    manager.schedule_save({"1": {"net_salary": 1}}, [], [])
    scheduler.run_pending()
    assert "Failed to persist payroll draft" in caplog.text

def test_sql_draft_store():
    store = SqlDraftStore(TestingSessionLocal)
    assert store.get(KEY) is None
    store.set(KEY, '{"a": 1}')
    store.set(KEY, '{"a": 2}')
    assert store.get(KEY) == '{"a": 2}'
    store.delete(KEY)
    store.delete(KEY)
    assert store.get(KEY) is None


def test_clear_waits_for_a_write_in_progress():
    store = SlowDraftStore()
    manager = PayrollDraftManager(store, KEY, ThreadingScheduler(), delay=0.01, version=1)
    manager.schedule_save({"1": {"net_salary": 3000}}, ["1"], [])

    assert store.write_started.wait(timeout=5)
    manager.clear()

    assert store.get(KEY) is None
    assert not manager.has_draft
    assert not manager.pending

def test_clear_before_the_timer_fires_drops_the_write():
    store = SlowDraftStore(write_time=0)
    manager = PayrollDraftManager(store, KEY, ThreadingScheduler(), delay=0.2, version=1)
    manager.schedule_save({"1": {"net_salary": 3000}}, ["1"], [])
    manager.clear()

    time.sleep(0.4)
    assert not store.write_started.is_set()
    assert store.get(KEY) is None
