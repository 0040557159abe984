"""
Payroll Draft Persistence

Unsaved payroll edits (overrides, selection, cash flags) are kept as a
versioned JSON draft per (type, year, month) so a reload or dropped
connection does not lose work.

Architecture:
- DraftStore: plain key/value capability (in-memory or database-backed)
- Scheduler: "schedule(fn, delay) -> cancel" used to debounce writes
- PayrollDraftManager: owns one draft key and its pending write
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.orm import Session

from opsdesk.core.config import settings
from opsdesk.database import SessionLocal
from opsdesk.models.payroll import PayrollDraft
from opsdesk.schemas.payroll import Draft, PayrollType, canonical_id
from opsdesk.services.overrides import copy_overrides

logger = logging.getLogger(__name__)

Cancel = Callable[[], None]


class DraftStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class Scheduler(Protocol):
    def schedule(self, fn: Callable[[], None], delay: float) -> Cancel: ...


class InMemoryDraftStore:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqlDraftStore:
    """
    Draft store backed by the payroll_drafts table.

    Each operation opens and closes its own session, since debounced writes
    run on the scheduler's thread and a Session must not be shared across threads.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        db = self.session_factory()
        try:
            draft = db.get(PayrollDraft, key)
            return draft.payload if draft else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db = self.session_factory()
        try:
            draft = db.get(PayrollDraft, key)
            if draft is None:
                db.add(PayrollDraft(key=key, payload=value))
            else:
                draft.payload = value
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self.session_factory()
        try:
            draft = db.get(PayrollDraft, key)
            if draft is None:
                return
            db.delete(draft)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class ThreadingScheduler:
    def schedule(self, fn: Callable[[], None], delay: float) -> Cancel:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer.cancel


def draft_key(payroll_type: PayrollType, year: int, month: int, prefix: Optional[str] = None) -> str:
    prefix = prefix or settings.drafts.key_prefix
    return f"{prefix}_{PayrollType(payroll_type).value}_{year}_{month}"


class PayrollDraftManager:
    def __init__(
        self,
        store: DraftStore,
        key: str,
        scheduler: Scheduler,
        delay: Optional[float] = None,
        version: Optional[int] = None,
    ):
        self.store = store
        self.key = key
        self.scheduler = scheduler
        self.delay = settings.drafts.save_delay if delay is None else delay
        self.version = settings.drafts.schema_version if version is None else version

        self.has_draft = False
        self.draft_timestamp: Optional[datetime] = None

        self._lock = threading.RLock()
        self._cancel_pending: Optional[Cancel] = None
        self._pending_task: Optional[Callable[[], None]] = None

    @property
    def pending(self) -> bool:
        return self._pending_task is not None

    def load(self) -> Optional[Draft]:
        """
        Read the draft for this key.

        Returns:
            The draft, or None when absent, unreadable or written by another schema version
        """
        raw = self.store.get(self.key)
        if raw is None:
            self._mark(None)
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable payroll draft {self.key}: {e}")
            self._mark(None)
            return None

        if not isinstance(data, dict) or data.get("schemaVersion") != self.version:
            logger.info(f"Discarding payroll draft {self.key} from another schema version")
            self._mark(None)
            return None

        try:
            draft = Draft.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed payroll draft {self.key}: {e.error_count()} errors")
            self._mark(None)
            return None

        self._mark(draft.saved_at)
        return draft

    def schedule_save(
        self,
        overrides: Mapping[str, Mapping[str, Any]],
        selected_ids: Iterable[Any],
        cash_ids: Iterable[Any],
    ) -> None:
        """Replace any pending write with one for this snapshot, fired after the debounce delay."""
        snapshot_overrides = copy_overrides(overrides)
        snapshot_selected = sorted({canonical_id(i) for i in selected_ids})
        snapshot_cash = sorted({canonical_id(i) for i in cash_ids})

        def write():
            # Held through the store write so clear() cannot interleave with it
            with self._lock:
                if self._pending_task is not write:
                    return
                self._pending_task = None
                self._cancel_pending = None
                try:
                    self._write(snapshot_overrides, snapshot_selected, snapshot_cash)
                except Exception as e:
                    logger.error(f"Failed to persist payroll draft {self.key}: {e}", exc_info=True)

        with self._lock:
            if self._cancel_pending is not None:
                self._cancel_pending()
            self._pending_task = write
            self._cancel_pending = self.scheduler.schedule(write, self.delay)

    def flush(self) -> None:
        task = self._pending_task
        if task is not None:
            task()

    def cancel(self) -> None:
        with self._lock:
            if self._cancel_pending is not None:
                self._cancel_pending()
            self._pending_task = None
            self._cancel_pending = None

    def clear(self) -> None:
        """Drop any pending write and delete the stored draft. Waits for a write already in progress."""
        with self._lock:
            self.cancel()
            self.store.delete(self.key)
            self._mark(None)

    def _write(self, overrides: Dict[str, Dict[str, Any]], selected_ids: list, cash_ids: list) -> None:
        if not overrides and not cash_ids:
            self.store.delete(self.key)
            self._mark(None)
            logger.debug(f"Payroll draft {self.key} removed: nothing to keep")
            return

        draft = Draft(
            overrides=overrides,
            selected_ids=selected_ids,
            cash_employee_ids=cash_ids,
            saved_at=datetime.now(timezone.utc),
            schema_version=self.version,
        )
        self.store.set(self.key, draft.model_dump_json(by_alias=True))
        self._mark(draft.saved_at)
        logger.debug(f"Payroll draft {self.key} written with {len(overrides)} overridden rows")

    def _mark(self, timestamp: Optional[datetime]) -> None:
        self.has_draft = timestamp is not None
        self.draft_timestamp = timestamp
