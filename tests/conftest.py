import pytest
import os
import threading
import time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from opsdesk.database import Base, get_db
from opsdesk.main import app
from opsdesk.schemas.payroll import PayrollType
from opsdesk.services.drafts import InMemoryDraftStore
from opsdesk.services.payroll_session import PayrollSession
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def month_days(*statuses):
    """Attendance ``days`` mapping from a list of statuses, day 1 first."""
    return {day: status for day, status in enumerate(statuses, start=1)}


class ManualScheduler:
    """Scheduler that only runs tasks when the test says so."""

    def __init__(self):
        self.tasks = []

    def schedule(self, fn, delay):
        task = {"fn": fn, "delay": delay, "cancelled": False}
        self.tasks.append(task)

        def cancel():
            task["cancelled"] = True
        return cancel

    @property
    def pending(self):
        return [t for t in self.tasks if not t["cancelled"]]

    def run_pending(self):
        tasks, self.tasks = self.tasks, []
        for task in tasks:
            if not task["cancelled"]:
                task["fn"]()


class SlowDraftStore(InMemoryDraftStore):
    """Draft store whose writes take a while, signalling when one has started."""

    def __init__(self, write_time=0.3):
        super().__init__()
        self.write_time = write_time
        self.write_started = threading.Event()

    def set(self, key, value):
        self.write_started.set()
        time.sleep(self.write_time)
        super().set(key, value)


class FakePayrollRepository:
    def __init__(self):
        self.saved = {}
        self.fail_saves = False
        self.fail_loads = False
        self.save_calls = 0

    def load(self, payroll_type, year, month):
        if self.fail_loads:
            raise ConnectionError("payroll sheet unavailable")
        return list(self.saved.get((PayrollType(payroll_type), year, month), []))

    def save(self, payroll_type, year, month, rows):
        self.save_calls += 1
        if self.fail_saves:
            raise ConnectionError("network down")
        self.saved[(PayrollType(payroll_type), year, month)] = list(rows)


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """Get a clean database session for each test function with rollback safety."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()

@pytest.fixture(scope="function")
def scheduler():
    return ManualScheduler()

@pytest.fixture(scope="function")
def draft_store():
    return InMemoryDraftStore()

@pytest.fixture(scope="function")
def repository():
    return FakePayrollRepository()

@pytest.fixture(scope="function")
def make_session(draft_store, repository, scheduler):
    """Factory for payroll sessions sharing the test's store, repository and scheduler."""
    def _make_session(payroll_type=PayrollType.LABOUR, year=2024, month=5, **kwargs):
        return PayrollSession(
            payroll_type, year, month,
            draft_store=draft_store,
            repository=repository,
            scheduler=scheduler,
            **kwargs
        )
    return _make_session

@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
