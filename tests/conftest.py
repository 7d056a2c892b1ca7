import os, tempfile

# Must be set before the app (and its engine) is imported.
_DB_DIR = tempfile.mkdtemp(prefix="hr-approvals-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["NOTIFY_BACKOFF_SEC"] = "0"
os.environ["DIRECTORY_RETRY_SLEEP_SEC"] = "0"
os.environ["SEED_WORKFLOWS"] = "0"

import pytest
from fastapi.testclient import TestClient

from backend.main import app as fastapi_app
from app.core.database import Base, engine, SessionLocal
from app.crud.workflow import seed_definitions, upsert_definition
from app.models import BusinessTrip, Employee, LeaveRequest, Loan, UserRoleGrant
from app.services import notify


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def sent(monkeypatch):
    """Collect notifications instead of posting them."""
    events = []

    def fake_dispatch(event, payload):
        events.append((event, payload))
        return None

    monkeypatch.setattr(notify, "dispatch", fake_dispatch)
    return events


@pytest.fixture
def people(db):
    """
    1 alice -> manager 2 bob
    3 carol (no manager)
    4 dan   -> manager 5 (no login)
    hana holds hr, adam holds admin (granted after hana)
    """
    db.add_all([
        Employee(id=1, user_id="u-alice", manager_id=2),
        Employee(id=2, user_id="u-bob", manager_id=None),
        Employee(id=3, user_id="u-carol", manager_id=None),
        Employee(id=4, user_id="u-dan", manager_id=5),
        Employee(id=5, user_id=None, manager_id=None),
        UserRoleGrant(user_id="u-bob", role="manager"),
        UserRoleGrant(user_id="u-hana", role="hr"),
        UserRoleGrant(user_id="u-adam", role="admin"),
    ])
    db.commit()
    return {"alice": 1, "bob": 2, "carol": 3, "dan": 4}


@pytest.fixture
def workflows(db):
    return seed_definitions(db)


@pytest.fixture
def set_workflow(db):
    def _set(request_type, steps, is_active=True, default_hr_approver_id=None):
        return upsert_definition(db, request_type, "u-adam", is_active=is_active, steps=steps,
                                 default_hr_approver_id=default_hr_approver_id)
    return _set


@pytest.fixture
def make_request(db):
    models = {"time_off": LeaveRequest, "business_trip": BusinessTrip, "loan": Loan}

    def _make(request_type, employee_id):
        row = models[request_type](employee_id=employee_id)
        db.add(row); db.commit(); db.refresh(row)
        return row.id
    return _make


@pytest.fixture
def client():
    with TestClient(fastapi_app) as c:
        yield c
