import os

os.environ["ENV"] = "test"
# signflow.db builds its engine at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("DOCUMENT_SIGNING_SECRET", "test-signing-secret")

from datetime import date, datetime, timedelta, UTC

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from signflow.core.context import WorkflowContext
from signflow.db import Base
from signflow.main import app
from signflow.models import convention as _convention_model  # noqa: F401
from signflow.models import notification as _notification_model  # noqa: F401
from signflow.schemas.convention import Convention, ConventionData, Role
from signflow.services import email as email_service
from signflow.services.convention_notifications import RecordingSender
from signflow.services.document_store import InMemoryConventionStore, SqlConventionStore
from signflow.services.factory import build_services, get_services

# Use SQLite in-memory for the SQL store tests. StaticPool keeps one shared
# connection so every session sees the same database.
TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

# Addresses match the mock tokens accepted by signflow.services.auth
ADDRESSES = {
    Role.STUDENT: "student@example.com",
    Role.PARENT: "parent@example.com",
    Role.TEACHER: "teacher@example.com",
    Role.COMPANY: "company@example.com",
    Role.TUTOR: "tutor@example.com",
    Role.HEAD: "head@example.com",
}
TOKENS = {role: f"mock-{role.value}-token" for role in Role}
TOKENS["staff"] = "mock-staff-token"


def convention_payload(**overrides) -> dict:
    """Business data for an adult student; override any field."""
    data = {
        "school_name": "Lycee Jean Moulin",
        "school_address": "1 rue des Ecoles, Lyon",
        "school_head_name": "Claire Martin",
        "school_head_email": ADDRESSES[Role.HEAD],
        "teacher_name": "Paul Durand",
        "teacher_email": ADDRESSES[Role.TEACHER],
        "cpe_email": "cpe@example.com",
        "student_last_name": "Bernard",
        "student_first_name": "Lea",
        "student_birth_date": "2006-05-14",
        "student_email": ADDRESSES[Role.STUDENT],
        "student_class": "1ere MELEC",
        "is_minor": False,
        "company_name": "Atelier Lumiere",
        "company_city": "Villeurbanne",
        "company_rep_name": "Marc Petit",
        "company_rep_function": "Gerant",
        "company_rep_email": ADDRESSES[Role.COMPANY],
        "tutor_last_name": "Roux",
        "tutor_first_name": "Sophie",
        "tutor_email": ADDRESSES[Role.TUTOR],
        "start_date": "2026-04-06",
        "end_date": "2026-05-01",
        "duration_hours": 140,
    }
    data.update(overrides)
    return data


def minor_payload(**overrides) -> dict:
    return convention_payload(
        is_minor=True,
        student_birth_date="2010-01-20",
        guardian_first_name="Anne",
        guardian_last_name="Bernard",
        guardian_email=ADDRESSES[Role.PARENT],
        **overrides,
    )


def make_convention(**overrides) -> Convention:
    fields = {"id": overrides.pop("id", "conv-1"), "created_at": T0, "updated_at": T0}
    return Convention(**convention_payload(**overrides), **fields)


class Clock:
    """Controllable clock for the workflow; advances one minute per call."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(minutes=1)
        return self.now


@pytest.fixture(autouse=True)
def no_sendgrid(monkeypatch):
    # Never reach SendGrid from tests
    monkeypatch.setattr(email_service, "get_sendgrid_client", lambda: None)


@pytest.fixture
def ctx():
    return WorkflowContext(account_id="student-1")


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def store():
    return InMemoryConventionStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def services(store, sender, clock):
    built = build_services(store=store, sender=sender, background=False, verification_workers=2)
    built.workflow.clock = clock
    yield built
    built.shutdown()


@pytest.fixture
def workflow(services):
    return services.workflow


@pytest.fixture
def submit(workflow, ctx):
    """Submit a convention (adult by default) and return it."""
    def _submit(payload: dict | None = None, **kwargs):
        data = ConventionData(**(payload or convention_payload()))
        return workflow.submit(ctx, data, **kwargs).convention
    return _submit


@pytest.fixture
def sign_as(workflow, ctx):
    """Sign a convention as each role in turn; returns the last result."""
    def _sign(convention_id: str, *roles: Role, **kwargs):
        result = None
        for role in roles:
            result = workflow.sign(ctx, convention_id, role, **kwargs)
        return result
    return _sign


@pytest.fixture
def sql_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_store(sql_db):
    return SqlConventionStore(sql_db)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_services, None)


@pytest.fixture
def auth_headers():
    def _make(role):
        return {"Authorization": f"Bearer {TOKENS[role]}"}
    return _make
