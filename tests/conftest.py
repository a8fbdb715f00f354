"""
Test configuration and fixtures.

Provides:
- SQLite database configured before the app is imported
- Database session with savepoint (rollback after each test)
- Organization / person factories
- Fake email and SMS providers that record what they were asked to send
"""
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="flock-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"

from sqlalchemy.orm import Session  # noqa: E402

from flock.db.base import Base  # noqa: E402
from flock.db.enums import PersonKind, Plan  # noqa: E402
from flock.db.models import Organization, Person  # noqa: E402
from flock.db.session import SessionLocal, engine  # noqa: E402


NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _schema() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session inside an outer transaction.

    The session joins through a SAVEPOINT so app code can call commit() and
    rollback() without ending the test transaction.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization on a paid plan."""
    org = Organization(
        id=uuid.uuid4(),
        name="Grace Chapel",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
        plan=Plan.FOUNDATIONS.value,
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture
def make_person(db: Session, test_org: Organization):
    """Factory for committed people in test_org; `age` sets created_at relative to NOW."""

    def _make(
        kind: PersonKind = PersonKind.CONVERT,
        *,
        age: timedelta = timedelta(0),
        org: Organization | None = None,
        **fields,
    ) -> Person:
        created_at = NOW - age
        values = {
            "first_name": "Ada",
            "last_name": f"Member{uuid.uuid4().hex[:4]}",
            "email": f"ada-{uuid.uuid4().hex[:6]}@example.com",
            "phone": "(555) 123-4567",
            "created_at": created_at,
            "updated_at": created_at,
        }
        values.update(fields)
        person = Person(
            organization_id=(org or test_org).id,
            kind=kind,
            **values,
        )
        db.add(person)
        db.commit()
        return person

    return _make


# =============================================================================
# Provider fakes
# =============================================================================


class FakeEmailProvider:
    """Records sends; `fail_for` addresses get a failed result."""

    key = "fake"

    def __init__(self, fail_for: set[str] | None = None, raise_for: set[str] | None = None):
        self.sent: list[dict] = []
        self.fail_for = fail_for or set()
        self.raise_for = raise_for or set()

    async def send(self, *, to, subject, html, from_email=None, idempotency_key=None):
        if to in self.raise_for:
            raise RuntimeError(f"provider exploded for {to}")
        if to in self.fail_for:
            return {"success": False, "message_id": None, "error": "Resend API error: 500"}
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "html": html,
                "from_email": from_email,
                "idempotency_key": idempotency_key,
            }
        )
        return {"success": True, "message_id": f"email-{len(self.sent)}", "error": None}


class FakeSmsProvider:
    key = "fake"

    def __init__(self, fail: bool = False):
        self.sms: list[dict] = []
        self.mms: list[dict] = []
        self.fail = fail
        self.attempts = 0

    async def send_sms(self, *, to, body):
        self.attempts += 1
        if self.fail:
            return {"success": False, "message_id": None, "error": "QUEUED_FAILED"}
        self.sms.append({"to": to, "body": body})
        return {"success": True, "message_id": f"sms-{len(self.sms)}", "error": None}

    async def send_mms(self, *, to, body, media_url=None):
        self.attempts += 1
        if self.fail:
            return {"success": False, "message_id": None, "error": "QUEUED_FAILED"}
        self.mms.append({"to": to, "body": body, "media_url": media_url})
        return {"success": True, "message_id": f"mms-{len(self.mms)}", "error": None}

    @property
    def calls(self) -> int:
        return len(self.sms) + len(self.mms)


@pytest.fixture
def email_provider() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def sms_provider() -> FakeSmsProvider:
    return FakeSmsProvider()
