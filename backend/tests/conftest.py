"""Shared fixtures for the roster import tests.

Settings are read at import time, so the environment overrides below must run
before anything under ``roster`` is imported.
"""
import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("IMPORT_RATE_LIMIT", "1000/minute")
os.environ.setdefault("APP_ENV", "test")

import uuid  # noqa: E402
from dataclasses import dataclass, field, replace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import roster.models  # noqa: E402,F401  registers tables on Base.metadata
from roster.db.base import Base  # noqa: E402
from roster.services.csv_rows import ValidatedRow  # noqa: E402
from roster.services.errors import PersistenceError  # noqa: E402
from roster.services.persistence import NewStudent, RecordRef, StudentUpdate  # noqa: E402


# ─── In-memory gateway ────────────────────────────────────────────────────────

@dataclass
class FakeTx:
    creates: list[RecordRef] = field(default_factory=list)
    updates: list[RecordRef] = field(default_factory=list)
    closed: bool = False


class InMemoryGateway:
    """PersistenceGateway fake.

    Writes are staged on the transaction and only become visible on commit.
    Email (case-insensitive) and student code uniqueness are enforced the way
    the database constraints would enforce them.
    """

    def __init__(self):
        self.records: dict[uuid.UUID, RecordRef] = {}
        self.password_hashes: dict[uuid.UUID, str] = {}
        self.email_lookups: list[list[str]] = []
        self.code_lookups: list[list[str]] = []
        self.email_checks: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_create: set[str] = set()
        self.fail_lookups = False

    # helpers

    def seed(self, name: str, email: str, student_code: str | None, phone: str | None = None) -> RecordRef:
        ref = RecordRef(
            account_id=uuid.uuid4(),
            email=email,
            name=name,
            profile_id=uuid.uuid4() if student_code else None,
            student_code=student_code,
            phone=phone,
        )
        self.records[ref.account_id] = ref
        return ref

    def get_by_email(self, email: str) -> RecordRef | None:
        for ref in self.records.values():
            if ref.email.lower() == email.lower():
                return ref
        return None

    def get_by_code(self, code: str) -> RecordRef | None:
        for ref in self.records.values():
            if ref.student_code == code:
                return ref
        return None

    # lookups

    def find_accounts_by_email(self, emails: list[str]) -> list[RecordRef]:
        if self.fail_lookups:
            raise PersistenceError("lookup failed")
        self.email_lookups.append(list(emails))
        wanted = {e.lower() for e in emails}
        return [r for r in self.records.values() if r.email.lower() in wanted]

    def find_profiles_by_code(self, codes: list[str]) -> list[RecordRef]:
        if self.fail_lookups:
            raise PersistenceError("lookup failed")
        self.code_lookups.append(list(codes))
        wanted = set(codes)
        return [r for r in self.records.values() if r.student_code in wanted]

    def email_exists(self, email: str) -> bool:
        self.email_checks.append(email)
        return self.get_by_email(email) is not None

    # writes

    def create_account_and_profile(self, fields: NewStudent, tx: FakeTx) -> RecordRef:
        if fields.email.lower() in self.fail_on_create:
            raise PersistenceError(f"Could not create student {fields.email}")
        visible = list(self.records.values()) + tx.creates
        if any(r.email.lower() == fields.email.lower() for r in visible):
            raise PersistenceError(f"duplicate key value violates unique constraint: {fields.email}")
        if any(r.student_code == fields.student_code for r in visible):
            raise PersistenceError(f"duplicate key value violates unique constraint: {fields.student_code}")
        ref = RecordRef(
            account_id=uuid.uuid4(),
            email=fields.email,
            name=fields.name,
            profile_id=uuid.uuid4(),
            student_code=fields.student_code,
            phone=fields.phone,
        )
        tx.creates.append(ref)
        self.password_hashes[ref.account_id] = fields.password_hash
        return ref

    def update_profile(self, ref: RecordRef, fields: StudentUpdate, tx: FakeTx) -> RecordRef:
        current = self.records.get(ref.account_id)
        if current is None or not current.has_profile:
            raise PersistenceError(f"Student {ref.email} no longer exists")
        updated = replace(current, name=fields.name, phone=fields.phone)
        tx.updates.append(updated)
        return updated

    # transactions

    def begin_transaction(self) -> FakeTx:
        return FakeTx()

    def commit(self, tx: FakeTx) -> None:
        for ref in tx.creates + tx.updates:
            self.records[ref.account_id] = ref
        tx.closed = True
        self.commits += 1

    def rollback(self, tx: FakeTx) -> None:
        for ref in tx.creates:
            self.password_hashes.pop(ref.account_id, None)
        tx.creates.clear()
        tx.updates.clear()
        tx.closed = True
        self.rollbacks += 1


def make_row(line_number: int, name: str, email: str, student_code: str,
             phone: str | None = None, password: str | None = None) -> ValidatedRow:
    return ValidatedRow(
        line_number=line_number,
        name=name,
        email=email,
        student_code=student_code,
        phone=phone,
        password=password,
    )


def fake_hasher(password: str) -> str:
    return f"hashed:{password}"


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine):
    session = Session(sqlite_engine, expire_on_commit=False, autoflush=False)
    yield session
    session.close()
