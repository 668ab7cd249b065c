"""Persistence boundary for the import engine.

The engine only talks to a PersistenceGateway. SqlAlchemyGateway is the
production implementation over a synchronous Session; tests use an in-memory
fake with the same contract.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from roster.models.account import Account, Profile
from roster.services.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordRef:
    """Snapshot of a stored Account and its linked Profile (if any)."""

    account_id: uuid.UUID
    email: str
    name: str
    profile_id: uuid.UUID | None = None
    student_code: str | None = None
    phone: str | None = None

    @property
    def has_profile(self) -> bool:
        return self.profile_id is not None


@dataclass(frozen=True)
class NewStudent:
    email: str
    name: str
    password_hash: str
    student_code: str
    phone: str | None = None
    role: str = "student"


@dataclass(frozen=True)
class StudentUpdate:
    name: str
    phone: str | None


class PersistenceGateway(Protocol):
    def find_accounts_by_email(self, emails: list[str]) -> list[RecordRef]: ...

    def find_profiles_by_code(self, codes: list[str]) -> list[RecordRef]: ...

    def email_exists(self, email: str) -> bool: ...

    def create_account_and_profile(self, fields: NewStudent, tx: Any) -> RecordRef: ...

    def update_profile(self, ref: RecordRef, fields: StudentUpdate, tx: Any) -> RecordRef: ...

    def begin_transaction(self) -> Any: ...

    def commit(self, tx: Any) -> None: ...

    def rollback(self, tx: Any) -> None: ...


def _to_ref(account: Account, profile: Profile | None) -> RecordRef:
    return RecordRef(
        account_id=account.id,
        email=account.email,
        name=account.name,
        profile_id=profile.id if profile else None,
        student_code=profile.student_code if profile else None,
        phone=profile.phone if profile else None,
    )


class SqlAlchemyGateway:
    """PersistenceGateway over a sync SQLAlchemy session.

    Each begin_transaction() starts a fresh session transaction, closing the
    read-only one left open by preceding lookups, so that commit/rollback
    affect exactly one row's writes.
    """

    def __init__(self, session: Session):
        self.session = session

    # ─── Lookups ───

    def find_accounts_by_email(self, emails: list[str]) -> list[RecordRef]:
        if not emails:
            return []
        lowered = sorted({e.lower() for e in emails})
        stmt = (
            select(Account)
            .options(selectinload(Account.profile))
            .where(func.lower(Account.email).in_(lowered))
        )
        try:
            accounts = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Account lookup failed: {exc}") from exc
        return [_to_ref(a, a.profile) for a in accounts]

    def find_profiles_by_code(self, codes: list[str]) -> list[RecordRef]:
        if not codes:
            return []
        stmt = (
            select(Profile, Account)
            .join(Account, Profile.account_id == Account.id)
            .where(Profile.student_code.in_(sorted(set(codes))))
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Profile lookup failed: {exc}") from exc
        return [_to_ref(account, profile) for profile, account in rows]

    def email_exists(self, email: str) -> bool:
        stmt = select(exists().where(func.lower(Account.email) == email.lower()))
        try:
            return bool(self.session.execute(stmt).scalar())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Email lookup failed: {exc}") from exc

    # ─── Writes ───

    def create_account_and_profile(self, fields: NewStudent, tx: Any) -> RecordRef:
        account = Account(
            email=fields.email,
            name=fields.name,
            password_hash=fields.password_hash,
            role=fields.role,
            is_active=True,
        )
        profile = Profile(student_code=fields.student_code, phone=fields.phone)
        account.profile = profile
        try:
            self.session.add(account)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create student {fields.email}: {exc}") from exc
        return _to_ref(account, profile)

    def update_profile(self, ref: RecordRef, fields: StudentUpdate, tx: Any) -> RecordRef:
        try:
            account = self.session.get(Account, ref.account_id, options=[selectinload(Account.profile)])
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load student {ref.email}: {exc}") from exc
        if account is None or account.profile is None:
            raise PersistenceError(f"Student {ref.email} no longer exists")
        account.name = fields.name
        account.profile.phone = fields.phone
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update student {ref.email}: {exc}") from exc
        return _to_ref(account, account.profile)

    # ─── Transactions ───

    def begin_transaction(self) -> Any:
        try:
            if self.session.in_transaction():
                self.session.commit()
            return self.session.begin()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not start transaction: {exc}") from exc

    def commit(self, tx: Any) -> None:
        try:
            tx.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Commit failed: {exc}") from exc

    def rollback(self, tx: Any) -> None:
        # tx may already be deactivated by a failed flush; roll back whatever is open
        if self.session.in_transaction():
            self.session.rollback()
