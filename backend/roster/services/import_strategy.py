"""Per-row duplicate resolution: create, update, suffix or skip.

Decision table, evaluated against a DuplicateIndex snapshot (email collision is
always checked before code collision, and that precedence shows up in the
messages):

    no collision                  → create                    (created)
    skip                          → nothing                   (skipped)
    update, email hit, same code  → update name/phone         (updated)
    update, anything else         → nothing                   (skipped, mismatch)
    suffix, email hit only        → create with suffixed email (created_with_suffix)
    suffix, email hit + code hit  → allocate, then roll back  (skipped)
    suffix, code hit only         → nothing                   (skipped)
"""
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from roster.core.config import settings
from roster.core.security import hash_password
from roster.services.csv_rows import ValidatedRow
from roster.services.duplicate_index import DuplicateIndex
from roster.services.email_suffix import SuffixAllocator
from roster.services.errors import InvalidStrategyError
from roster.services.persistence import NewStudent, PersistenceGateway, RecordRef, StudentUpdate

logger = logging.getLogger(__name__)


class Strategy(str, enum.Enum):
    skip = "skip"
    update = "update"
    suffix = "suffix"

    @classmethod
    def parse(cls, value: "str | Strategy") -> "Strategy":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise InvalidStrategyError(
                f"Invalid strategy: {value}. Must be one of: {allowed}",
                {"strategy": str(value)},
            ) from None


class ImportStatus(str, enum.Enum):
    created = "created"
    created_with_suffix = "created_with_suffix"
    updated = "updated"
    skipped = "skipped"
    failed = "failed"


CREATED_STATUSES = (ImportStatus.created, ImportStatus.created_with_suffix)


@dataclass(frozen=True)
class ImportOutcome:
    line_number: int
    status: ImportStatus
    record: dict[str, Any]
    message: str
    # set when the row's transaction must be rolled back rather than committed
    rollback: bool = field(default=False, compare=False)

    @property
    def is_created(self) -> bool:
        return self.status in CREATED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
            "status": self.status.value,
            "record": dict(self.record),
            "message": self.message,
        }


def row_snapshot(row: ValidatedRow) -> dict[str, Any]:
    return {
        "email": row.email,
        "name": row.name,
        "student_code": row.student_code,
        "phone": row.phone,
    }


def ref_snapshot(ref: RecordRef) -> dict[str, Any]:
    return {
        "email": ref.email,
        "name": ref.name,
        "student_code": ref.student_code,
        "phone": ref.phone,
    }


def failed_outcome(row: ValidatedRow, message: str) -> ImportOutcome:
    return ImportOutcome(row.line_number, ImportStatus.failed, row_snapshot(row), message)


class StrategyResolver:
    def __init__(
        self,
        gateway: PersistenceGateway,
        allocator: SuffixAllocator | None = None,
        default_password: str | None = None,
        hasher: Callable[[str], str] = hash_password,
    ):
        self.gateway = gateway
        self.allocator = allocator or SuffixAllocator(gateway)
        self.default_password = default_password or settings.IMPORT_DEFAULT_PASSWORD
        self.hasher = hasher

    def resolve(
        self,
        row: ValidatedRow,
        index: DuplicateIndex,
        strategy: Strategy,
        tx: Any,
    ) -> ImportOutcome:
        """Decide what to do with one row and perform the write inside ``tx``.

        Persistence errors and AllocationExhausted propagate; the caller rolls
        back and records the row as failed.
        """
        dup_email = index.match_email(row.email)
        dup_code = index.match_code(row.student_code)

        if dup_email is None and dup_code is None:
            ref = self._create(row, row.email, tx)
            return ImportOutcome(row.line_number, ImportStatus.created, ref_snapshot(ref),
                                 "Student created successfully")

        if strategy is Strategy.skip:
            message = "Email already exists" if dup_email else "Student code already exists"
            return self._skipped(row, message)

        if strategy is Strategy.update:
            return self._update(row, dup_email, tx)

        if strategy is Strategy.suffix:
            return self._suffix(row, dup_email, dup_code, tx)

        raise InvalidStrategyError(f"Invalid strategy: {strategy}")

    # ─── Branches ───

    def _update(self, row: ValidatedRow, dup_email: RecordRef | None, tx: Any) -> ImportOutcome:
        if dup_email is None or not dup_email.has_profile or dup_email.student_code != row.student_code:
            return self._skipped(row, "Email and student code mismatch - cannot update")

        fields = StudentUpdate(name=row.name, phone=row.phone or dup_email.phone)
        ref = self.gateway.update_profile(dup_email, fields, tx)
        return ImportOutcome(row.line_number, ImportStatus.updated, ref_snapshot(ref),
                             "Student updated successfully")

    def _suffix(
        self,
        row: ValidatedRow,
        dup_email: RecordRef | None,
        dup_code: RecordRef | None,
        tx: Any,
    ) -> ImportOutcome:
        if dup_email is None:
            return self._skipped(row, "Student code already exists")

        new_email = self.allocator.allocate(row.email)
        if dup_code is not None:
            return ImportOutcome(
                row.line_number,
                ImportStatus.skipped,
                row_snapshot(row),
                "Student code already exists - cannot create with suffix",
                rollback=True,
            )

        ref = self._create(row, new_email, tx)
        record = ref_snapshot(ref)
        record["original_email"] = row.email
        return ImportOutcome(row.line_number, ImportStatus.created_with_suffix, record,
                             f"Student created with email suffix: {new_email}")

    # ─── Helpers ───

    def _create(self, row: ValidatedRow, email: str, tx: Any) -> RecordRef:
        fields = NewStudent(
            email=email,
            name=row.name,
            password_hash=self.hasher(row.password or self.default_password),
            student_code=row.student_code,
            phone=row.phone,
        )
        return self.gateway.create_account_and_profile(fields, tx)

    @staticmethod
    def _skipped(row: ValidatedRow, message: str) -> ImportOutcome:
        return ImportOutcome(row.line_number, ImportStatus.skipped, row_snapshot(row), message)
