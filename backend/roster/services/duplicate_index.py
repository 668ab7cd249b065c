"""Lookup of stored students colliding with a set of candidate rows.

A DuplicateIndex is a point-in-time snapshot: it reflects the store as of the
build_index() call and is never mutated. Callers rebuild it when they need a
newer view (see BatchOrchestrator).
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from roster.services.csv_rows import ValidatedRow
from roster.services.persistence import PersistenceGateway, RecordRef

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class DuplicateIndex:
    by_email: Mapping[str, RecordRef] = field(default_factory=lambda: MappingProxyType({}))
    by_code: Mapping[str, RecordRef] = field(default_factory=lambda: MappingProxyType({}))

    def match_email(self, email: str) -> RecordRef | None:
        return self.by_email.get(normalize_email(email))

    def match_code(self, student_code: str) -> RecordRef | None:
        return self.by_code.get(student_code)


EMPTY_INDEX = DuplicateIndex()


def build_index(gateway: PersistenceGateway, rows: Iterable[ValidatedRow]) -> DuplicateIndex:
    """Query the store once by email and once by code for all candidate rows."""
    rows = list(rows)
    if not rows:
        return EMPTY_INDEX

    emails = [normalize_email(r.email) for r in rows]
    codes = [r.student_code for r in rows]

    by_email = {normalize_email(ref.email): ref for ref in gateway.find_accounts_by_email(emails)}
    by_code = {ref.student_code: ref for ref in gateway.find_profiles_by_code(codes) if ref.student_code}

    logger.debug(
        "build_index: %d candidates → %d email matches, %d code matches",
        len(rows), len(by_email), len(by_code),
    )
    return DuplicateIndex(by_email=MappingProxyType(by_email), by_code=MappingProxyType(by_code))
