"""Bulk student import: windowed orchestration and the public entry points.

run_import(gateway, csv_text, strategy) is the write path; preview_import()
is the read-only dry run behind the "validate CSV" screen. Both are
synchronous and process one row at a time.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from roster.core.config import settings
from roster.services.csv_rows import (
    InternalDuplicate,
    ValidatedRow,
    detect_internal_duplicates,
    parse_csv,
    validate_rows,
)
from roster.services.duplicate_index import DuplicateIndex, build_index
from roster.services.email_suffix import SuffixAllocator
from roster.services.errors import (
    AllocationExhausted,
    InternalDuplicatesError,
    NoValidRowsError,
    PersistenceError,
)
from roster.services.import_strategy import (
    ImportOutcome,
    ImportStatus,
    Strategy,
    StrategyResolver,
    failed_outcome,
)
from roster.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)


# ─── Results ───

@dataclass(frozen=True)
class ImportSummary:
    strategy: Strategy
    details: tuple[ImportOutcome, ...]
    invalid_rows: tuple[ValidatedRow, ...] = ()
    warnings: tuple[str, ...] = ()

    def _count(self, *statuses: ImportStatus) -> int:
        return sum(1 for o in self.details if o.status in statuses)

    @property
    def total(self) -> int:
        return len(self.details)

    @property
    def created(self) -> int:
        return self._count(ImportStatus.created, ImportStatus.created_with_suffix)

    @property
    def updated(self) -> int:
        return self._count(ImportStatus.updated)

    @property
    def skipped(self) -> int:
        return self._count(ImportStatus.skipped)

    @property
    def failed(self) -> int:
        return self._count(ImportStatus.failed)

    @property
    def message(self) -> str:
        return (
            f"Bulk import completed: {self.created} created, {self.updated} updated, "
            f"{self.skipped} skipped, {self.failed} failed"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "strategy": self.strategy.value,
            "details": [o.to_dict() for o in self.details],
            "invalid_rows": [r.error_dict() for r in self.invalid_rows],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class RowDuplicateFlags:
    row: ValidatedRow
    email: bool
    student_code: bool

    @property
    def has_any_duplicate(self) -> bool:
        return self.email or self.student_code


@dataclass(frozen=True)
class ImportPreview:
    total_records: int
    rows: list[RowDuplicateFlags]
    invalid_rows: list[ValidatedRow]
    internal_duplicates: list[InternalDuplicate]
    warnings: list[str] = field(default_factory=list)

    @property
    def database_duplicates(self) -> int:
        return sum(1 for r in self.rows if r.has_any_duplicate)


# ─── Orchestration ───

class BatchOrchestrator:
    """Runs validated rows through the resolver in fixed-size windows.

    Within a window every row sees the effect of every earlier row: after each
    creation the DuplicateIndex is rebuilt over the rows not yet processed.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        resolver: StrategyResolver,
        window_size: int = 100,
    ):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.gateway = gateway
        self.resolver = resolver
        self.window_size = window_size

    def windows(self, rows: list[ValidatedRow]) -> list[list[ValidatedRow]]:
        return [rows[i:i + self.window_size] for i in range(0, len(rows), self.window_size)]

    def run(self, rows: list[ValidatedRow], strategy: Strategy | str) -> ImportSummary:
        strategy = Strategy.parse(strategy)
        outcomes: list[ImportOutcome] = []

        windows = self.windows(rows)
        for number, window in enumerate(windows, start=1):
            logger.info("bulk import: window %d/%d (%d rows)", number, len(windows), len(window))
            outcomes.extend(self._run_window(window, strategy))

        return ImportSummary(strategy=strategy, details=tuple(outcomes))

    def _run_window(self, window: list[ValidatedRow], strategy: Strategy) -> list[ImportOutcome]:
        outcomes: list[ImportOutcome] = []
        index = build_index(self.gateway, window)

        for position, row in enumerate(window):
            outcome = self._run_row(row, index, strategy)
            outcomes.append(outcome)

            remaining = window[position + 1:]
            if outcome.is_created and remaining:
                index = build_index(self.gateway, remaining)

        return outcomes

    def _run_row(self, row: ValidatedRow, index: DuplicateIndex, strategy: Strategy) -> ImportOutcome:
        tx = None
        try:
            tx = self.gateway.begin_transaction()
            outcome = self.resolver.resolve(row, index, strategy, tx)
            if outcome.rollback:
                self.gateway.rollback(tx)
            else:
                self.gateway.commit(tx)
        except (PersistenceError, AllocationExhausted) as exc:
            if tx is not None:
                self.gateway.rollback(tx)
            logger.warning("bulk import: row %d failed: %s", row.line_number, exc)
            return failed_outcome(row, str(exc))
        return outcome


# ─── Entry points ───

@dataclass(frozen=True)
class PreparedImport:
    """A file that passed every whole-call check and is ready to be written."""

    valid_rows: list[ValidatedRow]
    invalid_rows: list[ValidatedRow]
    warnings: list[str] = field(default_factory=list)


def prepare_import(csv_text: str | bytes) -> PreparedImport:
    """Parse and validate a student CSV without touching the store.

    Raises:
        CsvStructureError: missing columns, misaligned records or no data rows.
        NoValidRowsError: every row failed field validation.
        InternalDuplicatesError: the file repeats an email or student code.
    """
    parsed = parse_csv(csv_text)
    valid, invalid = validate_rows(parsed.rows)

    if not valid:
        raise NoValidRowsError(
            "No valid records to import",
            {"invalid_rows": [r.error_dict() for r in invalid]},
        )

    report = detect_internal_duplicates(valid)
    if report.has_duplicates:
        raise InternalDuplicatesError(
            "CSV contains internal duplicates. Please remove duplicate entries and try again.",
            {"duplicates": [d.to_dict() for d in report.duplicates]},
        )

    return PreparedImport(valid_rows=valid, invalid_rows=invalid, warnings=parsed.warnings)


def execute_import(
    gateway: PersistenceGateway,
    prepared: PreparedImport,
    strategy: Strategy | str = Strategy.skip,
    *,
    window_size: int | None = None,
    default_password: str | None = None,
) -> ImportSummary:
    strategy = Strategy.parse(strategy)
    resolver = StrategyResolver(
        gateway,
        allocator=SuffixAllocator(gateway, limit=settings.IMPORT_SUFFIX_LIMIT),
        default_password=default_password or settings.IMPORT_DEFAULT_PASSWORD,
    )
    orchestrator = BatchOrchestrator(gateway, resolver, window_size or settings.IMPORT_BATCH_SIZE)

    logger.info(
        "bulk import started: %d valid rows, %d invalid, strategy=%s",
        len(prepared.valid_rows), len(prepared.invalid_rows), strategy.value,
    )
    result = orchestrator.run(prepared.valid_rows, strategy)
    summary = ImportSummary(
        strategy=result.strategy,
        details=result.details,
        invalid_rows=tuple(prepared.invalid_rows),
        warnings=tuple(prepared.warnings),
    )
    logger.info(summary.message)
    return summary


def run_import(
    gateway: PersistenceGateway,
    csv_text: str | bytes,
    strategy: Strategy | str = Strategy.skip,
    *,
    window_size: int | None = None,
    default_password: str | None = None,
) -> ImportSummary:
    """Parse, validate and import a student CSV.

    The strategy is checked first (InvalidStrategyError), then the file goes
    through prepare_import(). Nothing is written when either raises; after
    that every valid row is accounted for exactly once in the summary.
    """
    strategy = Strategy.parse(strategy)
    prepared = prepare_import(csv_text)
    return execute_import(
        gateway,
        prepared,
        strategy,
        window_size=window_size,
        default_password=default_password,
    )


def preview_import(gateway: PersistenceGateway, csv_text: str | bytes) -> ImportPreview:
    """Validate a CSV and flag rows that collide with stored students. Read-only."""
    parsed = parse_csv(csv_text)
    valid, invalid = validate_rows(parsed.rows)
    report = detect_internal_duplicates(valid)
    index = build_index(gateway, valid)

    flags = [
        RowDuplicateFlags(
            row=row,
            email=index.match_email(row.email) is not None,
            student_code=index.match_code(row.student_code) is not None,
        )
        for row in valid
    ]
    return ImportPreview(
        total_records=len(parsed.rows),
        rows=flags,
        invalid_rows=invalid,
        internal_duplicates=report.duplicates,
        warnings=parsed.warnings,
    )
