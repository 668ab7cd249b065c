"""CSV decoding, row validation and the file-level duplicate precheck.

Nothing here touches the database: the functions turn raw upload text into
ValidatedRow values and decide whether the file is structurally importable.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Annotated

from pydantic import BaseModel, EmailStr, StringConstraints, ValidationError

from roster.services.errors import CsvStructureError

logger = logging.getLogger(__name__)

# ─── Columns ───

REQUIRED_COLUMNS = ("name", "email", "student_code")
OPTIONAL_COLUMNS = ("phone", "password")
ALL_COLUMNS = REQUIRED_COLUMNS + OPTIONAL_COLUMNS


@dataclass(frozen=True)
class Row:
    """One data row as read from the file. line_number is 1-based over data rows."""

    line_number: int
    name: str
    email: str
    student_code: str
    phone: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class ValidatedRow:
    line_number: int
    name: str
    email: str
    student_code: str
    phone: str | None = None
    password: str | None = None
    errors: tuple[FieldError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def normalized_email(self) -> str:
        return self.email.lower()

    def error_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "errors": [{"field": e.field, "message": e.message} for e in self.errors],
        }


@dataclass(frozen=True)
class ParsedCsv:
    rows: list[Row]
    warnings: list[str] = field(default_factory=list)


# ─── Parsing ───

def _decode(content: str | bytes) -> str:
    if isinstance(content, bytes):
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CsvStructureError(
                f"CSV file is not valid UTF-8 (invalid byte at offset {exc.start})",
                {"byte_offset": exc.start},
            ) from exc
    return content.lstrip("\ufeff")


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_csv(content: str | bytes) -> ParsedCsv:
    """Decode CSV text into Rows.

    Raises CsvStructureError when the bytes are not UTF-8, the header repeats
    or lacks a required column, a record does not line up with the header, or
    there are no data rows.
    """
    text = _decode(content)
    reader = csv.DictReader(io.StringIO(text, newline=""), restkey="__extra__")
    if reader.fieldnames is None:
        raise CsvStructureError("CSV file is empty or contains no valid data")

    reader.fieldnames = [h.strip().lower() for h in reader.fieldnames]
    headers = reader.fieldnames

    duplicated = sorted({h for h in headers if headers.count(h) > 1})
    if duplicated:
        raise CsvStructureError(
            f"Duplicate columns: {', '.join(duplicated)}",
            {"duplicate_columns": duplicated},
        )

    missing = [col for col in REQUIRED_COLUMNS if col not in headers]
    if missing:
        raise CsvStructureError(
            f"Missing required columns: {', '.join(missing)}",
            {"missing_columns": missing},
        )

    warnings: list[str] = []
    unknown = [h for h in headers if h not in ALL_COLUMNS]
    if unknown:
        message = f"Unknown columns will be ignored: {', '.join(unknown)}"
        logger.warning(message)
        warnings.append(message)

    rows: list[Row] = []
    try:
        for record in reader:
            line_number = len(rows) + 1
            if "__extra__" in record or any(record.get(h) is None for h in headers):
                raise CsvStructureError(
                    f"Row {line_number} has {_field_count(record)} fields, header has {len(headers)}",
                    {"line_number": line_number},
                )
            rows.append(Row(
                line_number=line_number,
                name=record["name"],
                email=record["email"],
                student_code=record["student_code"],
                phone=_optional(record.get("phone")),
                password=_optional(record.get("password")),
            ))
    except csv.Error as exc:
        raise CsvStructureError(f"CSV parsing error: {exc}") from exc

    if not rows:
        raise CsvStructureError("CSV file is empty or contains no valid data")

    return ParsedCsv(rows=rows, warnings=warnings)


def _field_count(record: dict) -> int:
    present = sum(1 for k, v in record.items() if k != "__extra__" and v is not None)
    return present + len(record.get("__extra__") or [])


# ─── Validation ───

class _StudentRowModel(BaseModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    email: EmailStr
    student_code: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    phone: Annotated[str, StringConstraints(strip_whitespace=True, max_length=20)] | None = None
    password: Annotated[str, StringConstraints(min_length=8)] | None = None


_MESSAGES = {
    ("name", "string_too_short"): "Name is required",
    ("name", "string_too_long"): "Name must not exceed 255 characters",
    ("email", None): "Email must be a valid email address",
    ("student_code", "string_too_short"): "Student code is required",
    ("student_code", "string_too_long"): "Student code must not exceed 50 characters",
    ("phone", "string_too_long"): "Phone must not exceed 20 characters",
    ("password", "string_too_short"): "Password must be at least 8 characters",
}


def _message_for(field_name: str, error_type: str, fallback: str) -> str:
    return (
        _MESSAGES.get((field_name, error_type))
        or _MESSAGES.get((field_name, None))
        or fallback
    )


class RowValidator:
    """Field-level rules for a single row. Pure: never raises for bad data."""

    def validate(self, row: Row) -> ValidatedRow:
        errors: list[FieldError] = []
        try:
            _StudentRowModel(
                name=row.name,
                email=row.email.strip(),
                student_code=row.student_code,
                phone=row.phone,
                password=row.password,
            )
        except ValidationError as exc:
            for err in exc.errors():
                field_name = str(err["loc"][0]) if err["loc"] else "row"
                message = _message_for(field_name, err["type"], err["msg"])
                if FieldError(field_name, message) not in errors:
                    errors.append(FieldError(field_name, message))

        return ValidatedRow(
            line_number=row.line_number,
            name=row.name.strip(),
            email=row.email.strip(),
            student_code=row.student_code.strip(),
            phone=row.phone,
            password=row.password,
            errors=tuple(errors),
        )


def validate_rows(rows: list[Row], validator: RowValidator | None = None) -> tuple[list[ValidatedRow], list[ValidatedRow]]:
    """Split rows into (valid, invalid), preserving file order in both."""
    validator = validator or RowValidator()
    valid: list[ValidatedRow] = []
    invalid: list[ValidatedRow] = []
    for row in rows:
        result = validator.validate(row)
        (valid if result.is_valid else invalid).append(result)
    return valid, invalid


# ─── File-level duplicates ───

@dataclass(frozen=True)
class InternalDuplicate:
    line_number: int
    field: str
    value: str
    first_seen_at_line: int

    @property
    def message(self) -> str:
        label = "email" if self.field == "email" else "student code"
        return f"Duplicate {label} found (first occurrence at row {self.first_seen_at_line})"

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "field": self.field,
            "value": self.value,
            "first_seen_at_line": self.first_seen_at_line,
            "message": self.message,
        }


@dataclass(frozen=True)
class InternalDuplicateReport:
    duplicates: list[InternalDuplicate]

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)


def detect_internal_duplicates(rows: list[ValidatedRow]) -> InternalDuplicateReport:
    """Flag every repeat of an email (case-insensitive) or student code (exact)."""
    first_email: dict[str, int] = {}
    first_code: dict[str, int] = {}
    duplicates: list[InternalDuplicate] = []

    for row in rows:
        email = row.normalized_email
        if email in first_email:
            duplicates.append(InternalDuplicate(row.line_number, "email", row.email, first_email[email]))
        else:
            first_email[email] = row.line_number

        if row.student_code in first_code:
            duplicates.append(
                InternalDuplicate(row.line_number, "student_code", row.student_code, first_code[row.student_code])
            )
        else:
            first_code[row.student_code] = row.line_number

    return InternalDuplicateReport(duplicates=duplicates)
