"""Pydantic schemas for the student CSV import endpoints."""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BulkImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csv_data: str = Field(alias="csvData", min_length=1)
    strategy: Literal["skip", "update", "suffix"] = "skip"


class ValidateCsvRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csv_data: str = Field(alias="csvData", min_length=1)


class StudentRecord(BaseModel):
    email: str
    name: str | None = None
    student_code: str
    phone: str | None = None
    original_email: str | None = None


class ImportRowResult(BaseModel):
    line_number: int
    status: Literal["created", "created_with_suffix", "updated", "skipped", "failed"]
    record: StudentRecord
    message: str


class ImportRowError(BaseModel):
    field: str
    message: str


class InvalidRow(BaseModel):
    line_number: int
    errors: list[ImportRowError]


class ImportSummaryOut(BaseModel):
    total: int
    created: int
    updated: int
    skipped: int
    failed: int
    strategy: str


class ImportResult(BaseModel):
    summary: ImportSummaryOut
    details: list[ImportRowResult]
    invalid_rows: list[InvalidRow] = []
    warnings: list[str] = []
    message: str


class DuplicateFlags(BaseModel):
    email: bool
    student_code: bool
    has_any_duplicate: bool


class PreviewRow(BaseModel):
    line_number: int
    data: StudentRecord
    duplicates: DuplicateFlags


class InternalDuplicateOut(BaseModel):
    line_number: int
    field: str
    value: str
    first_seen_at_line: int
    message: str


class PreviewSummary(BaseModel):
    total_records: int
    valid_records: int
    invalid_records: int
    internal_duplicates: int
    database_duplicates: int


class PreviewResult(BaseModel):
    summary: PreviewSummary
    valid_records: list[PreviewRow]
    invalid_records: list[InvalidRow]
    internal_duplicates: list[InternalDuplicateOut]
    warnings: list[str] = []
    message: str = "CSV validation completed"
