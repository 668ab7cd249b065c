"""Student CSV import endpoints: dry-run validation and bulk import."""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from roster.core.config import settings
from roster.core.deps import require_role
from roster.core.limiter import limiter
from roster.db.session import get_sync_session
from roster.schemas.imports import (
    BulkImportRequest,
    ImportResult,
    PreviewResult,
    ValidateCsvRequest,
)
from roster.services.bulk_import import (
    ImportPreview,
    ImportSummary,
    execute_import,
    prepare_import,
    preview_import,
)
from roster.services.errors import RosterImportError
from roster.services.persistence import SqlAlchemyGateway

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Helpers ───

def _rejected(exc: RosterImportError) -> HTTPException:
    logger.info("import rejected: %s (%s)", exc.code, exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())


def _to_result(summary: ImportSummary) -> ImportResult:
    data = summary.to_dict()
    return ImportResult(
        summary={k: data[k] for k in ("total", "created", "updated", "skipped", "failed", "strategy")},
        details=data["details"],
        invalid_rows=data["invalid_rows"],
        warnings=data["warnings"],
        message=summary.message,
    )


def _to_preview(preview: ImportPreview) -> PreviewResult:
    return PreviewResult(
        summary={
            "total_records": preview.total_records,
            "valid_records": len(preview.rows),
            "invalid_records": len(preview.invalid_rows),
            "internal_duplicates": len(preview.internal_duplicates),
            "database_duplicates": preview.database_duplicates,
        },
        valid_records=[
            {
                "line_number": flags.row.line_number,
                "data": {
                    "email": flags.row.email,
                    "name": flags.row.name,
                    "student_code": flags.row.student_code,
                    "phone": flags.row.phone,
                },
                "duplicates": {
                    "email": flags.email,
                    "student_code": flags.student_code,
                    "has_any_duplicate": flags.has_any_duplicate,
                },
            }
            for flags in preview.rows
        ],
        invalid_records=[row.error_dict() for row in preview.invalid_rows],
        internal_duplicates=[d.to_dict() for d in preview.internal_duplicates],
        warnings=preview.warnings,
    )


# ─── POST /students/validate-csv ───

@router.post(
    "/validate-csv",
    response_model=PreviewResult,
    summary="Validate a student CSV and flag duplicates without writing (instructor)",
)
@limiter.limit(settings.IMPORT_RATE_LIMIT)
def validate_csv(
    request: Request,
    payload: ValidateCsvRequest,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user: Annotated[object, Depends(require_role("instructor"))],
):
    try:
        preview = preview_import(SqlAlchemyGateway(db), payload.csv_data)
    except RosterImportError as exc:
        raise _rejected(exc)
    return _to_preview(preview)


# ─── POST /students/bulk-import ───

@router.post(
    "/bulk-import",
    response_model=ImportResult,
    summary="Bulk import students from CSV with a duplicate strategy (instructor)",
)
@limiter.limit(settings.IMPORT_RATE_LIMIT)
def bulk_import(
    request: Request,
    payload: BulkImportRequest,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user: Annotated[object, Depends(require_role("instructor"))],
):
    try:
        prepared = prepare_import(payload.csv_data)
    except RosterImportError as exc:
        raise _rejected(exc)

    if len(prepared.valid_rows) > settings.IMPORT_QUEUE_THRESHOLD:
        from roster.workers.import_tasks import run_bulk_import

        task = run_bulk_import.delay(payload.csv_data, payload.strategy)
        logger.info(
            "bulk import queued: %d rows, task %s, by %s",
            len(prepared.valid_rows), task.id, getattr(current_user, "email", None),
        )
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"message": "queued", "task_id": task.id},
        )

    summary = execute_import(SqlAlchemyGateway(db), prepared, payload.strategy)
    return _to_result(summary)
