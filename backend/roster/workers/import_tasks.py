"""Celery task for student imports too large to run inside a request."""
import logging

from roster.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ─── Sync DB session factory (Celery workers are synchronous) ───

def _get_sync_session():
    """Return a sync SQLAlchemy session. Caller must close it."""
    from roster.db.session import SyncSessionLocal

    return SyncSessionLocal()


# acks_late is off: a redelivered suffix import would create a second set of accounts.
@celery_app.task(name="tasks.run_bulk_import", acks_late=False)
def run_bulk_import(csv_text: str, strategy: str = "skip") -> dict:
    """Run a full student import in the worker and return the serialized summary.

    Whole-call rejections are returned as {"error": code, "message", "details"}
    rather than raised, so the result backend always holds a JSON payload.
    """
    from roster.services.bulk_import import run_import
    from roster.services.errors import RosterImportError
    from roster.services.persistence import SqlAlchemyGateway

    logger.info("run_bulk_import started: strategy=%s", strategy)
    db = _get_sync_session()
    try:
        summary = run_import(SqlAlchemyGateway(db), csv_text, strategy)
    except RosterImportError as exc:
        logger.warning("run_bulk_import rejected: %s (%s)", exc.code, exc.message)
        return {"error": exc.code, "message": exc.message, "details": exc.details}
    finally:
        db.close()

    logger.info("run_bulk_import finished: %s", summary.message)
    return summary.to_dict()
