"""
Health and readiness checks
"""
from fastapi import APIRouter
from sqlalchemy import text

from klamai.core.logger import logger
from klamai.db.database import SessionLocal
from klamai.services.case_queue import case_queue
from klamai.services.specialty_resolver import fallback_specialty_id

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        if fallback_specialty_id(db) is None:
            return "error", "Fallback specialty is missing"
        return "ok", "Database reachable"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return "error", f"Database: {str(e)}"
    finally:
        db.close()


@router.get("/ready")
def readiness():
    db_status, db_detail = _check_database()
    queue_status = "ok" if case_queue.running else "error"
    ready = db_status == "ok" and queue_status == "ok"
    return {
        "status": "ready" if ready else "degraded",
        "checks": {
            "database": {"status": db_status, "detail": db_detail},
            "case_queue": {"status": queue_status},
        },
    }
