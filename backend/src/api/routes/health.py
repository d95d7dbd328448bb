from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import SQLAlchemyError

from src.database.session import get_db_session
from src.platform.db_readiness import (
    REQUIRED_ONBOARDING_TABLES,
    check_required_tables,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
def readiness(response: Response, db=Depends(get_db_session)):
    """Readiness probe that validates the onboarding tables exist."""
    try:
        result = check_required_tables(db, REQUIRED_ONBOARDING_TABLES)
    except SQLAlchemyError:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "checks": {"database": "error"}}

    if not result.ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if result.ready else "not_ready",
        "checks": {
            "database": "ok",
            "onboarding_tables": {
                "required": result.checked_tables,
                "missing": result.missing_tables,
            },
        },
    }
