"""Database schema readiness checks for the onboarding tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Tables the provisioning transaction writes to.
REQUIRED_ONBOARDING_TABLES = (
    "organizations",
    "accounts",
    "invitation_codes",
    "metadata_sync_tasks",
)


@dataclass(frozen=True)
class DBReadinessResult:
    """Result payload for DB schema readiness checks."""

    ready: bool
    missing_tables: list[str]
    checked_tables: list[str]


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    """Check whether required tables exist, using the dialect's inspector."""
    checked = list(required_tables)

    try:
        existing = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Failed listing tables", extra={"tables": checked})
        raise

    missing = [name for name in checked if name not in existing]
    if missing:
        logger.warning("Onboarding tables missing", extra={"missing_tables": missing})

    return DBReadinessResult(
        ready=not missing,
        missing_tables=missing,
        checked_tables=checked,
    )
