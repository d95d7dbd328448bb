"""
Identity metadata sync job: cron entry point for reconciliation.

Runs IdentityMetadataReconciliationJob once and exits. Exit code 1 signals
a configuration problem or a crashed run; individual merge failures are
reported in the stats and retried on the next run.

Run as a cron job:
    python -m src.workers.metadata_sync_job
"""

import logging
import sys

from src.config.onboarding import METADATA_SYNC_DRY_RUN
from src.database.session import get_session_factory
from src.jobs.reconcile_identity_metadata import IdentityMetadataReconciliationJob
from src.platform.identity_client import get_identity_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Entry point for the metadata sync job."""
    logger.info(
        "Metadata Sync Job starting",
        extra={"dry_run": METADATA_SYNC_DRY_RUN},
    )

    identity = get_identity_client()
    if identity is None:
        logger.error("CLERK_SECRET_KEY is not configured")
        sys.exit(1)

    session = get_session_factory()()
    try:
        job = IdentityMetadataReconciliationJob(
            db_session=session,
            identity=identity,
            dry_run=METADATA_SYNC_DRY_RUN,
        )
        stats = job.run()
        logger.info("Metadata Sync Job stats", extra={k: v for k, v in stats.items() if k != "errors"})
    except Exception as exc:
        logger.error(
            "Metadata Sync Job failed",
            extra={"error": str(exc)},
            exc_info=True,
        )
        sys.exit(1)
    finally:
        session.close()
        identity.close()

    logger.info("Metadata Sync Job finished")


if __name__ == "__main__":
    main()
