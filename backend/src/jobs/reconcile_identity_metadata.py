"""
Identity metadata reconciliation job.

Re-pushes onboarding metadata to the identity directory for every account
whose MetadataSyncTask is still pending. The relational rows are already
authoritative; this job only repairs the directory projection, so it never
touches accounts, organizations or invitation codes.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.onboarding import METADATA_SYNC_BATCH_SIZE, METADATA_SYNC_MAX_ATTEMPTS
from src.models.metadata_sync_task import MetadataSyncStatus, MetadataSyncTask
from src.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditOutcome,
    write_audit_log_sync,
)
from src.platform.identity_client import IdentityDirectory, IdentityDirectoryError

logger = logging.getLogger(__name__)


class IdentityMetadataReconciliationJob:
    """
    Retries pending identity metadata merges.

    Should run every few minutes via cron or task scheduler.
    Handles:
    - Merges that failed during the provisioning call
    - Merges lost because the caller disconnected after commit
    """

    def __init__(
        self,
        db_session: Session,
        identity: IdentityDirectory,
        batch_size: int = METADATA_SYNC_BATCH_SIZE,
        max_attempts: int = METADATA_SYNC_MAX_ATTEMPTS,
        dry_run: bool = False,
    ):
        self.db_session = db_session
        self.identity = identity
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.dry_run = dry_run
        self.correlation_id = str(uuid.uuid4())

    def run(self) -> dict:
        """
        Execute one reconciliation pass.

        Returns:
            Summary of reconciliation results
        """
        logger.info(
            "Starting identity metadata reconciliation",
            extra={"batch_size": self.batch_size, "dry_run": self.dry_run},
        )

        results = {
            "started_at": datetime.now(timezone.utc).isoformat(),
            "tasks_checked": 0,
            "tasks_synced": 0,
            "tasks_failed": 0,
            "dry_run": self.dry_run,
            "errors": [],
        }

        tasks = self._pending_tasks()
        results["tasks_checked"] = len(tasks)

        for task in tasks:
            if self.dry_run:
                logger.info(
                    "[DRY RUN] Would sync identity metadata",
                    extra={"principal_id": task.identity_id, "attempts": task.attempts},
                )
                continue

            error = self._reconcile_task(task)
            if error is None:
                results["tasks_synced"] += 1
            else:
                results["tasks_failed"] += 1
                results["errors"].append(error)

        results["completed_at"] = datetime.now(timezone.utc).isoformat()
        logger.info("Identity metadata reconciliation completed", extra=results)
        return results

    def _pending_tasks(self) -> List[MetadataSyncTask]:
        return (
            self.db_session.query(MetadataSyncTask)
            .filter(
                MetadataSyncTask.status == MetadataSyncStatus.PENDING,
                MetadataSyncTask.attempts < self.max_attempts,
            )
            .order_by(MetadataSyncTask.created_at.asc())
            .limit(self.batch_size)
            .all()
        )

    def _reconcile_task(self, task: MetadataSyncTask) -> Optional[str]:
        """
        Merge one task's metadata and record the result.

        Returns:
            None on success, otherwise an error message
        """
        identity_id = task.identity_id
        task_id = task.id
        payload = dict(task.payload)

        try:
            self.identity.merge_metadata(identity_id, payload)
        except IdentityDirectoryError as e:
            task.record_failure(str(e))
            attempts = task.attempts
            commit_error = self._commit(identity_id)
            if commit_error:
                return commit_error
            logger.warning(
                "Identity metadata sync failed",
                extra={
                    "principal_id": identity_id,
                    "attempts": attempts,
                    "exhausted": attempts >= self.max_attempts,
                },
            )
            self._emit(AuditAction.METADATA_SYNC_FAILED, AuditOutcome.FAILURE, identity_id, task_id, payload)
            return f"Failed to sync metadata for {identity_id}: {e}"

        task.mark_completed()
        commit_error = self._commit(identity_id)
        if commit_error:
            return commit_error
        logger.info("Identity metadata synced", extra={"principal_id": identity_id})
        self._emit(AuditAction.METADATA_SYNCED, AuditOutcome.SUCCESS, identity_id, task_id, payload)
        return None

    def _commit(self, identity_id: str) -> Optional[str]:
        """Commit the task update. On a store error, roll back and return the message."""
        try:
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(
                "Failed to record identity metadata sync result",
                extra={"principal_id": identity_id, "error": str(e)},
            )
            return f"Failed to record sync result for {identity_id}: {e}"
        return None

    def _emit(
        self,
        action: AuditAction,
        outcome: AuditOutcome,
        identity_id: str,
        task_id: str,
        payload: dict,
    ) -> None:
        write_audit_log_sync(
            db=self.db_session,
            event=AuditEvent(
                action=action,
                outcome=outcome,
                organization_id=payload.get("companyId"),
                identity_id=identity_id,
                resource_type="metadata_sync_task",
                resource_id=task_id,
                correlation_id=self.correlation_id,
                source="worker",
            ),
        )
