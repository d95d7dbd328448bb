"""
Tests for the identity metadata reconciliation job.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from src.jobs.reconcile_identity_metadata import IdentityMetadataReconciliationJob
from src.models import MetadataSyncStatus, MetadataSyncTask, onboarding_metadata
from src.platform.audit import AuditAction
from src.services.provisioning_service import ProvisioningService

from conftest import audit_actions, get_task


@pytest.fixture
def pending_task(db_session, identity, invitation):
    """Employee provisioned while the directory rejected the merge."""
    identity.fail_merge = True
    ProvisioningService(db_session, identity).provision_employee("user_employee", "AB3DE7")
    identity.fail_merge = False
    identity.merge_calls.clear()
    return get_task(db_session, "user_employee")


def add_task(db_session, identity_id, organization_id="org-1", attempts=0):
    task = MetadataSyncTask.create_pending(identity_id, onboarding_metadata("EMPLOYEE", organization_id))
    task.attempts = attempts
    db_session.add(task)
    db_session.commit()
    return task


class TestReconciliationRun:
    """Pending tasks are merged and marked completed."""

    def test_completes_pending_task(self, db_session, identity, pending_task, organization):
        results = IdentityMetadataReconciliationJob(db_session, identity).run()

        assert results["tasks_checked"] == 1
        assert results["tasks_synced"] == 1
        assert results["tasks_failed"] == 0
        assert identity.metadata["user_employee"] == {
            "onboardingCompleted": True,
            "role": "EMPLOYEE",
            "companyId": organization.id,
        }
        assert get_task(db_session, "user_employee").status == MetadataSyncStatus.COMPLETED

    def test_completed_tasks_are_skipped(self, db_session, identity, pending_task):
        job = IdentityMetadataReconciliationJob(db_session, identity)
        job.run()
        identity.merge_calls.clear()

        results = job.run()

        assert results["tasks_checked"] == 0
        assert identity.merge_calls == []

    def test_failure_records_attempt(self, db_session, identity, pending_task):
        identity.fail_merge = True

        results = IdentityMetadataReconciliationJob(db_session, identity).run()

        assert results["tasks_failed"] == 1
        assert "user_employee" in results["errors"][0]
        task = get_task(db_session, "user_employee")
        assert task.status == MetadataSyncStatus.PENDING
        assert task.attempts == 2
        assert AuditAction.METADATA_SYNC_FAILED.value in audit_actions(db_session)

    def test_exhausted_tasks_are_not_retried(self, db_session, identity):
        add_task(db_session, "user_exhausted", attempts=3)

        results = IdentityMetadataReconciliationJob(db_session, identity, max_attempts=3).run()

        assert results["tasks_checked"] == 0
        assert identity.merge_calls == []

    def test_batch_size_limits_work(self, db_session, identity):
        for i in range(3):
            add_task(db_session, f"user_{i}")

        results = IdentityMetadataReconciliationJob(db_session, identity, batch_size=2).run()

        assert results["tasks_checked"] == 2
        assert len(identity.merge_calls) == 2

    def test_dry_run_does_not_merge(self, db_session, identity, pending_task):
        results = IdentityMetadataReconciliationJob(db_session, identity, dry_run=True).run()

        assert results["dry_run"] is True
        assert results["tasks_checked"] == 1
        assert results["tasks_synced"] == 0
        assert identity.merge_calls == []
        assert get_task(db_session, "user_employee").status == MetadataSyncStatus.PENDING

    def test_success_is_audited_as_worker(self, db_session, identity, pending_task):
        IdentityMetadataReconciliationJob(db_session, identity).run()

        assert audit_actions(db_session).count(AuditAction.METADATA_SYNCED.value) == 1

    def test_store_error_on_one_task_does_not_abort_batch(self, db_session, identity):
        add_task(db_session, "user_0")
        add_task(db_session, "user_1")
        real_commit = db_session.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE metadata_sync_tasks", {}, Exception("database is locked"))
            return real_commit()

        with patch.object(db_session, "commit", side_effect=flaky_commit):
            results = IdentityMetadataReconciliationJob(db_session, identity).run()

        assert results["tasks_checked"] == 2
        assert results["tasks_synced"] == 1
        assert results["tasks_failed"] == 1
        assert "Failed to record sync result" in results["errors"][0]
        db_session.expire_all()
        statuses = sorted(t.status.value for t in db_session.query(MetadataSyncTask).all())
        assert statuses == ["completed", "pending"]


class TestMetadataSyncWorker:
    """Cron entry point."""

    def test_exits_when_clerk_not_configured(self):
        from src.workers import metadata_sync_job

        with patch.object(metadata_sync_job, "get_identity_client", return_value=None):
            with pytest.raises(SystemExit) as exc_info:
                metadata_sync_job.main()

        assert exc_info.value.code == 1

    def test_runs_job_with_session(self, session_factory, identity):
        from src.workers import metadata_sync_job

        client = MagicMock(wraps=identity)
        with patch.object(metadata_sync_job, "get_identity_client", return_value=client), \
                patch.object(metadata_sync_job, "get_session_factory", return_value=session_factory):
            metadata_sync_job.main()

        client.close.assert_called_once()

    def test_crashed_run_exits_nonzero(self, session_factory, identity):
        from src.workers import metadata_sync_job

        with patch.object(metadata_sync_job, "get_identity_client", return_value=identity), \
                patch.object(metadata_sync_job, "get_session_factory", return_value=session_factory), \
                patch.object(metadata_sync_job, "IdentityMetadataReconciliationJob") as job_cls:
            job_cls.return_value.run.side_effect = RuntimeError("database went away")
            with pytest.raises(SystemExit) as exc_info:
                metadata_sync_job.main()

        assert exc_info.value.code == 1
