"""
JobLifecycleController tests: create, submit, cancel, delete, logs.
"""

import sqlite3

import pytest

from mdrunner.cluster.validator import ResourceRequest
from mdrunner.errors import (
    ConsistencyError,
    JobNotFoundError,
    SubmissionError,
    TransportError,
    UnsupportedCapabilityError,
    ValidationError,
)
from mdrunner.gateway.base import GatewayClient, NO_RETRY, RemoteState
from mdrunner.gateway.memory import InMemorySchedulerGateway
from mdrunner.jobs import JobLifecycleController, JobState, SyncReconciler


class DiscoveringGateway(InMemorySchedulerGateway):
    """Runs discovery after accepting a job, before submit returns."""

    reconciler = None

    def submit(self, spec, files):
        remote_id = super().submit(spec, files)
        self.reconciler.discover()
        return remote_id


# =============================================================================
# Create
# =============================================================================


class TestCreateJob:

    def test_valid_request_creates_job(self, controller, store, valid_request):
        job = controller.create_job("equil_1", valid_request, {"steps": 1000})

        assert job.state == JobState.CREATED
        assert store.get_job(job.job_id).simulation_config == {"steps": 1000}

    def test_invalid_request_is_not_persisted(self, controller, store):
        request = ResourceRequest(cores=256, memory_gb=2000, walltime="200:00:00",
                                  partition="amilan", qos="normal")

        with pytest.raises(ValidationError) as exc_info:
            controller.create_job("too_big", request)

        assert store.count_jobs() == 0
        result = exc_info.value.result
        assert not result.is_valid
        assert len(result.issues) >= 3
        assert "cores" in result.field_errors
        assert "memory" in result.field_errors
        assert "walltime" in result.field_errors

    def test_bad_name_and_bad_request_reported_together(self, controller, valid_request):
        request = ResourceRequest(cores=0, memory_gb=48, walltime="04:00:00",
                                  partition="amilan", qos="normal")

        with pytest.raises(ValidationError) as exc_info:
            controller.create_job("bad name!", request)

        assert set(exc_info.value.result.field_errors) == {"job_name", "cores"}

    def test_get_missing_job(self, controller):
        with pytest.raises(JobNotFoundError):
            controller.get_job("missing")


# =============================================================================
# Submit
# =============================================================================


class TestSubmitJob:

    def test_submit_attaches_remote_id(self, controller, gateway, create_job):
        job = create_job()

        submitted = controller.submit_job(job.job_id)

        assert submitted.state == JobState.SUBMITTED
        assert submitted.remote_job_id is not None
        assert gateway.has_job(submitted.remote_job_id)

    def test_resubmit_is_rejected(self, controller, gateway, submitted_job):
        job = submitted_job()

        with pytest.raises(ConsistencyError):
            controller.submit_job(job.job_id)

        assert gateway.call_count("submit") == 1

    def test_rejected_submission_stays_validated(self, controller, gateway, create_job, store):
        job = create_job()
        gateway.reject_next_submission("QOSMaxSubmitJobPerUserLimit")

        with pytest.raises(SubmissionError):
            controller.submit_job(job.job_id)

        stored = store.get_job(job.job_id)
        assert stored.state == JobState.VALIDATED
        assert stored.remote_job_id is None
        assert stored.submitting is False
        assert "QOSMaxSubmitJobPerUserLimit" in stored.error_info

    def test_gateway_down_leaves_job_retryable(self, controller, gateway, create_job, store):
        job = create_job()
        gateway.unreachable = True

        with pytest.raises(TransportError):
            controller.submit_job(job.job_id)

        assert store.get_job(job.job_id).state == JobState.VALIDATED

        gateway.unreachable = False
        retried = controller.submit_job(job.job_id)
        assert retried.state == JobState.SUBMITTED

    def test_submit_is_not_retried_on_transient_error(self, store, create_job, gateway):
        """A lost submit reply may mean the job was accepted; never resend."""
        client = GatewayClient(gateway, timeout=2.0)  # default retry policy
        controller = JobLifecycleController(store, client)
        job = create_job()
        gateway.fail_next("submit", "connection reset by peer")

        with pytest.raises(TransportError):
            controller.submit_job(job.job_id)

        assert gateway.call_count("submit") == 1
        client.shutdown()

    def test_submit_timeout_is_transport_error(self, store, create_job, gateway):
        client = GatewayClient(gateway, timeout=0.1, retry_policy=NO_RETRY)
        controller = JobLifecycleController(store, client)
        job = create_job()
        gateway.set_delay("submit", 0.5)

        with pytest.raises(TransportError, match="timed out"):
            controller.submit_job(job.job_id)

        assert store.get_job(job.job_id).state == JobState.VALIDATED
        client.shutdown()

    def test_failed_local_commit_releases_claim(self, controller, gateway, create_job, store, monkeypatch):
        job = create_job()

        def locked(job_id, remote_job_id):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "mark_submitted", locked)

        with pytest.raises(sqlite3.OperationalError):
            controller.submit_job(job.job_id)

        stored = store.get_job(job.job_id)
        assert stored.state == JobState.VALIDATED
        assert stored.submitting is False
        assert "Accepted as remote job 10000001" in stored.error_info

    def test_remote_id_held_by_tracked_job_releases_claim(self, controller, create_job, store):
        other = create_job()
        store.claim_for_submission(other.job_id)
        store.mark_submitted(other.job_id, "10000001")
        job = create_job()

        with pytest.raises(ConsistencyError, match="already tracked"):
            controller.submit_job(job.job_id)

        stored = store.get_job(job.job_id)
        assert stored.submitting is False
        assert controller.delete_job(job.job_id).deleted is True

    def test_discovery_during_submit_is_merged(self, store, valid_request):
        gateway = DiscoveringGateway()
        client = GatewayClient(gateway, timeout=2.0, retry_policy=NO_RETRY)
        gateway.reconciler = SyncReconciler(store, client)
        controller = JobLifecycleController(store, client)
        job = controller.create_job("equil_1", valid_request)

        submitted = controller.submit_job(job.job_id)

        assert submitted.job_id == job.job_id
        assert submitted.state == JobState.SUBMITTED
        assert store.count_jobs() == 1
        assert store.get_job_by_remote_id(submitted.remote_job_id).job_id == job.job_id
        client.shutdown()

    def test_submit_missing_job(self, controller):
        with pytest.raises(JobNotFoundError):
            controller.submit_job("missing")


# =============================================================================
# Cancel
# =============================================================================


class TestCancelJob:

    def test_cancel_unsubmitted_is_local(self, controller, gateway, create_job):
        job = create_job()

        cancelled = controller.cancel_job(job.job_id)

        assert cancelled.state == JobState.CANCELLED
        assert gateway.call_count("cancel") == 0

    def test_cancel_submitted_cancels_remote(self, controller, gateway, submitted_job):
        job = submitted_job()

        cancelled = controller.cancel_job(job.job_id)

        assert cancelled.state == JobState.CANCELLED
        assert gateway.call_count("cancel") == 1

    def test_cancel_failure_keeps_state(self, controller, gateway, submitted_job, store):
        job = submitted_job()
        gateway.unreachable = True

        with pytest.raises(TransportError):
            controller.cancel_job(job.job_id)

        assert store.get_job(job.job_id).state == JobState.SUBMITTED

    def test_cancel_terminal_is_rejected(self, controller, create_job):
        job = create_job()
        controller.cancel_job(job.job_id)

        with pytest.raises(ConsistencyError):
            controller.cancel_job(job.job_id)


# =============================================================================
# Delete
# =============================================================================


class TestDeleteJob:

    def test_local_delete_ignores_state(self, controller, gateway, submitted_job, store):
        job = submitted_job()

        result = controller.delete_job(job.job_id, delete_remote=False)

        assert result.deleted is True
        assert result.remote_cancelled is False
        assert store.get_job(job.job_id) is None
        assert gateway.call_count("cancel") == 0

    def test_remote_delete_cancels_then_deletes(self, controller, gateway, submitted_job, store):
        job = submitted_job()

        result = controller.delete_job(job.job_id, delete_remote=True)

        assert result.deleted is True
        assert result.remote_cancelled is True
        assert store.get_job(job.job_id) is None

    def test_remote_delete_keeps_record_when_cancel_fails(self, controller, gateway, submitted_job, store):
        job = submitted_job()
        gateway.unreachable = True

        result = controller.delete_job(job.job_id, delete_remote=True)

        assert result.deleted is False
        assert isinstance(result.error, TransportError)
        assert store.get_job(job.job_id) is not None

    def test_remote_delete_of_finished_remote_job(self, controller, gateway, submitted_job, store):
        """Cancelling a job the scheduler already finished succeeds."""
        job = submitted_job()
        gateway.set_state(job.remote_job_id, RemoteState.COMPLETED, exit_code=0)

        result = controller.delete_job(job.job_id, delete_remote=True)

        assert result.deleted is True

    def test_remote_delete_of_terminal_job_skips_cancel(self, controller, gateway, create_job):
        job = create_job()
        controller.cancel_job(job.job_id)

        result = controller.delete_job(job.job_id, delete_remote=True)

        assert result.deleted is True
        assert gateway.call_count("cancel") == 0

    def test_remote_delete_without_remote_id(self, controller, create_job, store):
        job = create_job()

        with pytest.raises(ConsistencyError):
            controller.delete_job(job.job_id, delete_remote=True)

        assert store.get_job(job.job_id) is not None

    def test_local_delete_during_submission(self, controller, create_job, store):
        job = create_job()
        store.claim_for_submission(job.job_id)

        result = controller.delete_job(job.job_id)

        assert result.deleted is True
        assert store.get_job(job.job_id) is None

    def test_remote_delete_during_submission_is_rejected(self, controller, create_job, store):
        job = create_job()
        store.claim_for_submission(job.job_id)

        with pytest.raises(ConsistencyError, match="being submitted"):
            controller.delete_job(job.job_id, delete_remote=True)

        assert store.get_job(job.job_id) is not None


# =============================================================================
# Logs
# =============================================================================


class TestRefetchLogs:

    def test_logs_are_fetched_and_cached(self, controller, gateway, submitted_job, store):
        job = submitted_job()
        gateway.set_logs(job.remote_job_id, "Info: NAMD 3.0\n", "")

        logs = controller.refetch_logs(job.job_id)

        assert logs.stdout == "Info: NAMD 3.0\n"
        assert store.get_job(job.job_id).stdout_log == "Info: NAMD 3.0\n"

    def test_unsubmitted_job_has_no_logs(self, controller, create_job):
        job = create_job()

        with pytest.raises(ConsistencyError):
            controller.refetch_logs(job.job_id)

    def test_unsupported_gateway(self, store, create_job):
        gateway = InMemorySchedulerGateway(supports_log_refetch=False)
        client = GatewayClient(gateway, timeout=2.0, retry_policy=NO_RETRY)
        controller = JobLifecycleController(store, client)
        job = controller.create_job("no_logs", ResourceRequest(
            cores=24, memory_gb=48, walltime="04:00:00", partition="amilan", qos="normal",
        ))
        controller.submit_job(job.job_id)

        with pytest.raises(UnsupportedCapabilityError):
            controller.refetch_logs(job.job_id)
        client.shutdown()
