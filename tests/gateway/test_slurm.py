"""
SLURM gateway tests.

Command output is served by a scripted runner keyed on the command
prefix; no SLURM installation is needed.
"""

import re

import pytest

from mdrunner.cluster.validator import ResourceRequest
from mdrunner.errors import ConsistencyError, SubmissionError, TransportError
from mdrunner.gateway.base import (
    NO_RETRY,
    NOT_FOUND,
    GatewayClient,
    NotFound,
    RemoteState,
    SubmissionSpec,
)
from mdrunner.gateway.slurm import (
    CommandResult,
    SlurmGateway,
    parse_exit_code,
    parse_sbatch_output,
    parse_slurm_state,
    parse_squeue_line,
    render_batch_script,
    render_namd_config,
)
from mdrunner.jobs import JobLifecycleController, JobState, JobStore, SyncReconciler


class ScriptedRunner:
    """CommandRunner returning canned results for matching commands."""

    def __init__(self):
        self.responses = []
        self.commands = []

    def on(self, fragment: str, stdout: str = "", stderr: str = "", exit_code: int = 0):
        self.responses.append((fragment, CommandResult(exit_code, stdout, stderr)))
        return self

    def run(self, command: str, timeout: float) -> CommandResult:
        self.commands.append(command)
        for fragment, result in self.responses:
            if fragment in command:
                return result
        return CommandResult(0, "", "")


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def slurm(runner):
    return SlurmGateway(runner, username="jdoe", module_setup="")


@pytest.fixture
def spec():
    return SubmissionSpec(
        job_id="abc-123",
        name="equil_1",
        request=ResourceRequest(cores=24, memory_gb=48, walltime="04:00:00",
                                partition="amilan", qos="normal"),
        simulation_config={"temperature": 300.0, "steps": 50000, "structure": "system.psf"},
    )


# =============================================================================
# Parsers
# =============================================================================


class TestParsers:

    def test_sbatch_output(self):
        assert parse_sbatch_output("Submitted batch job 12345678\n") == "12345678"
        assert parse_sbatch_output("sbatch: error: Batch job submission failed") is None
        assert parse_sbatch_output("") is None

    @pytest.mark.parametrize("code,state", [
        ("PD", RemoteState.PENDING),
        ("R", RemoteState.RUNNING),
        ("CG", RemoteState.COMPLETING),
        ("COMPLETED", RemoteState.COMPLETED),
        ("CANCELLED by 12345", RemoteState.CANCELLED),
        ("CANCELLED+", RemoteState.CANCELLED),
        ("TIMEOUT", RemoteState.TIMEOUT),
        ("OUT_OF_MEMORY", RemoteState.OUT_OF_MEMORY),
        ("node_fail", RemoteState.NODE_FAIL),
    ])
    def test_slurm_state(self, code, state):
        assert parse_slurm_state(code) == state

    @pytest.mark.parametrize("code", ["", "WEIRD", "   "])
    def test_unknown_state(self, code):
        assert parse_slurm_state(code) is None

    @pytest.mark.parametrize("value,code", [
        ("0:0", 0),
        ("1:0", 1),
        ("0:9", 137),
        ("0:15", 143),
        ("2", 2),
        ("", None),
        ("x:y", None),
    ])
    def test_exit_code(self, value, code):
        assert parse_exit_code(value) == code

    def test_squeue_line(self):
        job = parse_squeue_line("7001|prod_run|RUNNING|48|96G|1-00:00:00|amilan|long|/scratch/run")

        assert job.remote_job_id == "7001"
        assert job.name == "prod_run"
        assert job.state == RemoteState.RUNNING
        assert job.cores == 48
        assert job.memory_gb == 96.0
        assert job.walltime == "24:00:00"
        assert job.partition == "amilan"
        assert job.qos == "long"
        assert job.work_dir == "/scratch/run"

    def test_squeue_line_with_blanks(self):
        job = parse_squeue_line("7002|sparse|PENDING||||||")

        assert job.cores is None
        assert job.memory_gb is None
        assert job.walltime is None
        assert job.partition is None

    def test_squeue_line_unlimited_time(self):
        assert parse_squeue_line("1|a|R|1|1G|UNLIMITED|amilan|normal|/").walltime is None

    def test_squeue_line_short_time(self):
        assert parse_squeue_line("1|a|R|1|1G|30:00|amilan|normal|/").walltime == "00:30:00"

    def test_squeue_line_unknown_state(self):
        assert parse_squeue_line("7003|odd|WEIRD|1|1G|1:00:00|amilan|normal|/") is None

    def test_squeue_line_without_id(self):
        assert parse_squeue_line("|noid|RUNNING|1|1G|1:00:00|amilan|normal|/").remote_job_id is None


class TestRendering:

    def test_batch_script_directives(self, spec):
        script = render_batch_script(spec, "/scratch/jobs/abc-123")

        assert script.startswith("#!/bin/bash\n")
        assert "#SBATCH --job-name=equil_1" in script
        assert "#SBATCH --partition=amilan" in script
        assert "#SBATCH --qos=normal" in script
        assert "#SBATCH --ntasks=24" in script
        assert "#SBATCH --mem=48G" in script
        assert "#SBATCH --time=04:00:00" in script
        assert "#SBATCH --output=equil_1_%j.out" in script
        assert "mpirun -np 24 namd3 config.namd" in script

    def test_fractional_memory_in_megabytes(self, spec):
        half = SubmissionSpec(
            job_id="x", name="half",
            request=ResourceRequest(cores=1, memory_gb=1.5, walltime="00:10:00",
                                    partition="atesting", qos="testing"),
        )

        assert "#SBATCH --mem=1536M" in render_batch_script(half, "/tmp")

    def test_namd_config(self, spec):
        config = render_namd_config(spec)

        assert re.search(r"^temperature\s+300\.0$", config, re.M)
        assert re.search(r"^structure\s+system\.psf$", config, re.M)
        assert re.search(r"^run\s+50000$", config.rstrip().splitlines()[-1])

    def test_namd_config_defaults(self):
        bare = SubmissionSpec(job_id="x", name="bare", request=ResourceRequest())

        config = render_namd_config(bare)

        assert re.search(r"^outputName\s+bare$", config, re.M)
        assert re.search(r"^run\s+1000000$", config, re.M)
        assert "structure" not in config


# =============================================================================
# Gateway operations
# =============================================================================


class TestSubmit:

    def test_submit_returns_job_id(self, slurm, runner, spec):
        runner.on("sbatch", stdout="Submitted batch job 4242\n")

        assert slurm.submit(spec, ["system.psf"]) == "4242"
        command = runner.commands[-1]
        assert "mkdir -p /scratch/alpine/jdoe/mdrunner_jobs/abc-123" in command
        assert "sbatch job.sbatch" in command

    def test_rejection_is_submission_error(self, slurm, runner, spec):
        runner.on("sbatch", stderr="sbatch: error: QOSMaxSubmitJobPerUserLimit", exit_code=1)

        with pytest.raises(SubmissionError, match="QOSMaxSubmitJobPerUserLimit"):
            slurm.submit(spec, [])

    def test_unparseable_output(self, slurm, runner, spec):
        runner.on("sbatch", stdout="something unexpected")

        with pytest.raises(SubmissionError):
            slurm.submit(spec, [])

    def test_module_setup_is_prefixed(self, runner, spec):
        gateway = SlurmGateway(runner, username="jdoe")
        runner.on("sbatch", stdout="Submitted batch job 1\n")

        gateway.submit(spec, [])

        assert runner.commands[-1].startswith("module load slurm/alpine && ")


class TestQueryStatus:

    def test_active_job_from_squeue(self, slurm, runner):
        runner.on("squeue -j 4242", stdout="4242|RUNNING|1:23:45\n")

        status = slurm.query_status("4242")

        assert status.state == RemoteState.RUNNING
        assert status.runtime == "1:23:45"
        assert status.exit_code is None
        assert not any("sacct" in c for c in runner.commands)

    def test_finished_job_from_sacct(self, slurm, runner):
        runner.on("squeue -j 4242", stdout="")
        runner.on("sacct -j 4242", stdout=(
            "4242|COMPLETED|0:0|02:00:00\n"
            "4242.batch|COMPLETED|0:0|02:00:00\n"
        ))

        status = slurm.query_status("4242")

        assert status.state == RemoteState.COMPLETED
        assert status.exit_code == 0
        assert status.runtime == "02:00:00"

    def test_failed_job_exit_code(self, slurm, runner):
        runner.on("sacct -j 4242", stdout="4242|FAILED|3:0|00:05:00\n")

        status = slurm.query_status("4242")

        assert status.state == RemoteState.FAILED
        assert status.exit_code == 3

    @pytest.mark.parametrize("code,state", [
        ("TIMEOUT", RemoteState.TIMEOUT),
        ("NODE_FAIL", RemoteState.NODE_FAIL),
        ("PREEMPTED", RemoteState.PREEMPTED),
    ])
    def test_abnormal_end_keeps_scheduler_state(self, slurm, runner, code, state):
        runner.on("sacct -j 4242", stdout=f"4242|{code}|0:0|04:00:00\n")

        status = slurm.query_status("4242")

        assert status.state == state
        assert status.exit_code == 0

    def test_unknown_everywhere_is_not_found(self, slurm, runner):
        runner.on("squeue -j 4242", stderr="slurm_load_jobs error: Invalid job id specified", exit_code=1)
        runner.on("sacct -j 4242", stdout="")

        status = slurm.query_status("4242")

        assert status is NOT_FOUND
        assert isinstance(status, NotFound)

    def test_sacct_failure_is_transport_error(self, slurm, runner):
        runner.on("sacct -j 4242", stderr="Connection refused", exit_code=1)

        with pytest.raises(TransportError):
            slurm.query_status("4242")

    def test_unrecognized_state_is_transport_error(self, slurm, runner):
        runner.on("squeue -j 4242", stdout="4242|SPECIAL_EXIT|0:01\n")

        with pytest.raises(TransportError, match="Unrecognized SLURM state"):
            slurm.query_status("4242")

    @pytest.mark.parametrize("bad_id", ["", "12; rm -rf /", "abc"])
    def test_invalid_id_is_rejected(self, slurm, runner, bad_id):
        with pytest.raises(ConsistencyError):
            slurm.query_status(bad_id)

        assert runner.commands == []

    def test_array_job_id_is_accepted(self, slurm, runner):
        runner.on("squeue -j 4242_3", stdout="4242_3|PENDING|0:00\n")

        assert slurm.query_status("4242_3").state == RemoteState.PENDING


class TestCancel:

    def test_cancel(self, slurm, runner):
        slurm.cancel("4242")

        assert runner.commands == ["scancel 4242"]

    def test_cancel_of_finished_job_succeeds(self, slurm, runner):
        runner.on("scancel", stderr="scancel: error: Kill job error on job id 4242: Invalid job id specified",
                  exit_code=1)

        slurm.cancel("4242")

    def test_cancel_failure(self, slurm, runner):
        runner.on("scancel", stderr="scancel: error: Unable to contact slurm controller", exit_code=1)

        with pytest.raises(TransportError):
            slurm.cancel("4242")


class TestDiscoveryAndLogs:

    def test_list_owned_jobs(self, slurm, runner):
        runner.on("squeue -u jdoe", stdout=(
            "7001|prod_run|RUNNING|48|96G|1-00:00:00|amilan|long|/scratch/run\n"
            "\n"
            "7002|queued|PENDING|24|48G|04:00:00|amilan|normal|/scratch/q\n"
            "7003|odd|WEIRD|1|1G|1:00:00|amilan|normal|/\n"
        ))

        jobs = slurm.list_owned_jobs()

        assert [j.remote_job_id for j in jobs] == ["7001", "7002"]

    def test_list_failure(self, slurm, runner):
        runner.on("squeue -u", stderr="timeout", exit_code=1)

        with pytest.raises(TransportError):
            slurm.list_owned_jobs()

    def test_fetch_logs(self, slurm, runner):
        runner.on("sacct -j 4242 --format=JobName", stdout="equil_1|/scratch/jobs/abc\n")
        runner.on("cat /scratch/jobs/abc/equil_1_4242.out", stdout="Info: NAMD\n")
        runner.on("cat /scratch/jobs/abc/equil_1_4242.err", stderr="No such file", exit_code=1)

        logs = slurm.fetch_logs("4242")

        assert logs.stdout == "Info: NAMD\n"
        assert logs.stderr is None

    def test_fetch_logs_unknown_job(self, slurm, runner):
        runner.on("sacct -j 4242", stdout="")

        with pytest.raises(TransportError):
            slurm.fetch_logs("4242")


class TestSyncWithSlurm:
    """Scheduler verdicts flow through a sync pass into the job store."""

    @pytest.mark.parametrize("code", ["TIMEOUT", "NODE_FAIL", "PREEMPTED"])
    def test_abnormal_end_with_zero_exit_is_failed(self, slurm, runner, tmp_path, code):
        store = JobStore(tmp_path / "jobs.db")
        client = GatewayClient(slurm, timeout=2.0, retry_policy=NO_RETRY)
        controller = JobLifecycleController(store, client)
        runner.on("sbatch", stdout="Submitted batch job 4242\n")
        runner.on("squeue -j 4242", stdout="")
        runner.on("sacct -j 4242", stdout=f"4242|{code}|0:0|04:00:00\n")
        job = controller.create_job("equil_1", ResourceRequest(
            cores=24, memory_gb=48, walltime="04:00:00", partition="amilan", qos="normal",
        ))
        controller.submit_job(job.job_id)

        SyncReconciler(store, client).sync(manual=True)

        stored = store.get_job(job.job_id)
        assert stored.state == JobState.FAILED
        assert stored.remote_state == code
        client.shutdown()
