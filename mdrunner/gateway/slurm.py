"""
SLURM gateway.

Builds sbatch/squeue/sacct/scancel command lines and parses their output.
The commands run through a CommandRunner: LocalCommandRunner executes them
with subprocess on a login node, an SSH-backed runner supplied by the
connection layer executes them remotely.

Status lookup order is squeue (active jobs) then sacct (accounting);
a job neither knows is reported as NOT_FOUND.
"""

import logging
import re
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol

from mdrunner.cluster.validator import parse_memory_gb
from mdrunner.errors import ConsistencyError, SubmissionError, TransportError
from .base import (
    JobLogs,
    NOT_FOUND,
    RemoteJob,
    RemoteSchedulerGateway,
    RemoteState,
    RemoteStatus,
    StatusResult,
    SubmissionSpec,
)


logger = logging.getLogger(__name__)


_SUBMITTED_RE = re.compile(r"Submitted batch job (\d+)")
_JOB_ID_RE = re.compile(r"^\d+(?:_\d+)?$")

_STATE_CODES = {
    "PD": RemoteState.PENDING,
    "PENDING": RemoteState.PENDING,
    "CF": RemoteState.PENDING,
    "CONFIGURING": RemoteState.PENDING,
    "RQ": RemoteState.PENDING,
    "REQUEUED": RemoteState.PENDING,
    "R": RemoteState.RUNNING,
    "RUNNING": RemoteState.RUNNING,
    "S": RemoteState.RUNNING,
    "SUSPENDED": RemoteState.RUNNING,
    "CG": RemoteState.COMPLETING,
    "COMPLETING": RemoteState.COMPLETING,
    "CD": RemoteState.COMPLETED,
    "COMPLETED": RemoteState.COMPLETED,
    "F": RemoteState.FAILED,
    "FAILED": RemoteState.FAILED,
    "BF": RemoteState.FAILED,
    "BOOT_FAIL": RemoteState.FAILED,
    "DL": RemoteState.FAILED,
    "DEADLINE": RemoteState.FAILED,
    "CA": RemoteState.CANCELLED,
    "CANCELLED": RemoteState.CANCELLED,
    "TO": RemoteState.TIMEOUT,
    "TIMEOUT": RemoteState.TIMEOUT,
    "NF": RemoteState.NODE_FAIL,
    "NODE_FAIL": RemoteState.NODE_FAIL,
    "PR": RemoteState.PREEMPTED,
    "PREEMPTED": RemoteState.PREEMPTED,
    "OOM": RemoteState.OUT_OF_MEMORY,
    "OUT_OF_MEMORY": RemoteState.OUT_OF_MEMORY,
}

# scancel stderr for ids the scheduler already forgot or finished
_CANCEL_NOOP_MARKERS = (
    "invalid job id",
    "already completing or completed",
    "job has finished",
)


# =============================================================================
# Parsers
# =============================================================================


def parse_sbatch_output(output: str) -> Optional[str]:
    """Extract the job id from "Submitted batch job 12345678"."""
    match = _SUBMITTED_RE.search(output or "")
    return match.group(1) if match else None


def parse_slurm_state(code: str) -> Optional[RemoteState]:
    """
    Map a SLURM state code or name to RemoteState.

    sacct reports e.g. "CANCELLED by 12345"; only the first word counts.
    Returns None for states this module does not know.
    """
    words = (code or "").split()
    if not words:
        return None
    return _STATE_CODES.get(words[0].rstrip("+").upper())


def parse_exit_code(value: Optional[str]) -> Optional[int]:
    """
    Parse sacct's "exit:signal" ExitCode field.

    A job killed by a signal reports 128 + signal, the shell convention.
    """
    if not value:
        return None
    parts = value.strip().split(":")
    try:
        code = int(parts[0])
        signal = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return None
    if code == 0 and signal:
        return 128 + signal
    return code


def parse_squeue_line(line: str) -> Optional[RemoteJob]:
    """
    Parse one line of `squeue -o '%i|%j|%T|%C|%m|%l|%P|%q|%Z'`.

    Fields the scheduler leaves blank or unparseable become None.
    """
    fields = line.strip().split("|")
    if len(fields) < 3:
        return None
    fields += [""] * (9 - len(fields))
    job_id, name, state_code, cpus, memory, time_limit, partition, qos, work_dir = fields[:9]

    state = parse_slurm_state(state_code)
    if state is None:
        logger.warning(f"Skipping squeue entry with unknown state: {line!r}")
        return None

    try:
        cores = int(cpus) if cpus else None
    except ValueError:
        cores = None

    return RemoteJob(
        remote_job_id=job_id.strip() or None,
        name=name.strip(),
        state=state,
        cores=cores,
        memory_gb=parse_memory_gb(memory) if memory else None,
        walltime=_normalize_time_limit(time_limit),
        partition=partition.strip() or None,
        qos=qos.strip() or None,
        work_dir=work_dir.strip() or None,
    )


def _normalize_time_limit(value: str) -> Optional[str]:
    """Turn SLURM's "D-HH:MM:SS" / "MM:SS" time limit into HH:MM:SS."""
    value = (value or "").strip()
    if not value or value.upper() in ("UNLIMITED", "INVALID", "N/A"):
        return None
    days = 0
    if "-" in value:
        day_part, value = value.split("-", 1)
        try:
            days = int(day_part)
        except ValueError:
            return None
    parts = value.split(":")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    while len(numbers) < 3:
        numbers.insert(0, 0)
    hours, minutes, seconds = numbers[-3:]
    return f"{days * 24 + hours:02d}:{minutes:02d}:{seconds:02d}"


# =============================================================================
# Script rendering
# =============================================================================


def render_namd_config(spec: SubmissionSpec) -> str:
    """Render the NAMD run parameters from the job's simulation config."""
    config = spec.simulation_config
    lines = [
        f"# NAMD configuration for {spec.name}",
        f"outputName          {config.get('outputname', spec.name)}",
        f"temperature         {config.get('temperature', 310.0)}",
        f"timestep            {config.get('timestep', 2.0)}",
        f"dcdfreq             {config.get('dcd_freq', 5000)}",
        f"restartfreq         {config.get('restart_freq', 5000)}",
    ]
    for key in ("structure", "coordinates", "parameters"):
        if config.get(key):
            lines.append(f"{key:<19} {config[key]}")
    lines.append(f"run                 {config.get('steps', 1000000)}")
    return "\n".join(lines) + "\n"


def render_batch_script(spec: SubmissionSpec, work_dir: str) -> str:
    """Render the sbatch script for a NAMD run."""
    request = spec.request
    memory = request.memory_gb
    memory_directive = f"{int(memory)}G" if float(memory).is_integer() else f"{int(memory * 1024)}M"
    return "\n".join([
        "#!/bin/bash",
        f"#SBATCH --job-name={spec.name}",
        f"#SBATCH --output={spec.name}_%j.out",
        f"#SBATCH --error={spec.name}_%j.err",
        f"#SBATCH --partition={request.partition}",
        f"#SBATCH --qos={request.qos}",
        f"#SBATCH --ntasks={request.cores}",
        f"#SBATCH --mem={memory_directive}",
        f"#SBATCH --time={request.walltime}",
        f"#SBATCH --chdir={work_dir}",
        "",
        "module purge",
        "module load namd",
        "",
        f"mpirun -np {request.cores} namd3 config.namd > namd_output.log",
        "",
    ])


# =============================================================================
# Command runners
# =============================================================================


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str


class CommandRunner(Protocol):
    """Runs a shell command on the cluster login node."""

    def run(self, command: str, timeout: float) -> CommandResult:
        """
        Run the command and return its result.

        Raises TransportError when the command could not be run at all.
        """
        ...


class LocalCommandRunner:
    """Runs commands with subprocess, for deployments on the login node."""

    def run(self, command: str, timeout: float) -> CommandResult:
        try:
            completed = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise TransportError(f"Command timed out after {timeout}s: {command}")
        except OSError as e:
            raise TransportError(f"Command could not be started: {e}")
        return CommandResult(completed.returncode, completed.stdout, completed.stderr)


# =============================================================================
# Gateway
# =============================================================================


class SlurmGateway(RemoteSchedulerGateway):
    """
    RemoteSchedulerGateway for SLURM via a CommandRunner.

    Input files are expected to be staged into the job directory by the
    connection layer before submit is called.
    """

    supports_discovery = True
    supports_log_refetch = True

    def __init__(
        self,
        runner: CommandRunner,
        username: str,
        jobs_root: Optional[str] = None,
        command_timeout: float = 30.0,
        module_setup: str = "module load slurm/alpine",
    ):
        self.runner = runner
        self.username = username
        self.jobs_root = jobs_root or f"/scratch/alpine/{username}/mdrunner_jobs"
        self.command_timeout = command_timeout
        self.module_setup = module_setup

    def job_dir(self, spec: SubmissionSpec) -> str:
        return f"{self.jobs_root}/{spec.job_id}"

    # -------------------------------------------------------------------------
    # Required operations
    # -------------------------------------------------------------------------

    def submit(self, spec: SubmissionSpec, files: list) -> str:
        work_dir = self.job_dir(spec)
        quoted_dir = shlex.quote(work_dir)
        script = render_batch_script(spec, work_dir)
        namd_config = render_namd_config(spec)
        command = (
            f"mkdir -p {quoted_dir} && "
            f"printf '%s' {shlex.quote(namd_config)} > {quoted_dir}/config.namd && "
            f"printf '%s' {shlex.quote(script)} > {quoted_dir}/job.sbatch && "
            f"cd {quoted_dir} && sbatch job.sbatch"
        )
        result = self._run(command)
        if result.exit_code != 0:
            raise SubmissionError(f"sbatch failed: {result.stderr.strip() or result.stdout.strip()}")

        remote_id = parse_sbatch_output(result.stdout)
        if remote_id is None:
            raise SubmissionError(f"Could not parse sbatch output: {result.stdout.strip()!r}")

        logger.info(f"Submitted {spec.name} ({len(files)} input files) as SLURM job {remote_id}")
        return remote_id

    def query_status(self, remote_job_id: str) -> StatusResult:
        job_id = self._checked_id(remote_job_id)

        result = self._run(f"squeue -j {job_id} --format='%i|%T|%M' --noheader")
        if result.exit_code == 0:
            for line in result.stdout.splitlines():
                fields = line.strip().split("|")
                if len(fields) >= 2 and fields[0] == job_id:
                    return RemoteStatus(
                        state=self._known_state(fields[1], job_id),
                        runtime=fields[2] if len(fields) > 2 else None,
                    )

        result = self._run(
            f"sacct -j {job_id} --format=JobID,State,ExitCode,Elapsed --parsable2 --noheader"
        )
        if result.exit_code != 0:
            raise TransportError(
                f"sacct failed for job {job_id}: {result.stderr.strip()}",
                operation="query_status",
                remote_job_id=job_id,
            )
        for line in result.stdout.splitlines():
            fields = line.strip().split("|")
            if len(fields) >= 3 and fields[0] == job_id:
                return RemoteStatus(
                    state=self._known_state(fields[1], job_id),
                    exit_code=parse_exit_code(fields[2]),
                    runtime=fields[3] if len(fields) > 3 and fields[3] else None,
                )

        return NOT_FOUND

    def cancel(self, remote_job_id: str) -> None:
        job_id = self._checked_id(remote_job_id)
        result = self._run(f"scancel {job_id}")
        if result.exit_code == 0:
            logger.info(f"Cancelled SLURM job {job_id}")
            return
        stderr = result.stderr.lower()
        if any(marker in stderr for marker in _CANCEL_NOOP_MARKERS):
            logger.info(f"SLURM job {job_id} already finished; cancel is a no-op")
            return
        raise TransportError(
            f"scancel failed for job {job_id}: {result.stderr.strip()}",
            operation="cancel",
            remote_job_id=job_id,
        )

    # -------------------------------------------------------------------------
    # Optional operations
    # -------------------------------------------------------------------------

    def list_owned_jobs(self) -> list:
        user = shlex.quote(self.username)
        result = self._run(f"squeue -u {user} --format='%i|%j|%T|%C|%m|%l|%P|%q|%Z' --noheader")
        if result.exit_code != 0:
            raise TransportError(
                f"squeue failed for user {self.username}: {result.stderr.strip()}",
                operation="list_owned_jobs",
            )
        jobs = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            job = parse_squeue_line(line)
            if job is not None:
                jobs.append(job)
        return jobs

    def fetch_logs(self, remote_job_id: str) -> JobLogs:
        job_id = self._checked_id(remote_job_id)
        result = self._run(
            f"sacct -j {job_id} --format=JobName%256,WorkDir%1024 --parsable2 --noheader"
        )
        if result.exit_code != 0 or not result.stdout.strip():
            raise TransportError(
                f"Could not locate job directory for {job_id}",
                operation="fetch_logs",
                remote_job_id=job_id,
            )
        name, work_dir = result.stdout.splitlines()[0].split("|")[:2]
        base = f"{work_dir}/{name}_{job_id}"
        return JobLogs(
            stdout=self._read_file(f"{base}.out"),
            stderr=self._read_file(f"{base}.err"),
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _run(self, command: str) -> CommandResult:
        if self.module_setup:
            command = f"{self.module_setup} && {command}"
        logger.debug(f"Running: {command}")
        return self.runner.run(command, timeout=self.command_timeout)

    def _read_file(self, path: str) -> Optional[str]:
        result = self._run(f"cat {shlex.quote(path)}")
        return result.stdout if result.exit_code == 0 else None

    @staticmethod
    def _checked_id(remote_job_id: str) -> str:
        if not remote_job_id or not _JOB_ID_RE.match(remote_job_id):
            raise ConsistencyError(f"Invalid SLURM job id: {remote_job_id!r}")
        return remote_job_id

    @staticmethod
    def _known_state(code: str, job_id: str) -> RemoteState:
        state = parse_slurm_state(code)
        if state is None:
            raise TransportError(
                f"Unrecognized SLURM state {code!r} for job {job_id}",
                operation="query_status",
                remote_job_id=job_id,
            )
        return state
