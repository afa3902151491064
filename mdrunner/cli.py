"""
MD Runner CLI.

Offline policy checks plus the read/sync operations against the job
database configured in the environment.
"""

import argparse
import json
import sys
import logging
from typing import Optional

from dotenv import load_dotenv

from mdrunner.cluster.validator import AdmissionValidator, ResourceRequest, parse_memory_gb
from mdrunner.infra.config import Settings, load_settings
from mdrunner.infra.logging_config import setup_logging

logger = logging.getLogger(__name__)

EPILOG = """
Examples:
  mdrunner validate --cores 24 --memory 48GB --walltime 04:00:00 --partition amilan --qos normal
  mdrunner estimate --cores 64 --hours 18 --partition amilan128c
  mdrunner partitions
  mdrunner sync
  mdrunner list --state RUNNING
  mdrunner serve --port 8000
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdrunner",
        description="NAMD job runner for SLURM clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Check a resource request against cluster policy")
    validate_parser.add_argument("--name", type=str, default=None, help="Job name to check as well")
    validate_parser.add_argument("--cores", type=int, required=True, help="Requested cores")
    validate_parser.add_argument("--memory", type=str, required=True, help="Memory, e.g. 48 or 48GB")
    validate_parser.add_argument("--walltime", type=str, required=True, help="HH:MM:SS or D-HH:MM:SS")
    validate_parser.add_argument("--partition", type=str, required=True, help="Partition id")
    validate_parser.add_argument("--qos", type=str, required=True, help="QoS id")

    # estimate command
    estimate_parser = subparsers.add_parser("estimate", help="Suggested QoS, queue band and SU cost")
    estimate_parser.add_argument("--cores", type=int, required=True, help="Requested cores")
    estimate_parser.add_argument("--hours", type=float, required=True, help="Planned walltime in hours")
    estimate_parser.add_argument("--partition", type=str, required=True, help="Partition id")
    estimate_parser.add_argument("--gpus", type=int, default=0, help="GPUs requested (default: 0)")

    # partitions command
    subparsers.add_parser("partitions", help="List partitions and their allowed QoS")

    # list command
    list_parser = subparsers.add_parser("list", help="List jobs from the local database")
    list_parser.add_argument("--state", type=str, default=None, help="Filter by state, e.g. RUNNING")

    # sync command
    subparsers.add_parser("sync", help="Reconcile active jobs with the scheduler once")

    # discover command
    subparsers.add_parser("discover", help="Import scheduler jobs that have no local record")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    return parser


def main(argv: Optional[list] = None) -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    settings = load_settings()
    setup_logging(settings.log_level, settings.log_dir)

    handlers = {
        "validate": cmd_validate,
        "estimate": cmd_estimate,
        "partitions": cmd_partitions,
        "list": cmd_list,
        "sync": cmd_sync,
        "discover": cmd_discover,
        "serve": cmd_serve,
    }
    return handlers[args.command](args, settings)


# =============================================================================
# Policy commands (no database, no cluster)
# =============================================================================

def cmd_validate(args, settings: Settings) -> int:
    validator = AdmissionValidator(settings.catalog())
    request = ResourceRequest(
        cores=args.cores,
        memory_gb=parse_memory_gb(args.memory),
        walltime=args.walltime,
        partition=args.partition,
        qos=args.qos,
    )
    if args.name is not None:
        result = validator.validate_job(args.name, request)
    else:
        result = validator.validate(request)

    print(f"Valid: {'yes' if result.is_valid else 'no'}")
    for issue in result.issues:
        print(f"  ERROR: {issue}")
    for warning in result.warnings:
        print(f"  WARNING: {warning}")
    for suggestion in result.suggestions:
        print(f"  SUGGESTION: {suggestion}")
    return 0 if result.is_valid else 2


def cmd_estimate(args, settings: Settings) -> int:
    validator = AdmissionValidator(settings.catalog())
    if validator.catalog.get_partition(args.partition) is None:
        print(f"Unknown partition: {args.partition}", file=sys.stderr)
        return 2

    print(f"Suggested QoS: {validator.suggest_qos(args.hours, args.partition)}")
    print(f"Estimated queue: {validator.estimate_queue_time(args.cores, args.partition)}")
    cost = validator.calculate_cost(args.cores, args.hours, args.gpus > 0, max(args.gpus, 1))
    print(f"Estimated cost: {cost} SUs")
    return 0


def cmd_partitions(args, settings: Settings) -> int:
    catalog = settings.catalog()
    for partition in catalog.partitions:
        qos = ", ".join(q.id for q in catalog.qos_for_partition(partition.id))
        print(
            f"{partition.id:<14} {partition.category.value:<8} "
            f"max {partition.max_cores:>4} cores  {partition.max_walltime:>12}  qos: {qos}"
        )
    return 0


# =============================================================================
# Job database commands
# =============================================================================

def _service(settings: Settings):
    from mdrunner.jobs.service import JobRunnerService
    return JobRunnerService.from_settings(settings)


def cmd_list(args, settings: Settings) -> int:
    from mdrunner.jobs.entities import JobState

    state = None
    if args.state:
        try:
            state = JobState(args.state.upper())
        except ValueError:
            print(f"Unknown state: {args.state}", file=sys.stderr)
            return 2

    service = _service(settings)
    try:
        jobs = service.get_all_jobs(state)
    finally:
        service.stop()

    for job in jobs:
        remote = job.remote_job_id or "-"
        print(f"{job.job_id}  {job.state.value:<10} {remote:<10} {job.name}")
    print(f"{len(jobs)} job(s)")
    return 0


def _print_outcome(outcome) -> None:
    print(json.dumps({
        "pass_id": outcome.pass_id,
        "jobs_checked": outcome.jobs_checked,
        "jobs_updated": outcome.jobs_updated,
        "discovered": outcome.discovered,
        "presumed_terminal": outcome.presumed_terminal,
        "failures": [f.message for f in outcome.failures],
    }, indent=2))


def cmd_sync(args, settings: Settings) -> int:
    service = _service(settings)
    try:
        outcome = service.sync_jobs()
    finally:
        service.stop()
    _print_outcome(outcome)
    return 0 if outcome.success else 1


def cmd_discover(args, settings: Settings) -> int:
    service = _service(settings)
    try:
        outcome = service.discover_jobs_from_server()
    finally:
        service.stop()
    _print_outcome(outcome)
    return 0 if outcome.success else 1


def cmd_serve(args, settings: Settings) -> int:
    import uvicorn

    logger.info(f"[CLI] Serving API on {args.host}:{args.port}")
    uvicorn.run("mdrunner.api.main:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
