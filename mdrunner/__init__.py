"""
mdrunner - admission control and lifecycle reconciliation for NAMD jobs
on a SLURM cluster.
"""

__version__ = "0.4.0"
