"""Slurm identity gateway.

HTTP service aggregating scheduler state (sinfo, squeue, scontrol) and the
accounting database's account/user/association hierarchy into one JSON API.
"""

__version__ = "0.1.0"
