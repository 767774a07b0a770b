"""Scheduler command-line package.

Runs the scheduler's reporting commands and parses their text output into
typed records. Parsing is pure and lives in :mod:`.parser`; grammars are
descriptors in :mod:`.grammar`.

Exports:
    SchedulerClient: Runs sinfo/squeue/scontrol through an injectable runner.
    SchedulerCommandError: Raised when a command fails.
    ParseResult: Parsed records plus skipped-line report.
    types: Module containing the Node, Job and Step models.
"""

from . import types
from .client import DEFAULT_TIMEOUT, SchedulerClient, SchedulerCommandError
from .parser import ParseResult

__all__ = [
    "DEFAULT_TIMEOUT",
    "ParseResult",
    "SchedulerClient",
    "SchedulerCommandError",
    "types",
]
