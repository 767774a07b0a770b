"""Scheduler command-line client.

Runs sinfo, squeue and scontrol and hands their output to the parsers. The
process runner is injectable so tests (and alternative transports such as a
remote shell) can replace ``subprocess`` without touching parsing code.
"""

import subprocess
import time
from collections.abc import Callable, Sequence
from typing import TypeAlias

import structlog

from .grammar import JOB_GRAMMAR, NODE_GRAMMAR, STEP_GRAMMAR, RowGrammar
from .parser import (
    ParseResult,
    parse_jobs,
    parse_nodes,
    parse_partition,
    parse_partitions,
    parse_steps,
)
from .types import Job, Node, Partition, Step

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

CommandRunner: TypeAlias = Callable[[Sequence[str], float], bytes]


class SchedulerCommandError(Exception):
    """Raised when a scheduler command cannot be run or exits non-zero."""

    def __init__(self, command: Sequence[str], message: str, output: str = ""):
        """Initialize the error.

        Args:
            command: The command line that failed.
            message: Short description of the failure.
            output: Combined stdout/stderr of the command, if any.
        """
        super().__init__(f"{message}: {' '.join(command)}")
        self.command = list(command)
        self.output = output


def run_command(command: Sequence[str], timeout: float) -> bytes:
    """Run a command and return its combined stdout and stderr.

    Raises:
        SchedulerCommandError: If the command is missing, times out or exits
            with a non-zero status.
    """
    try:
        completed = subprocess.run(  # noqa: S603
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        output = (e.output or b"").decode("utf-8", errors="replace")
        raise SchedulerCommandError(
            command,
            f"command exited with status {e.returncode}",
            output,
        ) from e
    except subprocess.TimeoutExpired as e:
        msg = f"command timed out after {timeout}s"
        raise SchedulerCommandError(command, msg) from e
    except OSError as e:
        raise SchedulerCommandError(command, f"failed to start command ({e})") from e
    return completed.stdout


class SchedulerClient:
    """Client for the scheduler command-line tools.

    Stateless apart from its configuration; safe to share between threads.
    """

    def __init__(
        self,
        sinfo_path: str = "sinfo",
        squeue_path: str = "squeue",
        scontrol_path: str = "scontrol",
        timeout: float = DEFAULT_TIMEOUT,
        runner: CommandRunner = run_command,
        node_grammar: RowGrammar = NODE_GRAMMAR,
        job_grammar: RowGrammar = JOB_GRAMMAR,
        step_grammar: RowGrammar = STEP_GRAMMAR,
    ):
        """Initialize the client.

        Args:
            sinfo_path: Path to the sinfo binary.
            squeue_path: Path to the squeue binary.
            scontrol_path: Path to the scontrol binary.
            timeout: Per-command timeout in seconds.
            runner: Function executing a command line and returning output.
            node_grammar: Grammar for sinfo node listings.
            job_grammar: Grammar for squeue job listings.
            step_grammar: Grammar for squeue step listings.

        Raises:
            ValueError: If a binary path is empty or timeout is not positive.
        """
        for name, path in (
            ("sinfo_path", sinfo_path),
            ("squeue_path", squeue_path),
            ("scontrol_path", scontrol_path),
        ):
            if not path:
                msg = f"{name} cannot be empty"
                raise ValueError(msg)
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self.sinfo_path = sinfo_path
        self.squeue_path = squeue_path
        self.scontrol_path = scontrol_path
        self._timeout = timeout
        self._runner = runner
        self.node_grammar = node_grammar
        self.job_grammar = job_grammar
        self.step_grammar = step_grammar

    def _run(self, command: list[str]) -> str:
        """Run a scheduler command, logging its duration.

        Returns:
            The command output decoded as UTF-8.

        Raises:
            SchedulerCommandError: If the command fails or its output is not
                valid UTF-8.
        """
        start_time = time.time()
        logger.debug("Running scheduler command", command=" ".join(command))
        try:
            output = self._runner(command, self._timeout)
        except SchedulerCommandError as e:
            logger.error(
                "Scheduler command failed",
                command=" ".join(command),
                output=e.output,
                duration_seconds=round(time.time() - start_time, 3),
            )
            raise
        logger.debug(
            "Scheduler command completed",
            command=command[0],
            duration_seconds=round(time.time() - start_time, 3),
        )
        try:
            return output.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error(
                "Scheduler command output is not valid UTF-8",
                command=" ".join(command),
                position=e.start,
            )
            msg = f"undecodable output at byte {e.start}"
            raise SchedulerCommandError(command, msg) from e

    def get_nodes(
        self,
        partition: str | None = None,
        state: str | None = None,
        nodes: str | None = None,
    ) -> ParseResult[Node]:
        """List nodes with sinfo, one record per node.

        Args:
            partition: Optional partition filter (comma separated list).
            state: Optional node state filter.
            nodes: Optional node list filter.

        Returns:
            ParseResult of merged Node records.
        """
        command = [self.sinfo_path, "-h", "-N"]
        if partition:
            command += ["-p", partition]
        if state:
            command += ["-t", state]
        if nodes:
            command += ["-n", nodes]
        command += ["-o", self.node_grammar.format_string]
        return parse_nodes(self._run(command), self.node_grammar)

    def get_jobs(self, job_id: str | None = None) -> ParseResult[Job]:
        """List queued and running jobs with squeue.

        Args:
            job_id: Optional job id to restrict the listing to.
        """
        command = [self.squeue_path, "-h"]
        if job_id:
            command += ["-j", job_id]
        command += ["-o", self.job_grammar.format_string]
        return parse_jobs(self._run(command), self.job_grammar)

    def get_steps(self, job_id: str) -> ParseResult[Step]:
        """List the steps of one job with squeue."""
        if not job_id.strip():
            msg = "job_id cannot be empty"
            raise ValueError(msg)
        command = [
            self.squeue_path,
            "-h",
            "-s",
            "-j",
            job_id,
            "-o",
            self.step_grammar.format_string,
        ]
        return parse_steps(self._run(command), self.step_grammar)

    def get_partitions(self, names: Sequence[str] | None = None) -> list[Partition]:
        """Describe partitions with scontrol.

        Args:
            names: Partition names to describe. All partitions when empty.

        Returns:
            Partition mappings in the order reported (or requested).
        """
        if names:
            results = []
            for name in names:
                partition = self.get_partition(name)
                if partition:
                    results.append(partition)
            return results

        command = [self.scontrol_path, "show", "partition"]
        return parse_partitions(self._run(command))

    def get_partition(self, name: str) -> Partition:
        """Describe a single partition; empty mapping if nothing was reported."""
        if not name.strip():
            msg = "partition name cannot be empty"
            raise ValueError(msg)
        command = [self.scontrol_path, "show", "partition", name]
        return parse_partition(self._run(command))
