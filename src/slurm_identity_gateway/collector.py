"""Prometheus collector for parser and command statistics.

Skipped lines are the signal that a scheduler tool changed its output
format, so they are counted here in addition to being logged. Counters are
kept on the collector instance (no global registry) and exported on scrape.
"""

from collections import Counter
from collections.abc import Iterator
from threading import Lock

import structlog
from prometheus_client.core import CounterMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from .scheduler import ParseResult

logger = structlog.get_logger(__name__)


class ParseStatsCollector(Collector):
    """Counts parsed and skipped lines per grammar, and failed commands.

    Thread-safe: requests run concurrently and all record into one instance.
    """

    def __init__(self, metric_prefix: str = "slurm_gateway"):
        """Initialize the collector.

        Args:
            metric_prefix: Prefix of the exported metric names.
        """
        self._metric_prefix = metric_prefix
        self._lock = Lock()
        self._parsed: Counter[str] = Counter()
        self._skipped: Counter[str] = Counter()
        self._fallbacks: Counter[str] = Counter()
        self._command_errors: Counter[str] = Counter()

    def record_parse(self, result: ParseResult) -> None:
        """Add the counts of one parse result."""
        with self._lock:
            self._parsed[result.grammar] += result.parsed_lines
            self._skipped[result.grammar] += result.skipped_count
            self._fallbacks[result.grammar] += result.numeric_fallbacks
        if result.skipped_count:
            logger.warning(
                "Scheduler output had malformed lines",
                grammar=result.grammar,
                skipped=result.skipped_count,
                parsed=result.parsed_lines,
            )

    def record_command_error(self, command: str) -> None:
        """Count a failed scheduler command."""
        with self._lock:
            self._command_errors[command] += 1

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Return a copy of the current counters."""
        with self._lock:
            return {
                "parsed_lines": dict(self._parsed),
                "skipped_lines": dict(self._skipped),
                "numeric_fallbacks": dict(self._fallbacks),
                "command_errors": dict(self._command_errors),
            }

    def collect(self) -> Iterator[Metric]:
        """Collect counters for a Prometheus scrape.

        Yields:
            One counter family per statistic.
        """
        snapshot = self.snapshot()

        descriptions = {
            "parsed_lines": (
                "grammar",
                "scheduler output lines accepted by the row grammar",
            ),
            "skipped_lines": (
                "grammar",
                "scheduler output lines skipped for a wrong field count",
            ),
            "numeric_fallbacks": (
                "grammar",
                "numeric fields that failed to parse and were set to zero",
            ),
            "command_errors": ("command", "scheduler commands that failed"),
        }

        for name, (label, documentation) in descriptions.items():
            family = CounterMetricFamily(
                f"{self._metric_prefix}_{name}",
                documentation,
                labels=[label],
            )
            for label_value, count in sorted(snapshot[name].items()):
                family.add_metric([label_value], count)
            yield family
