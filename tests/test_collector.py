"""Tests for ParseStatsCollector.

Counters are fed with real ParseResult objects from the parsers and read back
through the public collect() method, the way a Prometheus scrape sees them.
"""

import pytest

from slurm_identity_gateway import collector
from slurm_identity_gateway.scheduler import parser

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stats() -> collector.ParseStatsCollector:
    """Fresh collector with the default prefix."""
    return collector.ParseStatsCollector()


def samples(stats: collector.ParseStatsCollector) -> dict[tuple[str, str], float]:
    """Map (sample name, label value) to sample value."""
    return {
        (sample.name, next(iter(sample.labels.values()))): sample.value
        for family in stats.collect()
        for sample in family.samples
    }


# ---------------------------------------------------------------------------
# Metric families
# ---------------------------------------------------------------------------


def test_collect_yields_all_families_when_empty(stats: collector.ParseStatsCollector):
    """All four families are present before anything is recorded."""
    names = {family.name for family in stats.collect()}

    assert names == {
        "slurm_gateway_parsed_lines",
        "slurm_gateway_skipped_lines",
        "slurm_gateway_numeric_fallbacks",
        "slurm_gateway_command_errors",
    }
    assert samples(stats) == {}


def test_collect_custom_prefix():
    """The metric prefix is configurable."""
    stats = collector.ParseStatsCollector(metric_prefix="test")

    assert {family.name for family in stats.collect()} >= {"test_skipped_lines"}


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


def test_record_parse_counts_per_grammar(stats: collector.ParseStatsCollector):
    """Parsed, skipped and fallback counts accumulate per grammar."""
    stats.record_parse(parser.parse_nodes("n1 a idle x 1 1 1 1 g\nbad\n"))
    stats.record_parse(parser.parse_nodes("n2 a idle 1 1 1 1 1 g\n"))
    stats.record_parse(parser.parse_jobs("1|R|u|a|1|n|p|q|r\n"))

    values = samples(stats)

    assert values[("slurm_gateway_parsed_lines_total", "node")] == 2
    assert values[("slurm_gateway_skipped_lines_total", "node")] == 1
    assert values[("slurm_gateway_numeric_fallbacks_total", "node")] == 1
    assert values[("slurm_gateway_parsed_lines_total", "job")] == 1
    assert values[("slurm_gateway_skipped_lines_total", "job")] == 0


def test_merged_lines_count_as_parsed(stats: collector.ParseStatsCollector):
    """A node seen in two partitions is two parsed lines but one record."""
    stats.record_parse(parser.parse_nodes("n1 a idle 1 1 1 1 1 g\nn1 b idle 1 1 1 1 1 g\n"))

    assert samples(stats)[("slurm_gateway_parsed_lines_total", "node")] == 2


def test_record_command_error(stats: collector.ParseStatsCollector):
    """Command failures are counted per command."""
    stats.record_command_error("sinfo")
    stats.record_command_error("sinfo")
    stats.record_command_error("scontrol")

    values = samples(stats)

    assert values[("slurm_gateway_command_errors_total", "sinfo")] == 2
    assert values[("slurm_gateway_command_errors_total", "scontrol")] == 1


def test_snapshot_is_a_copy(stats: collector.ParseStatsCollector):
    """Mutating a snapshot does not change the counters."""
    stats.record_command_error("squeue")
    snapshot = stats.snapshot()
    snapshot["command_errors"]["squeue"] = 100

    assert stats.snapshot()["command_errors"] == {"squeue": 1}
