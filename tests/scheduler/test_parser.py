"""Tests for the scheduler output parsers."""

import pytest

from slurm_identity_gateway.scheduler import grammar, parser, types

SAMPLE_PARTITIONS = """\
PartitionName=p1
   AllowGroups=root,group1,group2 AllowAccounts=root,acct1,acct2 AllowQos=ALL
   AllocNodes=ALL Default=NO QoS=N/A
   DefaultTime=NONE DisableRootJobs=NO ExclusiveUser=NO GraceTime=0 Hidden=NO
   MaxNodes=UNLIMITED MaxTime=UNLIMITED MinNodes=0 LLN=NO MaxCPUsPerNode=UNLIMITED
   Nodes=node44
   State=UP TotalCPUs=36 TotalNodes=1 SelectTypeParameters=NONE
   JobDefaults=(null)
   DefMemPerNode=UNLIMITED MaxMemPerNode=UNLIMITED

PartitionName=p2
   AllowGroups=root,group1,group2,group3 AllowAccounts=root,acct1,acct2 AllowQos=ALL
   MaxNodes=UNLIMITED MaxTime=2-00:00:00 MinNodes=0 LLN=NO MaxCPUsPerNode=UNLIMITED
   Nodes=node2026
   State=DOWN TotalCPUs=36 TotalNodes=1 SelectTypeParameters=NONE
"""

SAMPLE_NODES = """\
cn1576 short1 drain 128000 36 2 18 1 (null)
cn1576 cp1 drain 128000 36 2 18 1 (null)
cn1577 cp1 idle 256000 64 2 32 1 gpu:a100:4
"""

# ---------------------------------------------------------------------------
# Key=value blocks
# ---------------------------------------------------------------------------


def test_parse_partitions_two_blocks():
    """Blank-line separated blocks become one mapping each, in order."""
    parts = parser.parse_partitions(SAMPLE_PARTITIONS)

    assert len(parts) == 2
    p1, p2 = parts
    assert p1[types.PARTITION_NAME] == "p1"
    assert p1[types.PARTITION_NODES] == "node44"
    assert p1[types.PARTITION_STATE] == "UP"
    assert p1["DefMemPerNode"] == "UNLIMITED"
    assert p2[types.PARTITION_NAME] == "p2"
    assert p2[types.PARTITION_NODES] == "node2026"
    assert p2[types.PARTITION_STATE] == "DOWN"
    assert p2[types.PARTITION_MAX_TIME] == "2-00:00:00"


def test_parse_partitions_without_blank_separator():
    """A repeated PartitionName splits blocks even with no blank line."""
    output = "PartitionName=a Nodes=n1\nPartitionName=b Nodes=n2\n"

    parts = parser.parse_partitions(output)

    assert parts == [
        {"PartitionName": "a", "Nodes": "n1"},
        {"PartitionName": "b", "Nodes": "n2"},
    ]


def test_parse_partitions_repeated_key_on_same_line():
    """The flush happens before the new key is stored, even mid-line."""
    parts = parser.parse_partitions("PartitionName=a State=UP PartitionName=b State=DOWN")

    assert parts == [
        {"PartitionName": "a", "State": "UP"},
        {"PartitionName": "b", "State": "DOWN"},
    ]


def test_parse_blocks_value_keeps_text_after_first_equals():
    """Only the first '=' separates key and value."""
    parts = parser.parse_partitions("PartitionName=a TRES=cpu=36,mem=128000M,node=1")

    assert parts[0]["TRES"] == "cpu=36,mem=128000M,node=1"


def test_parse_blocks_ignores_tokens_without_equals():
    """Tokens without '=' carry no attribute and are dropped."""
    parts = parser.parse_partitions("PartitionName=a garbage State=UP")

    assert parts == [{"PartitionName": "a", "State": "UP"}]


def test_parse_partitions_empty_output():
    """No output yields no partitions."""
    assert parser.parse_partitions("") == []
    assert parser.parse_partitions("\n\n  \n") == []


def test_parse_partition_single_block_flattens():
    """The single-object variant never splits, even on blank lines."""
    part = parser.parse_partition("PartitionName=p1\n\n   Nodes=node44 State=UP\n")

    assert part == {"PartitionName": "p1", "Nodes": "node44", "State": "UP"}


def test_parse_partition_empty_output():
    """An unknown partition produces an empty mapping."""
    assert parser.parse_partition("") == {}


# ---------------------------------------------------------------------------
# Delimited rows
# ---------------------------------------------------------------------------


def test_parse_nodes_merges_partitions():
    """A node seen once per partition is returned once, partitions merged."""
    result = parser.parse_nodes(SAMPLE_NODES)

    assert [node.name for node in result.records] == ["cn1576", "cn1577"]
    first = result.records[0]
    assert first.partitions == ["short1", "cp1"]
    assert first.state == "drain"
    assert first.memory == 128000
    assert first.cpus == 36
    assert first.sockets == 2
    assert first.cores == 18
    assert first.threads == 1
    assert first.gres == "(null)"
    assert result.records[1].gres == "gpu:a100:4"
    assert result.skipped_count == 0
    assert result.parsed_lines == 3


def test_parse_nodes_duplicate_partition_not_repeated():
    """Partitions form an ordered set."""
    output = "n1 a idle 1 1 1 1 1 x\nn1 b idle 1 1 1 1 1 x\nn1 a idle 1 1 1 1 1 x\n"

    result = parser.parse_nodes(output)

    assert result.records[0].partitions == ["a", "b"]


def test_parse_nodes_skips_malformed_line():
    """A line with the wrong field count is skipped and reported."""
    output = "n1 a idle 1 1 1 1 1 x\nn2 a idle 1 1\nn3 a idle 1 1 1 1 1 x\n"

    result = parser.parse_nodes(output)

    assert [node.name for node in result.records] == ["n1", "n3"]
    assert result.skipped_count == 1
    assert result.parsed_lines == 2
    skipped = result.skipped[0]
    assert skipped.line_number == 2
    assert skipped.line == "n2 a idle 1 1"
    assert skipped.field_count == 5


def test_parse_nodes_numeric_fallback_to_zero():
    """An unparsable numeric field becomes zero without dropping the row."""
    result = parser.parse_nodes("n1 a idle 128000+ 36 2 18 1 (null)\n")

    node = result.records[0]
    assert node.memory == 0
    assert node.cpus == 36
    assert result.numeric_fallbacks == 1
    assert result.skipped_count == 0


def test_parse_nodes_blank_lines_ignored():
    """Blank lines are neither records nor skipped lines."""
    result = parser.parse_nodes("\nn1 a idle 1 1 1 1 1 x\n\n")

    assert len(result.records) == 1
    assert result.skipped_count == 0


def test_parse_nodes_accepts_bytes_and_line_iterables():
    """Bytes and iterables of lines are parsed like text."""
    from_bytes = parser.parse_nodes(SAMPLE_NODES.encode())
    from_lines = parser.parse_nodes(SAMPLE_NODES.splitlines(keepends=True))

    assert from_bytes.records == from_lines.records
    assert len(from_bytes.records) == 2


def test_parse_nodes_undecodable_bytes_propagate():
    """A decoding failure is a stream failure, not a skipped line."""
    with pytest.raises(UnicodeDecodeError):
        parser.parse_nodes(b"n1 a idle \xff\xfe 1 1 1 1 x\n")


def test_parse_jobs_keeps_empty_fields():
    """Pipe-delimited rows keep empty account and reason fields."""
    output = "123|RUNNING|alice||4|cn[1-2]|cp1|normal|\n124_[1-3]|PENDING|bob|acct1|1-4||cp1|normal|Priority\n"

    result = parser.parse_jobs(output)

    assert len(result.records) == 2
    running, pending = result.records
    assert running.job_id == "123"
    assert running.account == ""
    assert running.nodelist == "cn[1-2]"
    assert running.reason == ""
    assert pending.job_id == "124_[1-3]"
    assert pending.cpus == "1-4"
    assert pending.reason == "Priority"


def test_parse_jobs_wrong_field_count_skipped():
    """A job line with a missing field is skipped."""
    result = parser.parse_jobs("123|RUNNING|alice\n")

    assert result.records == []
    assert result.skipped_count == 1


def test_parse_steps():
    """Step rows map to Step records."""
    result = parser.parse_steps("123.0|bash|RUNNING\n123.batch|batch|RUNNING\n")

    assert [step.step_id for step in result.records] == ["123.0", "123.batch"]
    assert result.records[0].name == "bash"


def test_parse_rows_custom_grammar():
    """Format drift is handled by a new descriptor, not parser changes."""
    custom = grammar.RowGrammar(
        name="custom",
        fields=("name", "count"),
        delimiter=grammar.Delimiter.PIPE,
        numeric_fields=frozenset({"count"}),
    )

    result = parser.parse_rows("a|1\nb|x\nc\n", custom)

    assert result.records == [{"name": "a", "count": 1}, {"name": "b", "count": 0}]
    assert result.numeric_fallbacks == 1
    assert result.skipped_count == 1
    assert result.grammar == "custom"


def test_row_grammar_rejects_unknown_fields():
    """Grammar descriptors validate their field references."""
    with pytest.raises(ValueError, match="unknown fields"):
        grammar.RowGrammar(
            name="bad",
            fields=("a",),
            delimiter=grammar.Delimiter.WHITESPACE,
            numeric_fields=frozenset({"b"}),
        )


def test_row_grammar_requires_key_and_merge_together():
    """A key field without a merge field is rejected."""
    with pytest.raises(ValueError, match="both key_field and merge_field"):
        grammar.RowGrammar(
            name="bad",
            fields=("a", "b"),
            delimiter=grammar.Delimiter.WHITESPACE,
            key_field="a",
        )


def test_node_grammar_matches_format_string():
    """One format specifier per declared field."""
    assert len(grammar.NODE_GRAMMAR.format_string.split()) == grammar.NODE_GRAMMAR.field_count
    assert len(grammar.JOB_GRAMMAR.format_string.split("|")) == grammar.JOB_GRAMMAR.field_count
