"""Parsers for scheduler command output.

Two grammars are supported:

* Delimited rows (sinfo, squeue): one record per line, a fixed number of
  positional fields described by a :class:`~.grammar.RowGrammar`. Lines with
  the wrong field count are skipped and reported, never fatal.
* Key=value blocks (scontrol show): whitespace separated ``key=value`` tokens
  spread over several lines, blocks separated by blank lines or by a repeated
  block key.

Parsers are pure functions. The only error they raise is the one produced by
reading or decoding the input itself.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Generic, TypeAlias, TypeVar

import structlog

from .grammar import (
    JOB_GRAMMAR,
    NODE_GRAMMAR,
    PARTITION_BLOCK_KEY,
    STEP_GRAMMAR,
    RowGrammar,
)
from .types import Job, Node, Partition, Step

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TextSource: TypeAlias = str | bytes | Iterable[str]
Row: TypeAlias = dict[str, str | int | list[str]]


@dataclass(frozen=True)
class SkippedLine:
    """A line dropped because its field count did not match the grammar."""

    line_number: int
    line: str
    field_count: int


@dataclass
class ParseResult(Generic[T]):
    """Records parsed from one command output, plus what was dropped.

    Attributes:
        grammar: Name of the grammar used.
        records: Parsed records in first-seen order.
        skipped: Lines dropped for having the wrong field count.
        parsed_lines: Lines with the right field count, including lines
            merged into an earlier record.
        numeric_fallbacks: Numeric fields that failed to parse and were set
            to zero.
    """

    grammar: str
    records: list[T] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)
    parsed_lines: int = 0
    numeric_fallbacks: int = 0

    @property
    def skipped_count(self) -> int:
        """Number of dropped lines."""
        return len(self.skipped)


def _iter_lines(source: TextSource) -> Iterator[str]:
    """Yield lines without their line terminators.

    Bytes are decoded as UTF-8; a decoding error is a stream failure and
    propagates to the caller.
    """
    if isinstance(source, bytes):
        source = source.decode("utf-8")
    if isinstance(source, str):
        yield from source.splitlines()
        return
    for line in source:
        yield line.rstrip("\r\n")


def _parse_int(value: str) -> int | None:
    """Parse an integer field, returning None when it is not a number."""
    try:
        return int(value)
    except ValueError:
        return None


def parse_rows(source: TextSource, grammar: RowGrammar) -> ParseResult[Row]:
    """Parse delimited rows into field mappings.

    Each line producing exactly ``grammar.field_count`` fields becomes a row
    keyed by field name. Other lines are skipped with a warning. Blank lines
    are ignored.

    For grammars with a key field, a repeated key appends the value of the
    merge field to the first row (without duplicates) and the rest of the
    line is discarded. The merge field of such grammars is always a list.

    Args:
        source: Command output as text, bytes or an iterable of lines.
        grammar: Row grammar describing the fields.

    Returns:
        ParseResult holding row mappings in first-seen order.
    """
    result: ParseResult[Row] = ParseResult(grammar=grammar.name)
    merged_by_key: dict[str, list[str]] = {}

    for line_number, line in enumerate(_iter_lines(source), start=1):
        if not line.strip():
            continue

        values = grammar.split(line)
        if len(values) != grammar.field_count:
            logger.warning(
                "Skipping malformed line",
                grammar=grammar.name,
                line_number=line_number,
                line=line,
                expected_fields=grammar.field_count,
                actual_fields=len(values),
            )
            result.skipped.append(
                SkippedLine(
                    line_number=line_number,
                    line=line,
                    field_count=len(values),
                ),
            )
            continue

        result.parsed_lines += 1
        raw = dict(zip(grammar.fields, values, strict=True))

        if grammar.key_field is not None and grammar.merge_field is not None:
            merged = merged_by_key.get(raw[grammar.key_field])
            if merged is not None:
                if raw[grammar.merge_field] not in merged:
                    merged.append(raw[grammar.merge_field])
                continue

        row: Row = {}
        for name, value in raw.items():
            if name in grammar.numeric_fields:
                number = _parse_int(value)
                if number is None:
                    logger.debug(
                        "Numeric field fallback to zero",
                        grammar=grammar.name,
                        line_number=line_number,
                        field=name,
                        value=value,
                    )
                    result.numeric_fallbacks += 1
                    number = 0
                row[name] = number
            else:
                row[name] = value

        if grammar.key_field is not None and grammar.merge_field is not None:
            merged = [raw[grammar.merge_field]]
            row[grammar.merge_field] = merged
            merged_by_key[raw[grammar.key_field]] = merged

        result.records.append(row)

    return result


def _convert(result: ParseResult[Row], records: list[T]) -> ParseResult[T]:
    return ParseResult(
        grammar=result.grammar,
        records=records,
        skipped=result.skipped,
        parsed_lines=result.parsed_lines,
        numeric_fallbacks=result.numeric_fallbacks,
    )


def parse_nodes(
    source: TextSource,
    grammar: RowGrammar = NODE_GRAMMAR,
) -> ParseResult[Node]:
    """Parse sinfo node listing output into merged Node records.

    Args:
        source: Output of ``sinfo -h -N -o <grammar.format_string>``.
        grammar: Node grammar; must merge on ``name`` over ``partition``.

    Returns:
        ParseResult with one Node per distinct node name.
    """
    rows = parse_rows(source, grammar)
    nodes = [
        Node(
            name=row["name"],
            partitions=row["partition"],
            state=row.get("state", ""),
            memory=row.get("memory", 0),
            cpus=row.get("cpus", 0),
            sockets=row.get("sockets", 0),
            cores=row.get("cores", 0),
            threads=row.get("threads", 0),
            gres=row.get("gres", ""),
        )
        for row in rows.records
    ]
    return _convert(rows, nodes)


def parse_jobs(
    source: TextSource,
    grammar: RowGrammar = JOB_GRAMMAR,
) -> ParseResult[Job]:
    """Parse squeue job listing output into Job records."""
    rows = parse_rows(source, grammar)
    return _convert(rows, [Job.model_validate(row) for row in rows.records])


def parse_steps(
    source: TextSource,
    grammar: RowGrammar = STEP_GRAMMAR,
) -> ParseResult[Step]:
    """Parse squeue step listing output into Step records."""
    rows = parse_rows(source, grammar)
    return _convert(rows, [Step.model_validate(row) for row in rows.records])


def _iter_tokens(line: str) -> Iterator[tuple[str, str]]:
    """Yield ``(key, value)`` pairs split on the first ``=`` of each token."""
    for token in line.split():
        key, sep, value = token.partition("=")
        if sep:
            yield key, value


def parse_blocks(
    source: TextSource,
    block_key: str = PARTITION_BLOCK_KEY,
) -> list[dict[str, str]]:
    """Parse key=value block output into one mapping per block.

    A blank line closes the current block. Blank lines are not reliably
    emitted, so a ``block_key`` token arriving while the current block
    already holds ``block_key`` also closes it, before the new key is stored.

    Args:
        source: Output of an ``scontrol show`` command.
        block_key: Key that identifies a block.

    Returns:
        Blocks in first-seen order.
    """
    blocks: list[dict[str, str]] = []
    current: dict[str, str] = {}

    for line in _iter_lines(source):
        if not line.strip():
            if current:
                blocks.append(current)
                current = {}
            continue

        for key, value in _iter_tokens(line):
            if key == block_key and block_key in current:
                blocks.append(current)
                current = {}
            current[key] = value

    if current:
        blocks.append(current)

    return blocks


def parse_single_block(source: TextSource) -> dict[str, str]:
    """Parse key=value output known to describe exactly one object.

    All tokens are flattened into one mapping; no block splitting applies.
    """
    block: dict[str, str] = {}
    for line in _iter_lines(source):
        for key, value in _iter_tokens(line):
            block[key] = value
    return block


def parse_partitions(source: TextSource) -> list[Partition]:
    """Parse ``scontrol show partition`` output into partition mappings."""
    return parse_blocks(source, PARTITION_BLOCK_KEY)


def parse_partition(source: TextSource) -> Partition:
    """Parse ``scontrol show partition <name>`` output into one mapping."""
    return parse_single_block(source)
