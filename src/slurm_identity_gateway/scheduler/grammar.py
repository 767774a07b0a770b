"""Grammar descriptors for scheduler text formats.

A row grammar is an ordered list of named fields plus a delimiter kind. The
field order must match the format string handed to the scheduler command, so
both live side by side here: when the tool's output changes, the descriptor
changes, not the parser.
"""

import enum
from dataclasses import dataclass, field


class Delimiter(enum.Enum):
    """How a line is split into fields."""

    WHITESPACE = "whitespace"
    PIPE = "|"


@dataclass(frozen=True)
class RowGrammar:
    """Descriptor for a one-record-per-line format.

    Attributes:
        name: Grammar name, used in logs and metrics labels.
        fields: Attribute names in positional order.
        delimiter: Field separator.
        numeric_fields: Fields parsed as integers (0 on failure).
        key_field: Field identifying a record. Lines repeating a key are
            merged into the first record instead of producing a new one.
        merge_field: Field accumulated on the first record when a key repeats.
        format_string: Format flag passed to the command producing the rows.
    """

    name: str
    fields: tuple[str, ...]
    delimiter: Delimiter
    numeric_fields: frozenset[str] = field(default_factory=frozenset)
    key_field: str | None = None
    merge_field: str | None = None
    format_string: str = ""

    def __post_init__(self):
        """Validate field references."""
        if not self.fields:
            msg = f"grammar {self.name!r} has no fields"
            raise ValueError(msg)
        known = set(self.fields)
        unknown = set(self.numeric_fields) - known
        for ref in (self.key_field, self.merge_field):
            if ref is not None and ref not in known:
                unknown.add(ref)
        if unknown:
            msg = f"grammar {self.name!r} references unknown fields: {sorted(unknown)}"
            raise ValueError(msg)
        if (self.key_field is None) != (self.merge_field is None):
            msg = f"grammar {self.name!r} needs both key_field and merge_field"
            raise ValueError(msg)

    @property
    def field_count(self) -> int:
        """Number of fields expected on every line."""
        return len(self.fields)

    def split(self, line: str) -> list[str]:
        """Split a line into raw field values."""
        if self.delimiter is Delimiter.WHITESPACE:
            return line.split()
        return [value.strip() for value in line.split(self.delimiter.value)]


# sinfo -h -N -o "%N %R %t %m %c %X %Y %Z %G"
# cn1576 short1 drain 128000 36 2 18 1 (null)
# cn1576 cp1 drain 128000 36 2 18 1 (null)
NODE_GRAMMAR = RowGrammar(
    name="node",
    fields=(
        "name",
        "partition",
        "state",
        "memory",
        "cpus",
        "sockets",
        "cores",
        "threads",
        "gres",
    ),
    delimiter=Delimiter.WHITESPACE,
    numeric_fields=frozenset({"memory", "cpus", "sockets", "cores", "threads"}),
    key_field="name",
    merge_field="partition",
    format_string="%N %R %t %m %c %X %Y %Z %G",
)

# Pipe-delimited: account and reason may legitimately be empty.
JOB_GRAMMAR = RowGrammar(
    name="job",
    fields=(
        "job_id",
        "state",
        "user",
        "account",
        "cpus",
        "nodelist",
        "partition",
        "qos",
        "reason",
    ),
    delimiter=Delimiter.PIPE,
    format_string="%i|%T|%u|%a|%C|%N|%P|%q|%r",
)

STEP_GRAMMAR = RowGrammar(
    name="step",
    fields=("step_id", "name", "state"),
    delimiter=Delimiter.PIPE,
    format_string="%i|%j|%T",
)

# Key that starts a new block in ``scontrol show partition`` output.
PARTITION_BLOCK_KEY = "PartitionName"
