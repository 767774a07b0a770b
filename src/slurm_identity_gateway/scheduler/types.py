"""Typed records parsed from scheduler command output.

Pydantic models representing one snapshot of scheduler state at query time.
Partitions have no model: the attribute set varies between scheduler
versions, so they are kept as plain ``dict[str, str]`` mappings.
"""

from pydantic import BaseModel, Field

# Well-known partition attributes. This is a convention, not a schema:
# any other key emitted by ``scontrol show partition`` is kept as-is.
PARTITION_NAME = "PartitionName"
PARTITION_NODES = "Nodes"
PARTITION_STATE = "State"
PARTITION_MAX_TIME = "MaxTime"

Partition = dict[str, str]


class Node(BaseModel):
    """A compute node as reported by sinfo.

    A node belonging to several partitions is reported once per partition;
    those sightings are merged into ``partitions`` in first-seen order.
    """

    name: str
    partitions: list[str] = Field(default_factory=list)
    state: str = ""

    # Resources
    memory: int = 0
    cpus: int = 0
    sockets: int = 0
    cores: int = 0
    threads: int = 0

    # GRES (Generic Resources like GPUs)
    gres: str = ""


class Job(BaseModel):
    """A job as reported by squeue.

    ``job_id`` and ``cpus`` stay strings: array and heterogeneous jobs have
    non-numeric ids, and the cpu count may be reported as a range.
    """

    job_id: str
    state: str = ""
    user: str = ""
    account: str = ""
    cpus: str = ""
    nodelist: str = ""
    partition: str = ""
    qos: str = ""
    reason: str = ""


class Step(BaseModel):
    """A job step. The owning job id is supplied by the caller."""

    step_id: str
    name: str = ""
    state: str = ""
