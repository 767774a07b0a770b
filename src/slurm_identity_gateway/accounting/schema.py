"""Accounting database tables.

Only the columns this service reads are declared. The association table is
per cluster (``<cluster>_assoc_table``), so tables are built for a given
cluster name rather than declared at import time.
"""

from dataclasses import dataclass

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    Integer,
    MetaData,
    SmallInteger,
    Table,
    Text,
)


@dataclass(frozen=True)
class AccountingTables:
    """Table objects for one cluster's accounting schema."""

    metadata: MetaData
    account: Table
    user: Table
    qos: Table
    association: Table


def assoc_table_name(cluster_name: str) -> str:
    """Return the association table name of a cluster."""
    return f"{cluster_name}_assoc_table"


def build_tables(cluster_name: str) -> AccountingTables:
    """Declare the accounting tables for a cluster.

    Args:
        cluster_name: Cluster name prefixing the association table.

    Returns:
        AccountingTables bound to a fresh MetaData.
    """
    metadata = MetaData()

    account = Table(
        "acct_table",
        metadata,
        Column("creation_time", BigInteger, nullable=False, default=0),
        Column("mod_time", BigInteger, nullable=False, default=0),
        Column("deleted", SmallInteger, default=0),
        Column("flags", Integer, default=0),
        Column("name", Text, primary_key=True),
        Column("description", Text, nullable=False, default=""),
        Column("organization", Text, nullable=False, default=""),
    )

    user = Table(
        "user_table",
        metadata,
        Column("creation_time", BigInteger, nullable=False, default=0),
        Column("mod_time", BigInteger, nullable=False, default=0),
        Column("deleted", SmallInteger, default=0),
        Column("name", Text, primary_key=True),
        Column("admin_level", SmallInteger, nullable=False, default=1),
    )

    qos = Table(
        "qos_table",
        metadata,
        Column("creation_time", BigInteger, nullable=False, default=0),
        Column("mod_time", BigInteger, nullable=False, default=0),
        Column("deleted", SmallInteger, default=0),
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", Text, nullable=False),
        Column("description", Text),
        Column("flags", Integer, default=0),
        Column("grace_time", Integer),
        Column("max_jobs_pa", Integer),
        Column("max_jobs_per_user", Integer),
        Column("max_submit_jobs_pa", Integer),
        Column("max_submit_jobs_per_user", Integer),
        Column("max_tres_pa", Text, nullable=False, default=""),
        Column("max_tres_pj", Text, nullable=False, default=""),
        Column("max_tres_pn", Text, nullable=False, default=""),
        Column("max_tres_pu", Text, nullable=False, default=""),
        Column("max_wall_duration_per_job", Integer),
        Column("grp_jobs", Integer),
        Column("grp_submit_jobs", Integer),
        Column("grp_tres", Text, nullable=False, default=""),
        Column("grp_wall", Integer),
        Column("preempt", Text, nullable=False, default=""),
        Column("preempt_mode", Integer, default=0),
        Column("priority", Integer, default=0),
        Column("usage_factor", Float, nullable=False, default=1.0),
    )

    association = Table(
        assoc_table_name(cluster_name),
        metadata,
        Column("creation_time", BigInteger, nullable=False, default=0),
        Column("mod_time", BigInteger, nullable=False, default=0),
        Column("deleted", SmallInteger, default=0),
        Column("is_def", SmallInteger, default=0),
        Column("id_assoc", Integer, primary_key=True, autoincrement=True),
        Column("user", Text, nullable=False, default=""),
        Column("acct", Text, nullable=False),
        Column("partition", Text, nullable=False, default=""),
        Column("parent_acct", Text, nullable=False, default=""),
        Column("shares", Integer, default=1),
        Column("max_jobs", Integer),
        Column("max_jobs_accrue", Integer),
        Column("min_prio_thresh", Integer),
        Column("max_submit_jobs", Integer),
        Column("max_tres_pj", Text, nullable=False, default=""),
        Column("max_tres_pn", Text, nullable=False, default=""),
        Column("max_tres_mins_pj", Text, nullable=False, default=""),
        Column("max_tres_run_mins", Text, nullable=False, default=""),
        Column("max_wall_pj", Integer),
        Column("grp_jobs", Integer),
        Column("grp_jobs_accrue", Integer),
        Column("grp_submit_jobs", Integer),
        Column("grp_tres", Text, nullable=False, default=""),
        Column("grp_tres_mins", Text, nullable=False, default=""),
        Column("grp_tres_run_mins", Text, nullable=False, default=""),
        Column("grp_wall", Integer),
        Column("priority", Integer),
        Column("def_qos_id", Integer),
        Column("qos", Text, nullable=False, default=""),
    )

    return AccountingTables(
        metadata=metadata,
        account=account,
        user=user,
        qos=qos,
        association=association,
    )
