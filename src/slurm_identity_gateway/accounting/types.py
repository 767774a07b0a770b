"""Accounting records and the trees assembled from them.

Records mirror rows of the accounting database; trees are the one-level
views produced by the association resolver.
"""

from pydantic import BaseModel, Field

# Values of user_table.admin_level.
ADMIN_LEVEL_NONE = 1
ADMIN_LEVEL_OPERATOR = 2
ADMIN_LEVEL_ADMINISTRATOR = 3


class AssociationEdge(BaseModel):
    """One row of a cluster's association table.

    An empty ``user`` marks an account-level row holding the account's own
    settings (e.g. its default partition). A non-empty ``user`` is that
    user's membership under ``account``.
    """

    id_assoc: int = 0
    cluster: str = ""
    account: str
    user: str = ""
    partition: str = ""
    parent_account: str = ""
    deleted: bool = False

    # Limits
    shares: int | None = None
    max_jobs: int | None = None
    max_jobs_accrue: int | None = None
    min_prio_thresh: int | None = None
    max_submit_jobs: int | None = None
    max_tres_pj: str = ""
    max_tres_pn: str = ""
    max_tres_mins_pj: str = ""
    max_tres_run_mins: str = ""
    max_wall_pj: int | None = None
    grp_jobs: int | None = None
    grp_jobs_accrue: int | None = None
    grp_submit_jobs: int | None = None
    grp_tres: str = ""
    grp_tres_mins: str = ""
    grp_tres_run_mins: str = ""
    grp_wall: int | None = None
    priority: int | None = None
    def_qos_id: int | None = None
    qos: str = ""

    @property
    def is_account_level(self) -> bool:
        """True for the account's own row (no user)."""
        return self.user == ""


class AccountRecord(BaseModel):
    """Row of acct_table."""

    name: str
    description: str = ""
    organization: str = ""
    deleted: bool = False


class UserRecord(BaseModel):
    """Row of user_table."""

    name: str
    admin_level: int = ADMIN_LEVEL_NONE
    deleted: bool = False


class QosRecord(BaseModel):
    """Row of qos_table."""

    id: int
    name: str
    description: str | None = None
    flags: int | None = None
    grace_time: int | None = None
    max_jobs_pa: int | None = None
    max_jobs_per_user: int | None = None
    max_submit_jobs_pa: int | None = None
    max_submit_jobs_per_user: int | None = None
    max_tres_pa: str = ""
    max_tres_pj: str = ""
    max_tres_pn: str = ""
    max_tres_pu: str = ""
    max_wall_duration_per_job: int | None = None
    grp_jobs: int | None = None
    grp_submit_jobs: int | None = None
    grp_tres: str = ""
    grp_wall: int | None = None
    preempt: str = ""
    preempt_mode: int | None = None
    priority: int | None = None
    usage_factor: float = 1.0


class SubUser(BaseModel):
    """A user directly under an account, in an account tree."""

    name: str
    parent_accounts: list[str] = Field(default_factory=list)
    admin_level: int | None = None


class AccountTree(BaseModel):
    """An account with its direct sub-accounts and sub-users."""

    account: str
    description: str = ""
    organization: str = ""
    sub_accounts: list[str] = Field(default_factory=list)
    sub_users: list[SubUser] = Field(default_factory=list)


class UserPartitions(BaseModel):
    """A user directly under an account with its partitions there."""

    user: str
    partitions: list[str] = Field(default_factory=list)


class AssociationTree(BaseModel):
    """An account's association view: default partitions, children, users."""

    account: str
    default_partitions: list[str] = Field(default_factory=list)
    sub_accounts: list[str] = Field(default_factory=list)
    users: list[UserPartitions] = Field(default_factory=list)
