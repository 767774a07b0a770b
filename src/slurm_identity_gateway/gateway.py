"""Query facade between HTTP handlers and the backends.

A single :class:`Gateway` is built at start-up and handed to the HTTP app;
handlers never reach the backends directly. The facade fetches raw data
(command output, association rows), passes it to the parser or resolver and
returns the structured result. It adds no caching: every call reflects the
backends' current state.
"""

from collections.abc import Callable, Sequence
from typing import TypeVar

import structlog

from .accounting import AccountingStore, resolver
from .accounting.types import (
    AccountRecord,
    AccountTree,
    AssociationEdge,
    AssociationTree,
    QosRecord,
    UserRecord,
)
from .collector import ParseStatsCollector
from .directory import (
    DirectoryClient,
    DirectoryEntry,
    DirectoryUnavailableError,
    DirectoryUser,
)
from .scheduler import ParseResult, SchedulerClient, SchedulerCommandError
from .scheduler.types import Job, Node, Partition, Step

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Gateway:
    """Aggregates scheduler and accounting queries."""

    def __init__(
        self,
        scheduler: SchedulerClient,
        accounting: AccountingStore,
        stats: ParseStatsCollector | None = None,
        directory: DirectoryClient | None = None,
    ):
        """Initialize the gateway.

        Args:
            scheduler: Client running the scheduler commands.
            accounting: Read-only accounting store.
            stats: Collector recording parse statistics.
            directory: LDAP directory client; directory queries fail without it.
        """
        self.scheduler = scheduler
        self.accounting = accounting
        self.stats = stats or ParseStatsCollector()
        self.directory = directory

    @property
    def cluster_name(self) -> str:
        """Cluster whose accounting data is served."""
        return self.accounting.cluster_name

    def _command(self, command: str, fetch: Callable[[], T]) -> T:
        try:
            return fetch()
        except SchedulerCommandError:
            self.stats.record_command_error(command)
            raise

    def _parsed(self, command: str, fetch: Callable[[], ParseResult]) -> ParseResult:
        result = self._command(command, fetch)
        self.stats.record_parse(result)
        return result

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def nodes(
        self,
        partition: str | None = None,
        state: str | None = None,
        nodes: str | None = None,
    ) -> list[Node]:
        """List nodes, one record per node with its partitions merged."""
        result = self._parsed(
            "sinfo",
            lambda: self.scheduler.get_nodes(partition=partition, state=state, nodes=nodes),
        )
        return result.records

    def jobs(self) -> list[Job]:
        """List the jobs currently known to the scheduler."""
        return self._parsed("squeue", self.scheduler.get_jobs).records

    def job(self, job_id: str) -> Job | None:
        """Return one job, or None if the scheduler does not report that id.

        An exact id match wins. Otherwise the first element of an array job
        with that id (reported as ``<id>_<index>``) is returned.
        """
        records = self._parsed("squeue", lambda: self.scheduler.get_jobs(job_id)).records
        array_prefix = f"{job_id}_"
        first_element = None
        for job in records:
            if job.job_id == job_id:
                return job
            if first_element is None and job.job_id.startswith(array_prefix):
                first_element = job
        return first_element

    def steps(self, job_id: str) -> list[Step]:
        """List the steps of a job."""
        return self._parsed("squeue", lambda: self.scheduler.get_steps(job_id)).records

    def partitions(self, names: Sequence[str] | None = None) -> list[Partition]:
        """Describe all partitions, or only the named ones."""
        return self._command("scontrol", lambda: self.scheduler.get_partitions(names))

    def partition(self, name: str) -> Partition:
        """Describe one partition; empty mapping when not reported."""
        return self._command("scontrol", lambda: self.scheduler.get_partition(name))

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def edges(self) -> list[AssociationEdge]:
        """Return the current association snapshot."""
        return self.accounting.fetch_edges()

    def account_tree(self, account: str) -> AccountTree:
        """Build an account's one-level tree.

        Issues three queries regardless of the number of sub-users: the
        account row, the association snapshot and one batch user lookup.

        Raises:
            PreconditionError: If account is empty.
            AccountNotFoundError: If the account does not exist.
        """
        record = self.accounting.get_account(account)
        edges = self.edges()
        _, sub_users = resolver.direct_children(edges, record.name)
        users = self.accounting.get_users(sub_users)
        logger.debug(
            "Built account tree",
            account=account,
            sub_users=len(sub_users),
            edges=len(edges),
        )
        return resolver.build_account_tree(record, edges, users)

    def association_tree(self, account: str) -> AssociationTree:
        """Build an account's association view."""
        return resolver.build_association_tree(self.edges(), account)

    def association(
        self,
        account: str,
        user: str | None = None,
        partition: str | None = None,
    ) -> AssociationEdge:
        """Return the single association matching the filters.

        Raises:
            PreconditionError: If account is empty.
            AssociationNotFoundError: If nothing matches.
            AmbiguousAssociationError: If several associations match.
        """
        return resolver.find_association(self.edges(), account, user, partition)

    def parent_accounts(self, user: str) -> list[str]:
        """Return the accounts a user belongs to."""
        return resolver.parent_accounts(self.edges(), user)

    def accounts(self, offset: int = 0, limit: int = 0) -> tuple[list[AccountRecord], int]:
        """Return a page of live accounts and the total count."""
        return self.accounting.list_accounts(offset=offset, limit=limit)

    def users(
        self,
        deleted: bool | None = False,
        admin_level: int | None = None,
        offset: int = 0,
        limit: int = 0,
    ) -> tuple[list[UserRecord], int]:
        """Return a page of users and the total count."""
        return self.accounting.list_users(
            deleted=deleted,
            admin_level=admin_level,
            offset=offset,
            limit=limit,
        )

    def qos(self, qos_id: int) -> QosRecord:
        """Return one QoS by id."""
        return self.accounting.get_qos(qos_id)

    def qos_list(self, offset: int = 0, limit: int = 0) -> tuple[list[QosRecord], int]:
        """Return a page of QoS and the total count."""
        return self.accounting.list_qos(offset=offset, limit=limit)

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def _directory(self) -> DirectoryClient:
        if self.directory is None:
            msg = "no directory is configured"
            raise DirectoryUnavailableError(msg)
        return self.directory

    def directory_users(self) -> list[DirectoryEntry]:
        """Return all directory users, ordered by uidNumber."""
        return self._directory().get_users()

    def directory_user(self, uid: str) -> DirectoryEntry:
        """Return one directory user."""
        return self._directory().get_user(uid)

    def directory_groups(self) -> list[DirectoryEntry]:
        """Return all directory groups, ordered by gidNumber."""
        return self._directory().get_groups()

    def users_with_directory(
        self,
        offset: int = 0,
        limit: int = 0,
    ) -> tuple[list[DirectoryUser], int]:
        """Return a page of accounting users merged with their directory attributes.

        The page is read from the accounting store (deleted users included),
        then its names are looked up in the directory in a single search.
        Users without a directory entry get empty attributes.

        Raises:
            DirectoryUnavailableError: If no directory is configured.
        """
        directory = self._directory()
        records, total = self.accounting.list_users(
            deleted=None,
            offset=offset,
            limit=limit,
        )
        attributes = directory.get_users_by_uid(record.name for record in records)
        users = [
            DirectoryUser(
                **record.model_dump(),
                ldap_attrs=attributes.get(record.name, {}),
            )
            for record in records
        ]
        return users, total

    def close(self) -> None:
        """Release backend resources."""
        self.accounting.close()
        if self.directory is not None:
            self.directory.close()
