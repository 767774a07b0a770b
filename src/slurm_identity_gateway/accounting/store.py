"""Read-only access to the accounting database.

All reads go through :class:`ReadOnlyQuery`, which only runs ``SELECT``
statements and never opens a transaction it could commit. The store returns
validated records; tree assembly is left to the resolver.
"""

import time
from collections.abc import Iterable
from typing import Any

import sqlalchemy
import structlog
from sqlalchemy.engine import Engine, Row, make_url
from sqlalchemy.sql import Select

from .exceptions import AccountNotFoundError, PreconditionError, QosNotFoundError
from .schema import AccountingTables, build_tables
from .types import AccountRecord, AssociationEdge, QosRecord, UserRecord

logger = structlog.get_logger(__name__)

DEFAULT_POOL_RECYCLE = 3600


class ReadOnlyQuery:
    """Runs SELECT statements against an engine.

    There is no method accepting anything but a :class:`~sqlalchemy.sql.Select`,
    and connections are released without commit.
    """

    def __init__(self, engine: Engine):
        """Initialize with the engine to read from."""
        self._engine = engine

    def _check(self, statement: Select) -> None:
        if not isinstance(statement, Select):
            msg = f"read-only query accepts SELECT statements only, got {type(statement).__name__}"
            raise TypeError(msg)

    def rows(self, statement: Select) -> list[Row]:
        """Return all result rows."""
        self._check(statement)
        start_time = time.time()
        with self._engine.connect() as conn:
            rows = list(conn.execute(statement))
        logger.debug(
            "Query completed",
            rows=len(rows),
            duration_seconds=round(time.time() - start_time, 3),
        )
        return rows

    def scalar(self, statement: Select) -> Any:
        """Return the first column of the first row, or None."""
        self._check(statement)
        with self._engine.connect() as conn:
            return conn.execute(statement).scalar()


def _page(statement: Select, offset: int, limit: int) -> Select:
    if limit > 0:
        statement = statement.limit(limit)
    if offset > 0:
        statement = statement.offset(offset)
    return statement


class AccountingStore:
    """Queries a cluster's accounting tables.

    Can be used as a context manager to dispose of the engine's pool.
    """

    def __init__(self, engine: Engine, cluster_name: str):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine for the accounting database.
            cluster_name: Cluster whose association table is read.

        Raises:
            ValueError: If cluster_name is empty.
        """
        if not cluster_name or not cluster_name.strip():
            msg = "cluster_name cannot be empty"
            raise ValueError(msg)
        self.cluster_name = cluster_name
        self.tables: AccountingTables = build_tables(cluster_name)
        self._engine = engine
        self._query = ReadOnlyQuery(engine)

    @classmethod
    def from_url(
        cls,
        url: str,
        cluster_name: str,
        pool_size: int | None = None,
        pool_recycle: int = DEFAULT_POOL_RECYCLE,
        connect_timeout: int | None = None,
    ) -> "AccountingStore":
        """Create a store from a database URL.

        Pool options are ignored for SQLite, which does not pool the same way.
        """
        kwargs: dict[str, Any] = {}
        backend = make_url(url).get_backend_name()
        if backend != "sqlite":
            kwargs["pool_pre_ping"] = True
            kwargs["pool_recycle"] = pool_recycle
            if pool_size:
                kwargs["pool_size"] = pool_size
            if connect_timeout:
                kwargs["connect_args"] = {"connect_timeout": connect_timeout}
        engine = sqlalchemy.create_engine(url, **kwargs)
        logger.info("Created accounting engine", backend=backend, cluster=cluster_name)
        return cls(engine, cluster_name)

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and dispose of the connection pool."""
        self.close()

    def close(self):
        """Dispose of the engine's connection pool."""
        self._engine.dispose()

    def _to_edge(self, row: Row) -> AssociationEdge:
        data = dict(row._mapping)
        return AssociationEdge(
            id_assoc=data.pop("id_assoc"),
            cluster=self.cluster_name,
            account=data.pop("acct"),
            user=data.pop("user") or "",
            partition=data.pop("partition") or "",
            parent_account=data.pop("parent_acct") or "",
            deleted=bool(data.pop("deleted")),
            **{key: value for key, value in data.items() if value is not None},
        )

    def fetch_edges(self) -> list[AssociationEdge]:
        """Return every non-deleted association of the cluster."""
        assoc = self.tables.association
        columns = [
            column
            for column in assoc.columns
            if column.name not in ("creation_time", "mod_time", "is_def")
        ]
        statement = sqlalchemy.select(*columns).where(assoc.c.deleted == 0)
        return [self._to_edge(row) for row in self._query.rows(statement)]

    def get_account(self, name: str) -> AccountRecord:
        """Return a live account by exact name.

        Raises:
            PreconditionError: If name is empty.
            AccountNotFoundError: If no live account has that name.
        """
        if not name or not name.strip():
            msg = "account name is required"
            raise PreconditionError(msg)
        acct = self.tables.account
        statement = sqlalchemy.select(
            acct.c.name,
            acct.c.description,
            acct.c.organization,
            acct.c.deleted,
        ).where(acct.c.name == name, acct.c.deleted == 0)
        rows = self._query.rows(statement)
        if not rows:
            msg = f"account {name!r} not found or deleted"
            raise AccountNotFoundError(msg)
        return AccountRecord.model_validate(dict(rows[0]._mapping))

    def list_accounts(
        self,
        offset: int = 0,
        limit: int = 0,
    ) -> tuple[list[AccountRecord], int]:
        """Return live accounts ordered by name, and their total count.

        Args:
            offset: Rows to skip.
            limit: Maximum rows to return; 0 returns all.
        """
        acct = self.tables.account
        condition = acct.c.deleted == 0
        total = self._query.scalar(
            sqlalchemy.select(sqlalchemy.func.count()).select_from(acct).where(condition),
        )
        statement = _page(
            sqlalchemy.select(
                acct.c.name,
                acct.c.description,
                acct.c.organization,
                acct.c.deleted,
            )
            .where(condition)
            .order_by(acct.c.name),
            offset,
            limit,
        )
        records = [
            AccountRecord.model_validate(dict(row._mapping))
            for row in self._query.rows(statement)
        ]
        return records, total or 0

    def list_users(
        self,
        deleted: bool | None = False,
        admin_level: int | None = None,
        offset: int = 0,
        limit: int = 0,
    ) -> tuple[list[UserRecord], int]:
        """Return users ordered by name, and their total count.

        Args:
            deleted: Filter on the deleted flag; None returns both.
            admin_level: Optional admin level filter.
            offset: Rows to skip.
            limit: Maximum rows to return; 0 returns all.
        """
        user = self.tables.user
        count = sqlalchemy.select(sqlalchemy.func.count()).select_from(user)
        statement = sqlalchemy.select(user.c.name, user.c.admin_level, user.c.deleted)
        if deleted is not None:
            count = count.where(user.c.deleted == int(deleted))
            statement = statement.where(user.c.deleted == int(deleted))
        if admin_level is not None:
            count = count.where(user.c.admin_level == admin_level)
            statement = statement.where(user.c.admin_level == admin_level)
        total = self._query.scalar(count)
        statement = _page(statement.order_by(user.c.name), offset, limit)
        records = [
            UserRecord.model_validate(dict(row._mapping))
            for row in self._query.rows(statement)
        ]
        return records, total or 0

    def get_users(self, names: Iterable[str]) -> dict[str, UserRecord]:
        """Return live user records for the given names in a single query.

        Names without a live user row are absent from the result.
        """
        names = sorted(set(names))
        if not names:
            return {}
        user = self.tables.user
        statement = sqlalchemy.select(
            user.c.name,
            user.c.admin_level,
            user.c.deleted,
        ).where(user.c.name.in_(names), user.c.deleted == 0)
        records = (
            UserRecord.model_validate(dict(row._mapping))
            for row in self._query.rows(statement)
        )
        return {record.name: record for record in records}

    def _qos_select(self) -> Select:
        qos = self.tables.qos
        columns = [
            column
            for column in qos.columns
            if column.name not in ("creation_time", "mod_time", "deleted")
        ]
        return sqlalchemy.select(*columns).where(qos.c.deleted == 0)

    def get_qos(self, qos_id: int) -> QosRecord:
        """Return a live QoS by id.

        Raises:
            QosNotFoundError: If no live QoS has that id.
        """
        statement = self._qos_select().where(self.tables.qos.c.id == qos_id)
        rows = self._query.rows(statement)
        if not rows:
            msg = f"qos {qos_id} not found"
            raise QosNotFoundError(msg)
        return QosRecord.model_validate(dict(rows[0]._mapping))

    def list_qos(self, offset: int = 0, limit: int = 0) -> tuple[list[QosRecord], int]:
        """Return live QoS ordered by descending id, and their total count."""
        qos = self.tables.qos
        total = self._query.scalar(
            sqlalchemy.select(sqlalchemy.func.count())
            .select_from(qos)
            .where(qos.c.deleted == 0),
        )
        statement = _page(self._qos_select().order_by(qos.c.id.desc()), offset, limit)
        records = [
            QosRecord.model_validate(dict(row._mapping))
            for row in self._query.rows(statement)
        ]
        return records, total or 0
