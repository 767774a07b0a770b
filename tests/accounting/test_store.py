"""Tests for the read-only accounting store."""

import pytest
import sqlalchemy

from slurm_identity_gateway.accounting import (
    AccountingStore,
    AccountNotFoundError,
    PreconditionError,
    QosNotFoundError,
    ReadOnlyQuery,
)
from slurm_identity_gateway.accounting.schema import assoc_table_name
from slurm_identity_gateway.accounting.types import (
    ADMIN_LEVEL_ADMINISTRATOR,
    ADMIN_LEVEL_NONE,
)

# ---------------------------------------------------------------------------
# ReadOnlyQuery
# ---------------------------------------------------------------------------


def test_read_only_query_rejects_writes(store: AccountingStore, engine):
    """Only SELECT statements are accepted."""
    query = ReadOnlyQuery(engine)
    statements = [
        sqlalchemy.insert(store.tables.user).values(name="mallory"),
        sqlalchemy.update(store.tables.user).values(admin_level=3),
        sqlalchemy.delete(store.tables.user),
    ]

    for statement in statements:
        with pytest.raises(TypeError, match="SELECT statements only"):
            query.rows(statement)
        with pytest.raises(TypeError, match="SELECT statements only"):
            query.scalar(statement)

    assert len(store.get_users(["alice", "bob"])) == 2


def test_read_only_query_select(store: AccountingStore, engine):
    """SELECT statements run normally."""
    query = ReadOnlyQuery(engine)
    count = sqlalchemy.select(sqlalchemy.func.count()).select_from(store.tables.user)

    assert query.scalar(count) == 5


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_store_requires_cluster_name(engine):
    """The association table cannot be named without a cluster."""
    with pytest.raises(ValueError, match="cluster_name cannot be empty"):
        AccountingStore(engine, " ")


def test_store_association_table_is_per_cluster(store: AccountingStore):
    """The association table name is prefixed by the cluster."""
    assert store.tables.association.name == assoc_table_name("testcluster")
    assert store.tables.association.name == "testcluster_assoc_table"


def test_from_url_sqlite():
    """A SQLite URL builds a working store."""
    with AccountingStore.from_url("sqlite://", "c1", pool_size=5) as store:
        assert store.cluster_name == "c1"


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


def test_fetch_edges_excludes_deleted(store: AccountingStore):
    """Deleted association rows are never returned."""
    edges = store.fetch_edges()

    assert len(edges) == 10
    assert all(not edge.deleted for edge in edges)
    assert {edge.cluster for edge in edges} == {"testcluster"}
    assert "eve" not in {edge.user for edge in edges}


def test_fetch_edges_maps_columns(store: AccountingStore):
    """Column names map to edge fields, limits included."""
    edges = {edge.id_assoc: edge for edge in store.fetch_edges()}

    alice = edges[7]
    assert alice.account == "physics"
    assert alice.user == "alice"
    assert alice.partition == "cp1"
    assert alice.shares == 10
    assert alice.max_jobs == 50
    assert alice.grp_tres == "cpu=128"
    assert alice.qos == ",1,2,"
    assert edges[3].parent_account == "root"
    assert edges[3].is_account_level


# ---------------------------------------------------------------------------
# Accounts and users
# ---------------------------------------------------------------------------


def test_get_account(store: AccountingStore):
    """Accounts are looked up by exact name."""
    account = store.get_account("physics")

    assert account.description == "Physics"
    assert account.organization == "science"


def test_get_account_deleted_is_not_found(store: AccountingStore):
    """Deleted accounts are not found."""
    with pytest.raises(AccountNotFoundError):
        store.get_account("retired")


def test_get_account_requires_name(store: AccountingStore):
    """An empty name is rejected before querying."""
    with pytest.raises(PreconditionError):
        store.get_account("")


def test_list_accounts_paged(store: AccountingStore):
    """Accounts are ordered by name and the total ignores the page."""
    records, total = store.list_accounts(offset=1, limit=2)

    assert total == 4
    assert [record.name for record in records] == ["chemistry", "physics"]


def test_list_accounts_unpaged(store: AccountingStore):
    """A zero limit returns all live accounts."""
    records, total = store.list_accounts()

    assert [record.name for record in records] == ["astro", "chemistry", "physics", "root"]
    assert total == 4


def test_list_users_filters(store: AccountingStore):
    """Deleted and admin level filters apply to rows and total."""
    records, total = store.list_users()
    assert total == 4
    assert [record.name for record in records] == ["alice", "bob", "carol", "dave"]

    records, total = store.list_users(deleted=True)
    assert total == 1
    assert records[0].name == "eve"

    records, total = store.list_users(deleted=None, admin_level=ADMIN_LEVEL_NONE)
    assert total == 3
    assert [record.name for record in records] == ["bob", "dave", "eve"]

    records, total = store.list_users(admin_level=ADMIN_LEVEL_NONE, offset=1, limit=1)
    assert total == 2
    assert [record.name for record in records] == ["dave"]


def test_get_users_batch(store: AccountingStore):
    """Live users are returned keyed by name; unknown and deleted are absent."""
    users = store.get_users(["alice", "eve", "nobody", "alice"])

    assert list(users) == ["alice"]
    assert users["alice"].admin_level == ADMIN_LEVEL_ADMINISTRATOR


def test_get_users_empty(store: AccountingStore):
    """No names means no query and no users."""
    assert store.get_users([]) == {}


# ---------------------------------------------------------------------------
# QoS
# ---------------------------------------------------------------------------


def test_get_qos(store: AccountingStore):
    """QoS are looked up by id."""
    qos = store.get_qos(2)

    assert qos.name == "high"
    assert qos.priority == 100
    assert qos.grp_tres == "cpu=1000"


def test_get_qos_deleted_is_not_found(store: AccountingStore):
    """Deleted QoS are not found."""
    with pytest.raises(QosNotFoundError):
        store.get_qos(3)


def test_list_qos_descending(store: AccountingStore):
    """QoS are listed by descending id."""
    records, total = store.list_qos()

    assert total == 2
    assert [record.id for record in records] == [2, 1]
