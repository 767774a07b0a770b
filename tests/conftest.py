"""Shared fixtures: an in-memory accounting database."""

import pytest
import sqlalchemy
from sqlalchemy.pool import StaticPool

from slurm_identity_gateway.accounting import AccountingStore
from slurm_identity_gateway.accounting.types import (
    ADMIN_LEVEL_ADMINISTRATOR,
    ADMIN_LEVEL_NONE,
    ADMIN_LEVEL_OPERATOR,
)

CLUSTER = "testcluster"

ACCOUNTS = [
    {"name": "root", "description": "default root account", "organization": "root"},
    {"name": "physics", "description": "Physics", "organization": "science"},
    {"name": "chemistry", "description": "Chemistry", "organization": "science"},
    {"name": "astro", "description": "Astrophysics", "organization": "science"},
    {"name": "retired", "description": "Old", "organization": "none", "deleted": 1},
]

USERS = [
    {"name": "alice", "admin_level": ADMIN_LEVEL_ADMINISTRATOR},
    {"name": "bob", "admin_level": ADMIN_LEVEL_NONE},
    {"name": "carol", "admin_level": ADMIN_LEVEL_OPERATOR},
    {"name": "dave", "admin_level": ADMIN_LEVEL_NONE},
    {"name": "eve", "admin_level": ADMIN_LEVEL_NONE, "deleted": 1},
]

QOS = [
    {"id": 1, "name": "normal", "priority": 10},
    {"id": 2, "name": "high", "priority": 100, "grp_tres": "cpu=1000"},
    {"id": 3, "name": "gone", "deleted": 1},
]

ASSOCIATIONS = [
    {"id_assoc": 1, "acct": "root"},
    {"id_assoc": 2, "acct": "root", "user": "bob"},
    {"id_assoc": 3, "acct": "physics", "parent_acct": "root", "partition": "cp1"},
    {"id_assoc": 4, "acct": "chemistry", "parent_acct": "root"},
    {"id_assoc": 5, "acct": "astro", "parent_acct": "physics"},
    {"id_assoc": 6, "acct": "astro", "user": "carol", "partition": "gpu"},
    {
        "id_assoc": 7,
        "acct": "physics",
        "user": "alice",
        "partition": "cp1",
        "shares": 10,
        "max_jobs": 50,
        "grp_tres": "cpu=128",
        "qos": ",1,2,",
    },
    {"id_assoc": 8, "acct": "physics", "user": "alice", "partition": "gpu"},
    {"id_assoc": 9, "acct": "physics", "user": "dave", "partition": "cp1"},
    {"id_assoc": 10, "acct": "chemistry", "user": "alice", "partition": "cp1"},
    {"id_assoc": 11, "acct": "physics", "user": "eve", "partition": "cp1", "deleted": 1},
    {"id_assoc": 12, "acct": "retired", "parent_acct": "physics", "deleted": 1},
]


@pytest.fixture
def engine() -> sqlalchemy.engine.Engine:
    """In-memory SQLite engine shared across connections."""
    engine = sqlalchemy.create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine: sqlalchemy.engine.Engine) -> AccountingStore:
    """Accounting store over a populated in-memory database."""
    store = AccountingStore(engine, CLUSTER)
    tables = store.tables
    tables.metadata.create_all(engine)
    with engine.begin() as conn:
        for table, rows in (
            (tables.account, ACCOUNTS),
            (tables.user, USERS),
            (tables.qos, QOS),
            (tables.association, ASSOCIATIONS),
        ):
            for row in rows:
                conn.execute(sqlalchemy.insert(table).values(**row))
    return store
