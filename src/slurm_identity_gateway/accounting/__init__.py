"""Accounting database package.

Reads the scheduler's accounting database (accounts, users, QoS and the
per-cluster association table) and resolves the account/user hierarchy.

Exports:
    AccountingStore: Read-only queries returning validated records.
    resolver: Pure functions building trees and lookups from edges.
    types: Module containing the record and tree models.
"""

from . import resolver, types
from .exceptions import (
    AccountingLookupError,
    AccountNotFoundError,
    AmbiguousAssociationError,
    AssociationNotFoundError,
    PreconditionError,
    QosNotFoundError,
)
from .store import AccountingStore, ReadOnlyQuery

__all__ = [
    "AccountNotFoundError",
    "AccountingLookupError",
    "AccountingStore",
    "AmbiguousAssociationError",
    "AssociationNotFoundError",
    "PreconditionError",
    "QosNotFoundError",
    "ReadOnlyQuery",
    "resolver",
    "types",
]
