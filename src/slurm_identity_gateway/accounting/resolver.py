"""Association graph resolver.

Reconstructs the account/user hierarchy from a flat snapshot of association
edges. Everything here is a pure function over already-fetched rows: no
queries, no caching, no recursion beyond one level. Deleted edges are
ignored even if the caller passed them in.

"Distinct" results keep first-seen order, but callers must not rely on it;
handlers sort before presenting.
"""

from collections.abc import Iterable, Iterator, Mapping

from .exceptions import (
    AmbiguousAssociationError,
    AssociationNotFoundError,
    PreconditionError,
)
from .types import (
    AccountRecord,
    AccountTree,
    AssociationEdge,
    AssociationTree,
    SubUser,
    UserPartitions,
    UserRecord,
)


def _require(value: str, what: str) -> str:
    """Reject empty or blank required names before any work is done."""
    if not value or not value.strip():
        msg = f"{what} is required"
        raise PreconditionError(msg)
    return value


def _live(edges: Iterable[AssociationEdge]) -> Iterator[AssociationEdge]:
    return (edge for edge in edges if not edge.deleted)


def _distinct(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def direct_children(
    edges: Iterable[AssociationEdge],
    account: str,
) -> tuple[list[str], list[str]]:
    """Return the direct sub-accounts and sub-users of an account.

    Sub-accounts are account-level rows whose parent is ``account``;
    sub-users are the non-empty users of rows under ``account``. Only one
    level is returned: grandchildren require another call.

    Args:
        edges: Association snapshot.
        account: Parent account name.

    Returns:
        Tuple of (sub-account names, sub-user names), both distinct.

    Raises:
        PreconditionError: If account is empty.
    """
    _require(account, "account name")
    sub_accounts = []
    sub_users = []
    for edge in _live(edges):
        if edge.is_account_level and edge.parent_account == account:
            sub_accounts.append(edge.account)
        elif not edge.is_account_level and edge.account == account:
            sub_users.append(edge.user)
    return _distinct(sub_accounts), _distinct(sub_users)


def parent_accounts(edges: Iterable[AssociationEdge], user: str) -> list[str]:
    """Return the distinct accounts a user is associated with, across partitions.

    Raises:
        PreconditionError: If user is empty.
    """
    _require(user, "username")
    return _distinct(edge.account for edge in _live(edges) if edge.user == user)


def default_partitions(edges: Iterable[AssociationEdge], account: str) -> list[str]:
    """Return the non-empty partition values of an account's own rows.

    The result may be empty (no partition set), a single value or several
    values; an account with more than one account-level row is reported
    as-is.

    Raises:
        PreconditionError: If account is empty.
    """
    _require(account, "account name")
    return _distinct(
        edge.partition
        for edge in _live(edges)
        if edge.account == account and edge.is_account_level and edge.partition
    )


def user_partitions(
    edges: Iterable[AssociationEdge],
    account: str,
    user: str,
) -> list[str]:
    """Return the distinct non-empty partitions of a user under an account.

    Raises:
        PreconditionError: If account or user is empty.
    """
    _require(account, "account name")
    _require(user, "username")
    return _distinct(
        edge.partition
        for edge in _live(edges)
        if edge.account == account and edge.user == user and edge.partition
    )


def find_association(
    edges: Iterable[AssociationEdge],
    account: str,
    user: str | None = None,
    partition: str | None = None,
) -> AssociationEdge:
    """Find the single association matching the filters.

    ``user`` and ``partition`` are optional; an empty or blank value means
    the filter is not applied.

    Args:
        edges: Association snapshot.
        account: Account name (required).
        user: Optional user filter.
        partition: Optional partition filter.

    Returns:
        The only matching edge.

    Raises:
        PreconditionError: If account is empty.
        AssociationNotFoundError: If no edge matches.
        AmbiguousAssociationError: If more than one edge matches.
    """
    _require(account, "account")
    user = user.strip() if user else ""
    partition = partition.strip() if partition else ""

    matches = [
        edge
        for edge in _live(edges)
        if edge.account == account
        and (not user or edge.user == user)
        and (not partition or edge.partition == partition)
    ]

    description = f"account={account!r} user={user!r} partition={partition!r}"
    if not matches:
        msg = f"no association matched {description}"
        raise AssociationNotFoundError(msg)
    if len(matches) > 1:
        msg = f"{len(matches)} associations matched {description}"
        raise AmbiguousAssociationError(msg, match_count=len(matches))
    return matches[0]


def build_account_tree(
    account: AccountRecord,
    edges: Iterable[AssociationEdge],
    users: Mapping[str, UserRecord],
) -> AccountTree:
    """Assemble an account's one-level tree.

    Args:
        account: Account metadata, looked up by exact name.
        edges: Association snapshot.
        users: User records for the sub-users, fetched in one batch. A user
            missing from the mapping gets no admin level.

    Returns:
        AccountTree with sub-users annotated with their own parent accounts.
    """
    edges = list(edges)
    sub_accounts, sub_users = direct_children(edges, account.name)
    return AccountTree(
        account=account.name,
        description=account.description,
        organization=account.organization,
        sub_accounts=sub_accounts,
        sub_users=[
            SubUser(
                name=name,
                parent_accounts=parent_accounts(edges, name),
                admin_level=users[name].admin_level if name in users else None,
            )
            for name in sub_users
        ],
    )


def build_association_tree(
    edges: Iterable[AssociationEdge],
    account: str,
) -> AssociationTree:
    """Assemble an account's association view.

    Args:
        edges: Association snapshot.
        account: Account name.

    Returns:
        AssociationTree with the root's default partitions and each
        sub-user's partitions under the account.
    """
    edges = list(edges)
    sub_accounts, sub_users = direct_children(edges, account)
    return AssociationTree(
        account=account,
        default_partitions=default_partitions(edges, account),
        sub_accounts=sub_accounts,
        users=[
            UserPartitions(user=name, partitions=user_partitions(edges, account, name))
            for name in sub_users
        ],
    )
