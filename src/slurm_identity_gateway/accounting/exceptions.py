"""Errors raised by the accounting resolver and store."""


class PreconditionError(ValueError):
    """A required name was empty; nothing was queried."""


class AccountingLookupError(Exception):
    """Base class for lookups that did not yield exactly one record."""


class AccountNotFoundError(AccountingLookupError):
    """No live account has the requested name."""


class QosNotFoundError(AccountingLookupError):
    """No live QoS has the requested id."""


class AssociationNotFoundError(AccountingLookupError):
    """No live association matched the filters."""


class AmbiguousAssociationError(AccountingLookupError):
    """More than one live association matched a single-result lookup."""

    def __init__(self, message: str, match_count: int) -> None:
        """Initialize exception with message and number of matching rows.

        Args:
            message: The error message describing the filters
            match_count: How many rows matched
        """
        super().__init__(message)
        self.match_count = match_count
