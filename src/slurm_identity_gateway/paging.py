"""Pagination parameters and links for list endpoints."""

from collections.abc import Mapping, Sequence
from typing import TypeVar

import pydantic
from starlette.datastructures import URL

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class InvalidParameterError(ValueError):
    """A query parameter could not be interpreted."""


class PagingQuery(pydantic.BaseModel):
    """Page number (from 1) and page size."""

    page: int = pydantic.Field(DEFAULT_PAGE, ge=1)
    page_size: int = pydantic.Field(DEFAULT_PAGE_SIZE, ge=1)

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, str],
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> "PagingQuery":
        """Read ``page`` and ``page_size`` from query parameters.

        Missing or non-positive values fall back to the defaults and the page
        size is capped at ``max_page_size``.

        Raises:
            InvalidParameterError: If a value is not an integer.
        """
        page = int_param(params, "page")
        page_size = int_param(params, "page_size")
        if page is None or page <= 0:
            page = DEFAULT_PAGE
        if page_size is None or page_size <= 0:
            page_size = default_page_size
        if max_page_size > 0:
            page_size = min(page_size, max_page_size)
        return cls(page=page, page_size=page_size)

    @property
    def offset(self) -> int:
        """Rows to skip before this page."""
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        """Rows on this page."""
        return self.page_size

    def slice(self, items: Sequence[T]) -> list[T]:
        """Return this page of an in-memory list."""
        return list(items[self.offset : self.offset + self.limit])


def int_param(params: Mapping[str, str], name: str) -> int | None:
    """Read an optional integer query parameter.

    Raises:
        InvalidParameterError: If the value is not an integer.
    """
    raw = params.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        msg = f"invalid {name} parameter"
        raise InvalidParameterError(msg) from e


def bool_param(params: Mapping[str, str], name: str, default: bool) -> bool:
    """Read a boolean query parameter.

    Raises:
        InvalidParameterError: If the value is not a recognised boolean.
    """
    raw = params.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    msg = f"invalid {name} parameter"
    raise InvalidParameterError(msg)


def build_page_links(
    url: URL,
    page: int,
    page_size: int,
    total: int,
) -> tuple[str | None, str | None]:
    """Build previous/next links for a page, keeping other query parameters.

    Returns:
        Tuple of (previous, next); None where there is no such page.
    """
    previous = None
    following = None
    if page > 1 and total > 0:
        last_page = max(1, -(-total // page_size))
        previous = str(
            url.include_query_params(page=min(page - 1, last_page), page_size=page_size),
        )
    if page * page_size < total:
        following = str(url.include_query_params(page=page + 1, page_size=page_size))
    return previous, following
