"""HTTP endpoints of the gateway API.

Handlers are synchronous (Starlette runs them in its thread pool) and read
their collaborators from ``request.app.state``: the :class:`~.gateway.Gateway`
and the paging settings. Lists are sorted before they are sliced, so pages
are stable between requests.

Every response uses one envelope. Lists carry ``count``, ``previous``,
``next`` and ``results``; single objects carry ``results`` only; errors carry
``detail``.
"""

from collections.abc import Callable, Sequence
from typing import Any

import sqlalchemy.exc
import starlette.requests
import starlette.responses
import starlette.routing
import structlog
from ldap3.core.exceptions import LDAPException
from pydantic import BaseModel

from .accounting import (
    AccountingLookupError,
    AmbiguousAssociationError,
    PreconditionError,
)
from .directory import DirectoryEntryNotFoundError, DirectoryUnavailableError
from .gateway import Gateway
from .paging import (
    InvalidParameterError,
    PagingQuery,
    bool_param,
    build_page_links,
    int_param,
)
from .scheduler import SchedulerCommandError
from .scheduler.types import PARTITION_NAME

logger = structlog.get_logger(__name__)

Request = starlette.requests.Request
JSONResponse = starlette.responses.JSONResponse


class NotFoundError(LookupError):
    """A scheduler object named in the request was not reported."""


def _gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def _paging(request: Request) -> PagingQuery:
    settings = request.app.state.paging
    return PagingQuery.from_params(
        request.query_params,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


def _required(request: Request, name: str) -> str:
    value = request.query_params.get(name, "").strip()
    if not value:
        msg = f"missing {name} parameter"
        raise InvalidParameterError(msg)
    return value


def _optional(request: Request, name: str) -> str | None:
    return request.query_params.get(name, "").strip() or None


def _dump(item: Any) -> Any:
    if isinstance(item, BaseModel):
        return item.model_dump()
    return item


def _list_response(
    request: Request,
    items: Sequence[Any],
    total: int,
    paging: PagingQuery | None,
) -> JSONResponse:
    """Render a list envelope; ``items`` is already the requested page."""
    content: dict[str, Any] = {"count": total, "previous": None, "next": None}
    if paging is not None:
        content["previous"], content["next"] = build_page_links(
            request.url,
            paging.page,
            paging.page_size,
            total,
        )
    content["results"] = [_dump(item) for item in items]
    return JSONResponse(content)


def _sorted_list_response(
    request: Request,
    items: Sequence[Any],
    key: Callable[[Any], Any] | None = None,
) -> JSONResponse:
    """Sort an in-memory list, then page it if paging is enabled.

    Without a key the list is paged in the order given.
    """
    items = sorted(items, key=key) if key is not None else list(items)
    if not bool_param(request.query_params, "paging", default=True):
        return _list_response(request, items, len(items), None)
    paging = _paging(request)
    return _list_response(request, paging.slice(items), len(items), paging)


def _store_list_response(
    request: Request,
    fetch: Callable[[int, int], tuple[list[Any], int]],
) -> JSONResponse:
    """Page a list in the database; ``fetch`` takes (offset, limit)."""
    if not bool_param(request.query_params, "paging", default=True):
        records, total = fetch(0, 0)
        return _list_response(request, records, total, None)
    paging = _paging(request)
    records, total = fetch(paging.offset, paging.limit)
    return _list_response(request, records, total, paging)


def _object_response(item: Any) -> JSONResponse:
    return JSONResponse({"results": _dump(item)})


# ----------------------------------------------------------------------
# Scheduling
# ----------------------------------------------------------------------


def list_nodes(request: Request) -> JSONResponse:
    """GET node/all?partition=&state=&nodes=."""
    nodes = _gateway(request).nodes(
        partition=_optional(request, "partition"),
        state=_optional(request, "state"),
        nodes=_optional(request, "nodes"),
    )
    return _sorted_list_response(request, nodes, key=lambda node: node.name)


def list_jobs(request: Request) -> JSONResponse:
    """GET job/all."""
    jobs = _gateway(request).jobs()
    return _sorted_list_response(request, jobs, key=lambda job: job.job_id)


def get_job(request: Request) -> JSONResponse:
    """GET job?jobid=."""
    job_id = _required(request, "jobid")
    job = _gateway(request).job(job_id)
    if job is None:
        msg = f"job {job_id} not found"
        raise NotFoundError(msg)
    return _object_response(job)


def list_job_steps(request: Request) -> JSONResponse:
    """GET job/steps?jobid=."""
    job_id = _required(request, "jobid")
    steps = _gateway(request).steps(job_id)
    return _list_response(request, steps, len(steps), None)


def list_partitions(request: Request) -> JSONResponse:
    """GET partition/all."""
    partitions = _gateway(request).partitions()
    return _sorted_list_response(
        request,
        partitions,
        key=lambda partition: partition.get(PARTITION_NAME, ""),
    )


def get_partition(request: Request) -> JSONResponse:
    """GET partition?name=."""
    name = _required(request, "name")
    partition = _gateway(request).partition(name)
    if not partition:
        msg = f"partition {name} not found"
        raise NotFoundError(msg)
    return _object_response(partition)


# ----------------------------------------------------------------------
# Accounting
# ----------------------------------------------------------------------


def list_users(request: Request) -> JSONResponse:
    """GET users?deleted=&admin_level=."""
    deleted = bool_param(request.query_params, "deleted", default=False)
    admin_level = int_param(request.query_params, "admin_level")
    gateway = _gateway(request)
    return _store_list_response(
        request,
        lambda offset, limit: gateway.users(
            deleted=deleted,
            admin_level=admin_level,
            offset=offset,
            limit=limit,
        ),
    )


def list_accounts(request: Request) -> JSONResponse:
    """GET accounts."""
    gateway = _gateway(request)
    return _store_list_response(
        request,
        lambda offset, limit: gateway.accounts(offset=offset, limit=limit),
    )


def get_account_tree(request: Request) -> JSONResponse:
    """GET accounts/tree?account=."""
    tree = _gateway(request).account_tree(_required(request, "account"))
    tree.sub_accounts.sort()
    tree.sub_users.sort(key=lambda user: user.name)
    for user in tree.sub_users:
        user.parent_accounts.sort()
    return _object_response(tree)


def get_association_tree(request: Request) -> JSONResponse:
    """GET associations/tree?account=."""
    tree = _gateway(request).association_tree(_required(request, "account"))
    tree.default_partitions.sort()
    tree.sub_accounts.sort()
    tree.users.sort(key=lambda user: user.user)
    for user in tree.users:
        user.partitions.sort()
    return _object_response(tree)


def get_association_detail(request: Request) -> JSONResponse:
    """GET associations/detail?account=&user=&partition=."""
    gateway = _gateway(request)
    association = gateway.association(
        _required(request, "account"),
        user=_optional(request, "user"),
        partition=_optional(request, "partition"),
    )
    detail = association.model_dump()
    detail["cluster_name"] = gateway.cluster_name
    return _object_response(detail)


def get_qos(request: Request) -> JSONResponse:
    """GET qos?id=."""
    qos_id = int_param(request.query_params, "id")
    if qos_id is None:
        msg = "missing id parameter"
        raise InvalidParameterError(msg)
    return _object_response(_gateway(request).qos(qos_id))


def list_qos(request: Request) -> JSONResponse:
    """GET qos/all."""
    gateway = _gateway(request)
    return _store_list_response(
        request,
        lambda offset, limit: gateway.qos_list(offset=offset, limit=limit),
    )


# ----------------------------------------------------------------------
# Directory
# ----------------------------------------------------------------------


def list_users_with_directory(request: Request) -> JSONResponse:
    """GET /users: accounting users with their directory attributes."""
    gateway = _gateway(request)
    return _store_list_response(
        request,
        lambda offset, limit: gateway.users_with_directory(offset=offset, limit=limit),
    )


def list_directory_users(request: Request) -> JSONResponse:
    """GET ldap/users, ordered by uidNumber."""
    return _sorted_list_response(request, _gateway(request).directory_users())


def get_directory_user(request: Request) -> JSONResponse:
    """GET ldap/user?uid=."""
    return _object_response(_gateway(request).directory_user(_required(request, "uid")))


def list_directory_groups(request: Request) -> JSONResponse:
    """GET ldap/groups, ordered by gidNumber."""
    return _sorted_list_response(request, _gateway(request).directory_groups())


def create_routes() -> list[starlette.routing.BaseRoute]:
    """Return the API routes, relative to the API prefix."""
    scheduling = [
        starlette.routing.Route("/node/all", list_nodes, methods=["GET"]),
        starlette.routing.Route("/job/all", list_jobs, methods=["GET"]),
        starlette.routing.Route("/job", get_job, methods=["GET"]),
        starlette.routing.Route("/job/steps", list_job_steps, methods=["GET"]),
        starlette.routing.Route("/partition/all", list_partitions, methods=["GET"]),
        starlette.routing.Route("/partition", get_partition, methods=["GET"]),
    ]
    accounting = [
        starlette.routing.Route("/users", list_users, methods=["GET"]),
        starlette.routing.Route("/accounts", list_accounts, methods=["GET"]),
        starlette.routing.Route("/accounts/tree", get_account_tree, methods=["GET"]),
        starlette.routing.Route(
            "/associations/tree",
            get_association_tree,
            methods=["GET"],
        ),
        starlette.routing.Route(
            "/associations/detail",
            get_association_detail,
            methods=["GET"],
        ),
        starlette.routing.Route("/qos", get_qos, methods=["GET"]),
        starlette.routing.Route("/qos/all", list_qos, methods=["GET"]),
    ]
    directory = [
        starlette.routing.Route("/users", list_directory_users, methods=["GET"]),
        starlette.routing.Route("/user", get_directory_user, methods=["GET"]),
        starlette.routing.Route("/groups", list_directory_groups, methods=["GET"]),
    ]
    return [
        starlette.routing.Route("/users", list_users_with_directory, methods=["GET"]),
        starlette.routing.Mount("/slurm/scheduling", routes=scheduling),
        starlette.routing.Mount("/slurm/accounting", routes=accounting),
        starlette.routing.Mount("/ldap", routes=directory),
    ]


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------


def _error_response(request: Request, exc: Exception, status_code: int) -> JSONResponse:
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        method=request.method,
        path=request.url.path,
        status_code=status_code,
        error=str(exc),
    )
    return JSONResponse({"detail": str(exc)}, status_code=status_code)


def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(request, exc, 400)


def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(request, exc, 404)


def _conflict(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(request, exc, 409)


def _bad_gateway(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(request, exc, 502)


def _unavailable(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(request, exc, 503)


def _store_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Accounting store error", path=request.url.path)
    return JSONResponse({"detail": "accounting store error"}, status_code=500)


EXCEPTION_HANDLERS: dict[Any, Callable] = {
    InvalidParameterError: _bad_request,
    PreconditionError: _bad_request,
    NotFoundError: _not_found,
    AccountingLookupError: _not_found,
    AmbiguousAssociationError: _conflict,
    SchedulerCommandError: _bad_gateway,
    DirectoryEntryNotFoundError: _not_found,
    DirectoryUnavailableError: _unavailable,
    LDAPException: _bad_gateway,
    sqlalchemy.exc.SQLAlchemyError: _store_error,
}
