"""HTTP server for the Slurm identity gateway."""

import contextlib
import json
import logging
import os
import pathlib

import prometheus_client
import prometheus_client.core
import pydantic
import starlette.applications
import starlette.requests
import starlette.responses
import starlette.routing
import structlog

from . import paging, routes
from .accounting import AccountingStore
from .collector import ParseStatsCollector
from .directory import DirectoryClient
from .gateway import Gateway
from .scheduler import DEFAULT_TIMEOUT, SchedulerClient

CONFIG_ENV_VAR = "SLURM_GATEWAY_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class SchedulerConfig(pydantic.BaseModel):
    """Scheduler command-line tools."""

    sinfo_path: str = pydantic.Field("sinfo", description="Path to sinfo", min_length=1)
    squeue_path: str = pydantic.Field("squeue", description="Path to squeue", min_length=1)
    scontrol_path: str = pydantic.Field(
        "scontrol",
        description="Path to scontrol",
        min_length=1,
    )
    command_timeout: float = pydantic.Field(
        DEFAULT_TIMEOUT,
        description="Per-command timeout in seconds",
        gt=0,
    )


class AccountingConfig(pydantic.BaseModel):
    """Accounting database connection."""

    url: str = pydantic.Field(description="SQLAlchemy URL of the accounting database")
    cluster_name: str = pydantic.Field(
        description="Cluster whose association table is read",
        min_length=1,
    )
    pool_size: int | None = pydantic.Field(None, description="Connection pool size", gt=0)
    pool_recycle: int = pydantic.Field(
        3600,
        description="Seconds after which pooled connections are recycled",
        gt=0,
    )
    connect_timeout: int | None = pydantic.Field(
        None,
        description="Connection timeout in seconds",
        gt=0,
    )

    @pydantic.field_validator("cluster_name")
    @classmethod
    def _cluster_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "cluster_name cannot be blank"
            raise ValueError(msg)
        return value


class DirectoryConfig(pydantic.BaseModel):
    """LDAP directory connection."""

    host: str = pydantic.Field(description="Directory server host", min_length=1)
    port: int = pydantic.Field(389, description="Directory server port", gt=0, lt=65536)
    base_dn: str = pydantic.Field(description="Directory base DN", min_length=1)
    use_tls: bool = pydantic.Field(False, description="Connect with LDAPS")
    start_tls: bool = pydantic.Field(False, description="Upgrade with STARTTLS")
    insecure_skip_verify: bool = pydantic.Field(
        False,
        description="Skip server certificate verification",
    )
    root_ca_file: str | None = pydantic.Field(None, description="CA bundle path")
    client_cert_file: str | None = pydantic.Field(None, description="Client certificate path")
    client_key_file: str | None = pydantic.Field(None, description="Client key path")
    bind_dn: str | None = pydantic.Field(None, description="Bind DN")
    bind_password: str | None = pydantic.Field(None, description="Bind password")
    connect_timeout: float | None = pydantic.Field(
        None,
        description="Connection timeout in seconds",
        gt=0,
    )
    receive_timeout: float | None = pydantic.Field(
        None,
        description="Response timeout in seconds",
        gt=0,
    )


class PagingConfig(pydantic.BaseModel):
    """Pagination of list endpoints."""

    default_page_size: int = pydantic.Field(
        paging.DEFAULT_PAGE_SIZE,
        description="Page size when none is requested",
        gt=0,
    )
    max_page_size: int = pydantic.Field(
        paging.MAX_PAGE_SIZE,
        description="Largest page size a client may request",
        gt=0,
    )


class GatewayConfig(pydantic.BaseModel):
    """Configuration for the Slurm identity gateway."""

    port: int = pydantic.Field(8080, description="HTTP server port", gt=0, lt=65536)
    log_level: str = pydantic.Field("INFO", description="Logging level")
    metrics_path: str = pydantic.Field(
        "/metrics",
        description="URL path for metrics endpoint",
    )
    api_prefix: str = pydantic.Field("/api/v1", description="URL prefix of the API")
    scheduler: SchedulerConfig = pydantic.Field(default_factory=SchedulerConfig)
    accounting: AccountingConfig
    directory: DirectoryConfig | None = None
    paging: PagingConfig = pydantic.Field(default_factory=PagingConfig)


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> GatewayConfig:
    """Load configuration from JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If a value is missing or invalid.
    """
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return GatewayConfig(**data)


def create_registry(
    stats: ParseStatsCollector,
) -> prometheus_client.core.CollectorRegistry:
    """Create a Prometheus registry holding the parse statistics collector.

    A custom registry is used instead of the global REGISTRY so each app
    (and each test) exports only its own counters.
    """
    registry = prometheus_client.core.CollectorRegistry()
    registry.register(stats)
    logger.info("Registered collector", collector="parse_stats")
    return registry


def create_starlette_app(
    gateway: Gateway,
    registry: prometheus_client.core.CollectorRegistry,
    metrics_path: str = "/metrics",
    api_prefix: str = "/api/v1",
    paging_config: PagingConfig | None = None,
) -> starlette.applications.Starlette:
    """Create the Starlette application serving the API and metrics.

    Args:
        gateway: Query facade shared by all requests.
        registry: Prometheus collector registry.
        metrics_path: URL path for metrics endpoint (e.g., "/metrics").
        api_prefix: URL prefix under which the API is mounted.
        paging_config: Pagination defaults.

    Returns:
        Configured Starlette application. The gateway is closed on shutdown.
    """

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Serve metrics in Prometheus exposition format."""
        metrics_output = prometheus_client.generate_latest(registry)
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
        )
        return starlette.responses.PlainTextResponse(
            content=metrics_output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: starlette.applications.Starlette):
        yield
        gateway.close()
        logger.info("Closed gateway")

    app_routes = [
        starlette.routing.Route(metrics_path, metrics_endpoint, methods=["GET"]),
        starlette.routing.Mount(api_prefix, routes=routes.create_routes()),
    ]

    app = starlette.applications.Starlette(
        routes=app_routes,
        exception_handlers=routes.EXCEPTION_HANDLERS,
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    app.state.paging = paging_config or PagingConfig()
    return app


def create_gateway(config: GatewayConfig) -> Gateway:
    """Build the query facade and its backends from validated config."""
    scheduler = SchedulerClient(
        sinfo_path=config.scheduler.sinfo_path,
        squeue_path=config.scheduler.squeue_path,
        scontrol_path=config.scheduler.scontrol_path,
        timeout=config.scheduler.command_timeout,
    )
    accounting = AccountingStore.from_url(
        config.accounting.url,
        config.accounting.cluster_name,
        pool_size=config.accounting.pool_size,
        pool_recycle=config.accounting.pool_recycle,
        connect_timeout=config.accounting.connect_timeout,
    )
    directory = None
    if config.directory is not None:
        directory = DirectoryClient.connect(**config.directory.model_dump())
    logger.info(
        "Created gateway",
        cluster=config.accounting.cluster_name,
        command_timeout=config.scheduler.command_timeout,
    )
    return Gateway(scheduler, accounting, ParseStatsCollector(), directory=directory)


def create_server(config: GatewayConfig) -> starlette.applications.Starlette:
    """Construct the gateway ASGI app from validated config."""
    gateway = create_gateway(config)
    return create_starlette_app(
        gateway=gateway,
        registry=create_registry(gateway.stats),
        metrics_path=config.metrics_path,
        api_prefix=config.api_prefix,
        paging_config=config.paging,
    )


def create_app(config_path: str | None = None) -> starlette.applications.Starlette:
    """Create the gateway ASGI app using a config path or environment default."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "/config.json")
    config = load_config(resolved_path)
    configure_logging(config.log_level)
    return create_server(config)
