"""
kvcache — Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
Backend options are validated once at startup and frozen afterwards.

The active backend is described by a tagged variant:

    NoBackend | LocalBackend(options) | DistributedBackend(options, client_options)
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ConfigError
from .servers import DEFAULT_PORT, ServerEndpoint, parse_servers


class DistributionStrategy(str, Enum):
    """How keys are spread across distributed nodes."""

    SIMPLE = "simple"  # modulo over the configured server order
    CONSISTENT = "consistent"  # ketama ring


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LocalStoreOptions(BaseModel):
    """Options for the in-process store."""

    enabled: bool = Field(default=False, description="Use the local in-process store")
    max_size: int = Field(default=1000, ge=1, description="Max entries before LRU eviction")
    default_ttl: int = Field(default=0, ge=0, description="Default TTL in seconds (0 = no expiry)")
    namespace: str = Field(default="kv", description="Cache key namespace/prefix")

    model_config = ConfigDict(frozen=True, extra="forbid")


class DistributedClientOptions(BaseModel):
    """Connection and distribution options handed to the distributed client."""

    connect_timeout: float = Field(default=0.02, gt=0)
    socket_timeout: float = Field(default=1.0, gt=0)
    distribution: DistributionStrategy = DistributionStrategy.CONSISTENT
    server_failure_limit: int = Field(default=5, ge=1)
    remove_failed_servers: bool = True
    retry_timeout: float = Field(default=1.0, ge=0)
    compatibility_mode: bool = True
    max_connections: int = Field(default=10, ge=1)
    db: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class DistributedStoreOptions(BaseModel):
    """Options for the distributed, client-side hashed store."""

    enabled: bool = Field(default=True, description="Use the distributed store")
    servers: list[ServerEndpoint] = Field(
        default_factory=lambda: [ServerEndpoint("localhost", DEFAULT_PORT)],
        description="Ordered node list (string or list form)",
    )
    consistent: bool = Field(default=True, description="Use consistent hashing and failed-server ejection")
    namespace: str = Field(default="kv", description="Cache key namespace/prefix")
    default_ttl: int = Field(default=0, ge=0, description="Default TTL in seconds (0 = no expiry)")

    connect_timeout: float = Field(default=0.02, gt=0, description="Connect timeout in seconds")
    socket_timeout: float = Field(default=1.0, gt=0, description="Per-operation socket timeout in seconds")
    server_failure_limit: int = Field(default=5, ge=1, description="Consecutive failures before ejecting a node")
    remove_failed_servers: bool = Field(default=True, description="Eject nodes that hit the failure limit")
    retry_timeout: float = Field(default=1.0, ge=0, description="Seconds before an ejected node is retried")
    compatibility_mode: bool = Field(default=True, description="libketama-compatible ring points")
    max_connections: int = Field(default=10, ge=1, description="Connection pool size per node")
    db: int = Field(default=0, ge=0, description="Database index on each node")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("servers", mode="before")
    @classmethod
    def validate_servers(cls, v: Any) -> list[ServerEndpoint]:
        """Accept the string and mixed-list server forms."""
        try:
            return parse_servers(v)
        except ConfigError as e:
            raise ValueError(e.message) from e

    def client_options(self) -> DistributedClientOptions:
        """
        Derive the client options.

        Failure handling is only applied together with consistent hashing;
        simple distribution never ejects servers.
        """
        shared = self.model_dump(
            include={
                "connect_timeout",
                "socket_timeout",
                "server_failure_limit",
                "retry_timeout",
                "compatibility_mode",
                "max_connections",
                "db",
            }
        )
        if self.consistent:
            return DistributedClientOptions(
                distribution=DistributionStrategy.CONSISTENT,
                remove_failed_servers=self.remove_failed_servers,
                **shared,
            )
        return DistributedClientOptions(
            distribution=DistributionStrategy.SIMPLE,
            remove_failed_servers=False,
            **shared,
        )


class NoBackend(BaseModel):
    """No backend configured; every operation returns its unavailable result."""

    kind: Literal["none"] = "none"

    model_config = ConfigDict(frozen=True)


class LocalBackend(BaseModel):
    """The in-process store is active."""

    kind: Literal["local"] = "local"
    options: LocalStoreOptions

    model_config = ConfigDict(frozen=True)


class DistributedBackend(BaseModel):
    """The distributed store is active."""

    kind: Literal["distributed"] = "distributed"
    options: DistributedStoreOptions
    client_options: DistributedClientOptions

    model_config = ConfigDict(frozen=True)

    @property
    def servers(self) -> list[ServerEndpoint]:
        return self.options.servers


BackendSelection = Annotated[
    NoBackend | LocalBackend | DistributedBackend,
    Field(discriminator="kind"),
]


class KVConfig(BaseModel):
    """Root configuration loaded from the environment."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log output format")

    # Raw option groups; None means the group was not supplied
    local_options: dict[str, Any] | None = None
    distributed_options: dict[str, Any] | None = None

    model_config = ConfigDict(frozen=True)

    def select_backend(self, **checks: Any) -> BackendSelection:
        """Validate the option groups and pick the active backend."""
        from .validation import select_backend

        return select_backend(self.local_options, self.distributed_options, **checks)
