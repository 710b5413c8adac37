"""
Shared configuration management for the edge proxy control plane.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="EDGE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Routing
    platform_domain: str = Field(default="edgeproxy.dev")
    control_hosts: List[str] = Field(default_factory=list)
    reserved_subdomains: List[str] = Field(default_factory=lambda: ["www", "api", "dashboard", "portal"])
    default_api_version: str = Field(default="v1")

    # Edge cache TTLs (seconds)
    project_cache_ttl: int = Field(default=300)
    api_key_cache_ttl: int = Field(default=300)
    access_grant_cache_ttl: int = Field(default=300)
    oauth_token_cache_ttl: int = Field(default=300)

    # Backends
    store_backend: str = Field(default="memory")  # memory | postgres
    cache_backend: str = Field(default="memory")  # memory | redis
    propagation_backend: str = Field(default="queue")  # queue | kafka

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/edge")
    kafka_bootstrap: str = Field(default="localhost:9092")
    change_topic: str = Field(default="edge.config.changes.v1")
    change_consumer_group: str = Field(default="edge-change-propagator")
    propagation_retry_attempts: int = Field(default=3)
    propagation_retry_base_delay: float = Field(default=0.2)
    propagation_retry_max_delay: float = Field(default=2.0)

    # Inbound OAuth
    oauth_client_id: str = Field(default="")
    jwks_url: Optional[str] = Field(default=None)
    oauth_issuer: Optional[str] = Field(default=None)

    # Control plane
    internal_api_key: Optional[str] = Field(default=None)

    # Timeouts
    target_timeout_seconds: float = Field(default=30.0)
    store_timeout_seconds: float = Field(default=5.0)
    cache_timeout_seconds: float = Field(default=2.0)
    max_redirects: int = Field(default=10)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)

    @property
    def all_control_hosts(self) -> List[str]:
        """Hosts served by the control plane rather than the proxy."""
        hosts = [self.platform_domain.lower()]
        hosts.extend(host.lower() for host in self.control_hosts)
        return hosts


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
