"""
Edge service: multi-tenant API reverse proxy with its control plane.
"""

from typing import Dict, Optional

import httpx
from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.retry import RetryConfig

from .auth.inbound import InboundAuthEvaluator
from .auth.oauth import ClaimsOnlyVerifier, JWKSSignatureVerifier, SignatureVerifier, TokenClaimsValidator
from .auth.outbound import TargetCredentialResolver
from .caching.edge_cache import EdgeCache, InMemoryEdgeCache, RedisEdgeCache
from .caching.read_through import ReadThroughResolver, cache_ttls
from .control.projects import ProjectAdmin
from .control.redeploy import RedeployTrigger
from .control.routes import ControlPlaneRouter
from .dispatcher import RequestDispatcher
from .ingestion.spec_updates import SpecIngestionService
from .propagation.propagator import ChangePropagator, ResponseCachePurger
from .propagation.publisher import ChangePublisher, KafkaChangePublisher, QueueChangePublisher
from .proxy.forwarder import ProxyForwarder
from .store.base import ConfigStore
from .store.memory import InMemoryConfigStore
from .store.observed import ObservedConfigStore
from .store.postgres import PostgresConfigStore

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class EdgeService(BaseService):
    """Edge service implementation.

    Backends come from configuration unless injected; tests pass in-memory
    ones and an ``httpx`` client with a mock transport.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[ConfigStore] = None,
        cache: Optional[EdgeCache] = None,
        publisher: Optional[ChangePublisher] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        verifier: Optional[SignatureVerifier] = None,
        purger: Optional[ResponseCachePurger] = None,
    ):
        super().__init__("edge", 8000, config or get_config("edge", 8000))

        self.publisher = publisher or self._build_publisher()
        self.store = ObservedConfigStore(store or self._build_store(), self.publisher)
        self.cache = cache or self._build_cache()
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.config.target_timeout_seconds,
            max_redirects=self.config.max_redirects,
        )
        self.verifier = verifier or self._build_verifier()

        ttls = cache_ttls(self.config)
        self.resolver = ReadThroughResolver(
            self.store,
            self.cache,
            ttls=ttls,
            metrics=self.metrics,
            store_timeout=self.config.store_timeout_seconds,
        )
        self.propagator = ChangePropagator(
            self.cache, ttls=ttls, purger=purger, metrics=self.metrics,
            retry_config=RetryConfig.from_settings(self.config)
        )

        self.redeploy = RedeployTrigger(self.cache, self.config.default_api_version)
        self.admin = ProjectAdmin(self.store, self.config.default_api_version)
        self.ingestion = SpecIngestionService(self.store, self.redeploy)
        self.control = ControlPlaneRouter(
            self.config,
            self.admin,
            self.redeploy,
            self.ingestion,
            self.metrics,
            health=self.health_status,
        )
        self.dispatcher = RequestDispatcher(
            self.config,
            self.resolver,
            InboundAuthEvaluator(
                self.resolver,
                TokenClaimsValidator(self.config.oauth_client_id, self.verifier),
                metrics=self.metrics,
            ),
            TargetCredentialResolver(self.resolver),
            ProxyForwarder(self.http_client, metrics=self.metrics,
                           timeout=self.config.target_timeout_seconds),
            self.control,
            metrics=self.metrics,
        )

        self._setup_edge_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.edge_service = self

    def _build_store(self) -> ConfigStore:
        if self.config.store_backend == "postgres":
            return PostgresConfigStore(self.config.postgres_dsn, self.config.store_timeout_seconds)
        return InMemoryConfigStore()

    def _build_cache(self) -> EdgeCache:
        if self.config.cache_backend == "redis":
            return RedisEdgeCache(self.config.redis_url, self.config.cache_timeout_seconds)
        return InMemoryEdgeCache()

    def _build_publisher(self) -> ChangePublisher:
        if self.config.propagation_backend == "kafka":
            return KafkaChangePublisher(self.config.kafka_bootstrap, self.config.change_topic)
        return QueueChangePublisher()

    def _build_verifier(self) -> SignatureVerifier:
        if self.config.jwks_url:
            return JWKSSignatureVerifier(self.config.jwks_url, issuer=self.config.oauth_issuer)
        return ClaimsOnlyVerifier()

    def _setup_edge_routes(self):
        """Every host and path goes through the dispatcher."""

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def dispatch(request: Request):
            return await self.dispatcher.dispatch(request)

    async def startup(self):
        await self.store.start()
        await self.cache.start()
        await self.publisher.start()
        if isinstance(self.publisher, QueueChangePublisher):
            self.propagator.start(self.publisher.queue)
        if isinstance(self.verifier, ClaimsOnlyVerifier):
            self.logger.warning("OAuth token signatures are not verified; set EDGE_JWKS_URL to enable")
        self.logger.info("Edge service started", platform_domain=self.config.platform_domain)

    async def shutdown(self):
        await self.propagator.stop()
        await self.publisher.stop()
        await self.http_client.aclose()
        await self.verifier.close()
        await self.cache.stop()
        await self.store.stop()
        self.logger.info("Edge service stopped")

    async def process_pending_changes(self) -> int:
        """Apply queued change events now; returns how many were applied."""
        if not isinstance(self.publisher, QueueChangePublisher):
            return 0
        return await self.propagator.drain(self.publisher.queue)

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "store": "ok" if await self.store.health_check() else "error",
            "cache": "ok" if await self.cache.health_check() else "error",
        }


def create_app():
    """Create FastAPI application."""
    service = EdgeService()
    return service.app


if __name__ == "__main__":
    service = EdgeService()
    service.run()
