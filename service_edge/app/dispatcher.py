"""
Request dispatcher: classifies every request by host and routes it to the
control plane, the proxy path or a plain not-found.
"""

from enum import Enum
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.config import ServiceConfig
from shared.errors import ControlPlaneException, NotFoundError
from shared.logging import get_logger, set_project_context
from shared.metrics import MetricsCollector

from .auth.inbound import InboundAuthEvaluator
from .auth.outbound import TargetCredentialResolver
from .caching.read_through import ReadThroughResolver
from .control.routes import ControlPlaneRouter
from .keys import normalize_project_id
from .models import EntityType, Project
from .proxy.forwarder import ProxyForwarder

NOT_FOUND_BODY = {"error": "Not found"}
INTERNAL_ERROR_BODY = {"error": "Internal server error"}


class RouteKind(str, Enum):
    CONTROL = "control"
    PROXY = "proxy"
    NOT_FOUND = "not_found"


def request_host(request: Request) -> str:
    """Lowercased host header without the port."""
    host = (request.headers.get("host") or "").strip().lower()
    if host.startswith("["):
        return host.split("]")[0] + "]"
    return host.rsplit(":", 1)[0] if ":" in host else host


class RequestDispatcher:
    """Root request handler.

    Expected failures become structured JSON errors; anything else raised in
    a branch is logged and answered with a generic 500.
    """

    def __init__(
        self,
        config: ServiceConfig,
        resolver: ReadThroughResolver,
        inbound: InboundAuthEvaluator,
        outbound: TargetCredentialResolver,
        forwarder: ProxyForwarder,
        control: ControlPlaneRouter,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.inbound = inbound
        self.outbound = outbound
        self.forwarder = forwarder
        self.control = control
        self.metrics = metrics
        self.logger = get_logger("edge.dispatcher")
        self.control_hosts = frozenset(config.all_control_hosts)
        self.reserved = frozenset(name.lower() for name in config.reserved_subdomains)
        self.tenant_suffix = "." + config.platform_domain.lower()

    def classify(self, host: str) -> RouteKind:
        if host in self.control_hosts:
            return RouteKind.CONTROL
        if host.endswith(self.tenant_suffix) and len(host) > len(self.tenant_suffix):
            return RouteKind.PROXY
        return RouteKind.NOT_FOUND

    async def dispatch(self, request: Request) -> Response:
        host = request_host(request)
        kind = self.classify(host)
        request.state.route_kind = kind.value

        try:
            if kind == RouteKind.CONTROL:
                return await self.control.handle(request)
            if kind == RouteKind.PROXY:
                return await self.proxy(request, host[:-len(self.tenant_suffix)])
            return JSONResponse(status_code=404, content=NOT_FOUND_BODY)

        except ControlPlaneException as e:
            log = self.logger.error if e.status_code >= 500 else self.logger.info
            log("Request failed", route=kind.value, code=e.code, status_code=e.status_code,
                message=e.message, details=e.details)
            if self.metrics:
                self.metrics.record_error(e.code)
            return JSONResponse(status_code=e.status_code, content=e.to_response().to_body())

        except Exception as e:
            self.logger.error("Unhandled error in dispatcher", route=kind.value, host=host,
                              error=str(e), exc_info=True)
            if self.metrics:
                self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

    async def proxy(self, request: Request, subdomain: str) -> Response:
        # Only the first label names the project
        label = subdomain.split(".")[0]
        if label in self.reserved:
            return JSONResponse(status_code=404, content=NOT_FOUND_BODY)

        project_id = normalize_project_id(label)
        if project_id is None:
            raise NotFoundError("Project not found")
        set_project_context(project_id=project_id)

        record = await self.resolver.resolve(EntityType.PROJECT, (project_id, self.config.default_api_version))
        if record is None:
            raise NotFoundError("Project not found")
        project = Project.from_record(record)
        if not project.active:
            raise ControlPlaneException("PROJECT_INACTIVE", "Project is inactive", status_code=403)

        identity = await self.inbound.evaluate(project, request.headers)
        set_project_context(user_id=identity.user_id)

        outbound_headers = await self.outbound.resolve(project, identity)
        return await self.forwarder.forward(request, project, outbound_headers)
