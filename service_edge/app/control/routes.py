"""
Control-plane HTTP surface served on the platform's own hosts.

Routing is by path only; the dispatcher has already decided the request is
for the control plane.
"""

import json
import re
import secrets
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple, Type, TypeVar
from urllib.parse import unquote

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, ValidationError

from shared.config import ServiceConfig
from shared.errors import AuthenticationError, ClientError, MethodNotAllowedError, NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..ingestion.spec_updates import SpecIngestionService, SpecUpdate
from ..models import (
    AccessGrantRequest,
    ApiKeyCreateRequest,
    OAuthTokenRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    SpecUploadRequest,
)
from .projects import ProjectAdmin
from .redeploy import RedeployTrigger

ModelT = TypeVar("ModelT", bound=BaseModel)
Handler = Callable[..., Awaitable[Response]]

SEGMENT = r"([^/]+)"


class Route:
    def __init__(self, pattern: str, handlers: Dict[str, Handler], protected: bool = True):
        self.pattern: Pattern[str] = re.compile(f"^{pattern}/?$")
        self.handlers = handlers
        self.protected = protected


class ControlPlaneRouter:
    """Admin API, CLI creation, redeploy, health and metrics."""

    def __init__(
        self,
        config: ServiceConfig,
        admin: ProjectAdmin,
        redeploy: RedeployTrigger,
        ingestion: SpecIngestionService,
        metrics: MetricsCollector,
        health: Callable[[], Awaitable[Dict[str, Any]]],
    ):
        self.config = config
        self.admin = admin
        self.redeploy = redeploy
        self.ingestion = ingestion
        self.metrics = metrics
        self.health = health
        self.logger = get_logger("edge.control.routes")
        self.routes: List[Route] = [
            Route("", {"GET": self.cli_help, "POST": self.cli_create}, protected=False),
            Route("/health", {"GET": self.get_health}, protected=False),
            Route("/metrics", {"GET": self.get_metrics}, protected=False),
            Route("/projects", {"GET": self.list_projects, "POST": self.create_project}),
            Route(f"/projects/{SEGMENT}", {
                "GET": self.get_project,
                "PUT": self.update_project,
                "DELETE": self.delete_project,
            }),
            Route(f"/projects/{SEGMENT}/redeploy", {"POST": self.redeploy_project}),
            Route(f"/projects/{SEGMENT}/spec", {"POST": self.upload_spec}),
            Route(f"/projects/{SEGMENT}/api-keys", {"GET": self.list_api_keys, "POST": self.issue_api_key}),
            Route(f"/projects/{SEGMENT}/api-keys/{SEGMENT}", {
                "GET": self.get_api_key,
                "DELETE": self.deactivate_api_key,
            }),
            Route(f"/projects/{SEGMENT}/access/{SEGMENT}", {
                "GET": self.get_access_grant,
                "PUT": self.put_access_grant,
                "DELETE": self.delete_access_grant,
            }),
            Route(f"/projects/{SEGMENT}/oauth-tokens/{SEGMENT}", {
                "PUT": self.put_oauth_token,
                "DELETE": self.delete_oauth_token,
            }),
        ]

    async def handle(self, request: Request) -> Response:
        route, params = self._match(request.url.path)
        if route is None:
            return JSONResponse(status_code=404, content={"error": "Not found"})

        handler = route.handlers.get(request.method)
        if handler is None:
            raise MethodNotAllowedError()

        if route.protected:
            self._authorize(request)
        return await handler(request, *params)

    def _match(self, path: str) -> Tuple[Optional[Route], Tuple[str, ...]]:
        for route in self.routes:
            match = route.pattern.match(path)
            if match:
                return route, tuple(unquote(group) for group in match.groups())
        return None, ()

    def _authorize(self, request: Request) -> None:
        expected = self.config.internal_api_key
        if not expected:
            return
        authorization = request.headers.get("authorization") or ""
        supplied = authorization[7:].strip() if authorization.lower().startswith("bearer ") else ""
        if not secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            raise AuthenticationError(details={"route": request.url.path})

    # CLI

    async def cli_help(self, request: Request) -> Response:
        domain = self.config.platform_domain
        return JSONResponse({
            "message": "Edge proxy CLI",
            "usage": f"curl -X POST https://{domain} --data '{{\"target\": \"https://api.example.com\"}}'",
            "examples": [
                f"Create API proxy: curl -X POST https://{domain} --data '{{\"target\": \"https://api.example.com\"}}'",
                f"Use API proxy: curl -H \"X-API-Key: your_key\" https://yourproject.{domain}/endpoint",
            ],
        })

    async def cli_create(self, request: Request) -> Response:
        body = await self._json(request)
        if not isinstance(body, dict) or not body.get("target"):
            return await self.cli_help(request)

        create = self._validate(ProjectCreateRequest, {
            "target_url": body["target"],
            "auth_type": body.get("auth_type") or "api_key",
            "customer_id": body.get("customer_id") or "default",
        })
        project, api_key = await self.admin.create_project(create)
        content = {
            "success": True,
            "project_id": project.project_id,
            "endpoint": self._endpoint(project.project_id),
            "message": "Project created",
        }
        if api_key:
            content["api_key"] = api_key
        return JSONResponse(content)

    # Service

    async def get_health(self, request: Request) -> Response:
        return JSONResponse(await self.health())

    async def get_metrics(self, request: Request) -> Response:
        return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    # Projects

    async def list_projects(self, request: Request) -> Response:
        customer_id = request.query_params.get("customer_id") or "default"
        projects = await self.admin.list_projects(customer_id)
        return JSONResponse({"projects": [project.to_public() for project in projects]})

    async def create_project(self, request: Request) -> Response:
        create = self._validate(ProjectCreateRequest, await self._json(request))
        project, api_key = await self.admin.create_project(create)
        content = {"project": project.to_public(), "endpoint": self._endpoint(project.project_id)}
        if api_key:
            content["api_key"] = api_key
        return JSONResponse(status_code=201, content=content)

    async def get_project(self, request: Request, project_id: str) -> Response:
        project = await self.admin.get_project(project_id, request.query_params.get("api_version"))
        return JSONResponse({"project": project.to_public()})

    async def update_project(self, request: Request, project_id: str) -> Response:
        update = self._validate(ProjectUpdateRequest, await self._json(request))
        project = await self.admin.update_project(project_id, update, request.query_params.get("api_version"))
        return JSONResponse({"project": project.to_public()})

    async def delete_project(self, request: Request, project_id: str) -> Response:
        await self.admin.delete_project(project_id, request.query_params.get("api_version"))
        return JSONResponse({"success": True, "project_id": project_id.lower()})

    async def redeploy_project(self, request: Request, project_id: str) -> Response:
        body = await self._json(request, required=False) or {}
        if not isinstance(body, dict):
            raise ClientError("Invalid request")
        api_version = request.query_params.get("api_version") or body.get("api_version")
        result = await self.redeploy.redeploy(project_id, api_version, trigger=body.get("trigger") or "manual")
        return JSONResponse(result)

    async def upload_spec(self, request: Request, project_id: str) -> Response:
        upload = self._validate(SpecUploadRequest, await self._json(request))
        project = await self.admin.get_project(project_id, upload.api_version)
        project = await self.ingestion.apply(
            SpecUpdate(project.project_id, project.api_version, upload.spec, upload.source_commit)
        )
        return JSONResponse({
            "success": True,
            "project_id": project.project_id,
            "api_version": project.api_version,
            "openapi_spec_hash": project.openapi_spec_hash,
            "spec_info": project.spec_info,
        })

    # Credentials, grants and tokens

    async def issue_api_key(self, request: Request, project_id: str) -> Response:
        create = self._validate(ApiKeyCreateRequest, await self._json(request, required=False) or {})
        api_key, credential = await self.admin.issue_api_key(project_id, create)
        return JSONResponse(status_code=201, content={"api_key": api_key, "credential": credential.to_record()})

    async def list_api_keys(self, request: Request, project_id: str) -> Response:
        credentials = await self.admin.list_api_keys(project_id, request.query_params.get("user_id"))
        return JSONResponse({"api_keys": [credential.to_record() for credential in credentials]})

    async def get_api_key(self, request: Request, project_id: str, key_hash: str) -> Response:
        credential = await self.admin.get_api_key(project_id, key_hash)
        return JSONResponse({"credential": credential.to_record()})

    async def deactivate_api_key(self, request: Request, project_id: str, key_hash: str) -> Response:
        credential = await self.admin.deactivate_api_key(project_id, key_hash)
        return JSONResponse({"credential": credential.to_record()})

    async def get_access_grant(self, request: Request, project_id: str, user_id: str) -> Response:
        grant = await self.admin.get_access_grant(project_id, user_id)
        return JSONResponse({"grant": grant.to_record()})

    async def put_access_grant(self, request: Request, project_id: str, user_id: str) -> Response:
        body = self._validate(AccessGrantRequest, await self._json(request, required=False) or {})
        grant = await self.admin.put_access_grant(project_id, user_id, body)
        return JSONResponse({"grant": grant.to_record()})

    async def delete_access_grant(self, request: Request, project_id: str, user_id: str) -> Response:
        await self.admin.delete_access_grant(project_id, user_id)
        return JSONResponse({"success": True})

    async def put_oauth_token(self, request: Request, project_id: str, user_id: str) -> Response:
        body = self._validate(OAuthTokenRequest, await self._json(request))
        token = await self.admin.put_oauth_token(project_id, user_id, body)
        return JSONResponse({
            "user_id": token.user_id,
            "project_id": token.project_id,
            "provider": token.provider,
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
        })

    async def delete_oauth_token(self, request: Request, project_id: str, user_id: str) -> Response:
        await self.admin.delete_oauth_token(project_id, user_id)
        return JSONResponse({"success": True})

    # Helpers

    def _endpoint(self, project_id: str) -> str:
        return f"https://{project_id}.{self.config.platform_domain}"

    async def _json(self, request: Request, required: bool = True) -> Any:
        raw = await request.body()
        if not raw.strip():
            if required:
                raise ClientError("Request body required")
            return None
        try:
            return json.loads(raw)
        except ValueError:
            raise ClientError("Invalid JSON in request body")

    def _validate(self, model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            # Inputs are left out; they may carry secrets
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ClientError("Invalid request", details={"errors": errors})
