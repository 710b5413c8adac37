"""
Forwards proxied requests to the project target and streams the reply.
"""

import time
from typing import Dict, List, Optional, Tuple

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from shared.errors import UpstreamError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import Project

# Connection-level headers; the ASGI server and httpx regenerate framing.
HOP_BY_HOP = frozenset({"connection", "keep-alive", "transfer-encoding", "upgrade", "proxy-connection"})
REQUEST_DROPPED = HOP_BY_HOP | {"host", "content-length"}


def target_url(project: Project, request: Request) -> httpx.URL:
    """Target scheme and authority with the request's exact path and query."""
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    query = request.scope.get("query_string") or b""
    if query:
        raw_path = raw_path + b"?" + query
    return httpx.URL(project.target_url).copy_with(raw_path=raw_path)


def forward_headers(request: Request, target: httpx.URL, outbound: Dict[str, str]) -> List[Tuple[bytes, bytes]]:
    headers = [
        (name, value)
        for name, value in request.headers.raw
        if name.decode("latin-1").lower() not in REQUEST_DROPPED
    ]
    headers.append((b"host", target.netloc))

    for name, value in outbound.items():
        if not value:
            continue
        lowered = name.lower().encode("latin-1")
        headers = [(n, v) for n, v in headers if n.lower() != lowered]
        headers.append((name.encode("latin-1"), value.encode("latin-1")))
    return headers


class ProxyForwarder:
    """Rewrites, forwards and streams one proxied request."""

    def __init__(self, client: httpx.AsyncClient, metrics: Optional[MetricsCollector] = None,
                 timeout: Optional[float] = None):
        self.client = client
        self.metrics = metrics
        self.timeout = timeout
        self.logger = get_logger("edge.proxy.forwarder")

    async def forward(self, request: Request, project: Project, outbound: Dict[str, str]) -> StreamingResponse:
        url = target_url(project, request)
        body = await request.body()
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=forward_headers(request, url, outbound),
            content=body,
            timeout=self.timeout if self.timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )

        start_time = time.time()
        try:
            upstream = await self.client.send(upstream_request, stream=True, follow_redirects=True)
        except httpx.RequestError as e:
            self._record("error", time.time() - start_time)
            self.logger.warning(
                "Upstream request failed",
                project_id=project.project_id,
                target_host=url.host,
                error_type=type(e).__name__,
                error=str(e)
            )
            raise UpstreamError(details={"error_type": type(e).__name__}) from e

        self._record("success", time.time() - start_time)
        self.logger.debug("Upstream responded", project_id=project.project_id,
                          status_code=upstream.status_code, method=request.method)

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [
            (name.lower(), value)
            for name, value in upstream.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP
        ]
        return response

    def _record(self, result: str, duration: float):
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", result=result)
            self.metrics.get_metric("upstream_duration_seconds").observe(duration)
