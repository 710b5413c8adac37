"""
Redeploy trigger: drops the edge cache entry for a project version.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from shared.errors import ClientError
from shared.logging import get_logger

from ..caching.edge_cache import EdgeCache
from ..keys import normalize_project_id
from ..models import EntityType, utc_now


class RedeployTrigger:
    """Forces the next request for a project to re-read the store.

    Idempotent; succeeds for any syntactically valid id whether or not the
    project or a cache entry exists.
    """

    def __init__(self, cache: EdgeCache, default_api_version: str = "v1",
                 clock: Callable[[], datetime] = utc_now):
        self.cache = cache
        self.default_api_version = default_api_version
        self.clock = clock
        self.logger = get_logger("edge.control.redeploy")

    async def redeploy(self, project_id: str, api_version: Optional[str] = None,
                       trigger: str = "manual") -> Dict[str, Any]:
        normalized = normalize_project_id(project_id)
        if normalized is None:
            raise ClientError("Invalid project id")

        api_version = api_version or self.default_api_version
        await self.cache.delete(EntityType.PROJECT, (normalized, api_version))

        redeployed_at = self.clock()
        self.logger.info("Project redeployed", project_id=normalized,
                         api_version=api_version, trigger=trigger)
        return {
            "success": True,
            "project_id": normalized,
            "api_version": api_version,
            "redeployed_at": redeployed_at.isoformat(),
        }
