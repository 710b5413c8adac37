"""
OpenAPI spec ingestion.

Repository webhooks and manual uploads both end up here as a parsed spec
document for a project version. Fetching and parsing the document, and
verifying webhook signatures, happen before this point.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger

from ..control.redeploy import RedeployTrigger
from ..models import EntityType, Project, utc_now
from ..store.base import ConfigStore


@dataclass
class SpecUpdate:
    project_id: str
    api_version: str
    spec: Dict[str, Any]
    source_commit: Optional[str] = None


def spec_hash(spec: Dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form."""
    canonical = json.dumps(spec, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def extract_spec_info(spec: Dict[str, Any]) -> Dict[str, Any]:
    info = spec.get("info") or {}
    servers = spec.get("servers") or []
    return {
        "title": info.get("title") or "Unknown API",
        "version": info.get("version") or "1.0.0",
        "description": info.get("description") or "",
        "base_url": (servers[0] or {}).get("url", "") if servers else "",
        "paths": len(spec.get("paths") or {}),
        "components": len(spec.get("components") or {}),
    }


class SpecIngestionService:
    """Persists spec-derived project fields and refreshes the edge."""

    def __init__(self, store: ConfigStore, redeploy: RedeployTrigger,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.redeploy = redeploy
        self.clock = clock
        self.logger = get_logger("edge.ingestion.spec")

    async def apply(self, update: SpecUpdate) -> Project:
        record = await self.store.get(EntityType.PROJECT, (update.project_id, update.api_version))
        if record is None:
            raise NotFoundError("Project not found")

        project = Project.from_record(record)
        now = self.clock()
        project.openapi_spec = update.spec
        project.openapi_spec_hash = spec_hash(update.spec)
        project.spec_info = extract_spec_info(update.spec)
        project.source_commit = update.source_commit
        project.last_deployment = now
        project.updated_at = now

        await self.store.put(EntityType.PROJECT, project.key, project.to_record())
        await self.redeploy.redeploy(project.project_id, project.api_version, trigger="spec_update")

        self.logger.info(
            "Spec applied",
            project_id=project.project_id,
            api_version=project.api_version,
            spec_hash=project.openapi_spec_hash,
            source_commit=update.source_commit
        )
        return project

    async def apply_repository_change(
        self,
        repo: str,
        branch: str,
        spec: Dict[str, Any],
        source_commit: Optional[str] = None
    ) -> Dict[str, int]:
        """Apply a spec pushed to ``repo``/``branch`` to every linked project."""
        projects: List[Dict[str, Any]] = await self.store.query(
            EntityType.PROJECT, {"github_repo": repo, "github_branch": branch}
        )
        if not projects:
            self.logger.info("No projects linked to repository", repo=repo, branch=branch)
            return {"processed": 0, "updated": 0}

        updated = 0
        for record in projects:
            try:
                await self.apply(SpecUpdate(record["project_id"], record["api_version"], spec, source_commit))
                updated += 1
            except NotFoundError:
                # Removed between the query and the update
                self.logger.warning("Linked project vanished", project_id=record["project_id"])

        return {"processed": len(projects), "updated": updated}
