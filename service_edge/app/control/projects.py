"""
Project, credential, grant and outbound token administration.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from shared.errors import ClientError, NotFoundError
from shared.logging import get_logger, mask_secret

from ..keys import generate_api_key, generate_project_id, hash_api_key, normalize_project_id
from ..models import (
    AccessGrant,
    AccessGrantRequest,
    ApiKeyCreateRequest,
    ApiKeyCredential,
    AuthType,
    EntityType,
    OAuthToken,
    OAuthTokenRequest,
    Project,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    record_key,
    utc_now,
)
from ..store.base import ConfigStore


def validate_target_url(target_url: str) -> str:
    parts = urlsplit(target_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ClientError("Invalid target URL", details={"target_url": target_url})
    return target_url


class ProjectAdmin:
    """Admin operations over the config store.

    Every write goes through the store, so the edge cache learns about it
    from the change stream rather than from here.
    """

    def __init__(self, store: ConfigStore, default_api_version: str = "v1",
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.default_api_version = default_api_version
        self.clock = clock
        self.logger = get_logger("edge.control.projects")

    # Projects

    async def create_project(self, request: ProjectCreateRequest) -> Tuple[Project, Optional[str]]:
        """Create a project; returns it with a raw API key for api_key projects."""
        if request.project_id is not None:
            project_id = normalize_project_id(request.project_id)
            if project_id is None:
                raise ClientError("Invalid project id", details={"project_id": request.project_id})
        else:
            project_id = generate_project_id()

        if await self.store.get(EntityType.PROJECT, (project_id, request.api_version)) is not None:
            raise ClientError("Project already exists", details={"project_id": project_id})

        now = self.clock()
        project = Project(
            project_id=project_id,
            customer_id=request.customer_id,
            target_url=validate_target_url(request.target_url),
            api_version=request.api_version,
            inbound_auth_type=request.inbound_auth_type.value,
            outbound_auth_type=request.outbound_auth_type.value,
            outbound_static_key=request.outbound_static_key,
            active=request.active,
            github_repo=request.github_repo,
            github_branch=request.github_branch,
            created_at=now,
            updated_at=now,
        )
        await self.store.put(EntityType.PROJECT, project.key, project.to_record())

        api_key = None
        if project.inbound_auth == AuthType.API_KEY:
            api_key, _ = await self._store_new_key(project_id, ApiKeyCreateRequest(name="default"))

        self.logger.info("Project created", project_id=project_id, customer_id=project.customer_id,
                         inbound_auth=project.inbound_auth_type, outbound_auth=project.outbound_auth_type)
        return project, api_key

    async def list_projects(self, customer_id: str) -> List[Project]:
        records = await self.store.query(EntityType.PROJECT, {"customer_id": customer_id})
        return [Project.from_record(record) for record in records]

    async def get_project(self, project_id: str, api_version: Optional[str] = None) -> Project:
        record = await self.store.get(EntityType.PROJECT, self._project_key(project_id, api_version))
        if record is None:
            raise NotFoundError("Project not found")
        return Project.from_record(record)

    async def update_project(self, project_id: str, request: ProjectUpdateRequest,
                             api_version: Optional[str] = None) -> Project:
        project = await self.get_project(project_id, api_version)

        changes = request.model_dump(exclude_unset=True)
        if "target_url" in changes:
            validate_target_url(changes["target_url"])
        for name, value in changes.items():
            if isinstance(value, AuthType):
                value = value.value
            setattr(project, name, value)
        project.updated_at = self.clock()

        await self.store.put(EntityType.PROJECT, project.key, project.to_record())
        self.logger.info("Project updated", project_id=project.project_id, fields=sorted(changes))
        return project

    async def delete_project(self, project_id: str, api_version: Optional[str] = None) -> None:
        project = await self.get_project(project_id, api_version)
        await self.store.delete(EntityType.PROJECT, project.key)
        self.logger.info("Project deleted", project_id=project.project_id, api_version=project.api_version)

        # Credentials and grants are shared by every version of the project
        if not await self.store.query(EntityType.PROJECT, {"project_id": project.project_id}):
            await self._retire_project_scope(project.project_id)

    async def _retire_project_scope(self, project_id: str) -> None:
        """Deactivate keys and drop grants and tokens so a re-created id starts clean."""
        scope = {"project_id": project_id}
        now = self.clock()
        keys = [ApiKeyCredential.from_record(record)
                for record in await self.store.query(EntityType.API_KEY, scope)]
        for credential in keys:
            if credential.active:
                credential.active = False
                credential.updated_at = now
                await self.store.put(EntityType.API_KEY, credential.key, credential.to_record())

        grants = await self.store.query(EntityType.ACCESS_GRANT, scope)
        tokens = await self.store.query(EntityType.OAUTH_TOKEN, scope)
        for entity_type, records in ((EntityType.ACCESS_GRANT, grants), (EntityType.OAUTH_TOKEN, tokens)):
            for record in records:
                await self.store.delete(entity_type, record_key(entity_type, record))

        self.logger.info("Project scope retired", project_id=project_id, api_keys=len(keys),
                         access_grants=len(grants), oauth_tokens=len(tokens))

    # API keys

    async def issue_api_key(self, project_id: str, request: ApiKeyCreateRequest) -> Tuple[str, ApiKeyCredential]:
        """Generate a key; the raw secret is only ever returned here."""
        project_id = await self._require_project(project_id)
        return await self._store_new_key(project_id, request)

    async def list_api_keys(self, project_id: str, user_id: Optional[str] = None) -> List[ApiKeyCredential]:
        """Stored credentials, newest first; only hashes exist, never raw keys."""
        predicate = {"project_id": await self._require_project(project_id)}
        if user_id:
            predicate["user_id"] = user_id
        records = await self.store.query(EntityType.API_KEY, predicate)
        credentials = [ApiKeyCredential.from_record(record) for record in records]
        return sorted(credentials, key=lambda credential: credential.created_at, reverse=True)

    async def get_api_key(self, project_id: str, key_hash: str) -> ApiKeyCredential:
        record = await self.store.get(EntityType.API_KEY, (key_hash, self._normalize(project_id)))
        if record is None:
            raise NotFoundError("API key not found")
        return ApiKeyCredential.from_record(record)

    async def deactivate_api_key(self, project_id: str, key_hash: str) -> ApiKeyCredential:
        credential = await self.get_api_key(project_id, key_hash)
        credential.active = False
        credential.updated_at = self.clock()
        await self.store.put(EntityType.API_KEY, credential.key, credential.to_record())
        self.logger.info("API key deactivated", project_id=credential.project_id, key_hash=mask_secret(key_hash))
        return credential

    async def _store_new_key(self, project_id: str, request: ApiKeyCreateRequest) -> Tuple[str, ApiKeyCredential]:
        api_key = generate_api_key()
        now = self.clock()
        credential = ApiKeyCredential(
            key_hash=hash_api_key(api_key),
            project_id=project_id,
            user_id=request.user_id,
            name=request.name,
            expires_at=request.expires_at,
            created_at=now,
            updated_at=now,
        )
        await self.store.put(EntityType.API_KEY, credential.key, credential.to_record())
        self.logger.info("API key issued", project_id=project_id, api_key=mask_secret(api_key))
        return api_key, credential

    # Access grants

    async def put_access_grant(self, project_id: str, user_id: str, request: AccessGrantRequest) -> AccessGrant:
        project_id = await self._require_project(project_id)
        existing = await self.store.get(EntityType.ACCESS_GRANT, (user_id, project_id))
        now = self.clock()
        grant = AccessGrant(
            user_id=user_id,
            project_id=project_id,
            customer_id=request.customer_id,
            has_access=request.has_access,
            access_level=request.access_level,
            created_at=AccessGrant.from_record(existing).created_at if existing else now,
            updated_at=now,
        )
        await self.store.put(EntityType.ACCESS_GRANT, grant.key, grant.to_record())
        self.logger.info("Access grant saved", project_id=project_id, user_id=user_id,
                         has_access=grant.has_access)
        return grant

    async def get_access_grant(self, project_id: str, user_id: str) -> AccessGrant:
        record = await self.store.get(EntityType.ACCESS_GRANT, (user_id, self._normalize(project_id)))
        if record is None:
            raise NotFoundError("Access grant not found")
        return AccessGrant.from_record(record)

    async def delete_access_grant(self, project_id: str, user_id: str) -> None:
        grant = await self.get_access_grant(project_id, user_id)
        await self.store.delete(EntityType.ACCESS_GRANT, grant.key)
        self.logger.info("Access grant revoked", project_id=grant.project_id, user_id=user_id)

    # Outbound OAuth tokens

    async def put_oauth_token(self, project_id: str, user_id: str, request: OAuthTokenRequest) -> OAuthToken:
        project_id = await self._require_project(project_id)
        token = OAuthToken(
            user_id=user_id,
            project_id=project_id,
            access_token=request.access_token,
            refresh_token=request.refresh_token,
            provider=request.provider,
            expires_at=request.expires_at,
            updated_at=self.clock(),
        )
        await self.store.put(EntityType.OAUTH_TOKEN, token.key, token.to_record())
        self.logger.info("Outbound token stored", project_id=project_id, user_id=user_id,
                         provider=token.provider)
        return token

    async def delete_oauth_token(self, project_id: str, user_id: str) -> None:
        key = (user_id, self._normalize(project_id))
        if await self.store.get(EntityType.OAUTH_TOKEN, key) is None:
            raise NotFoundError("OAuth token not found")
        await self.store.delete(EntityType.OAUTH_TOKEN, key)
        self.logger.info("Outbound token removed", project_id=key[1], user_id=user_id)

    # Helpers

    def _normalize(self, project_id: str) -> str:
        normalized = normalize_project_id(project_id)
        if normalized is None:
            raise NotFoundError("Project not found")
        return normalized

    def _project_key(self, project_id: str, api_version: Optional[str]) -> Tuple[str, str]:
        return (self._normalize(project_id), api_version or self.default_api_version)

    async def _require_project(self, project_id: str) -> str:
        normalized = self._normalize(project_id)
        if not await self.store.query(EntityType.PROJECT, {"project_id": normalized}):
            raise NotFoundError("Project not found")
        return normalized
