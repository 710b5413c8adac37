"""
Credentials attached to the forwarded request for the target API.
"""

from typing import Dict, Optional

from shared.errors import StoreUnavailableError
from shared.logging import get_logger

from ..caching.read_through import ReadThroughResolver
from ..models import AuthType, EntityType, OAuthToken, Project
from .identity import AuthIdentity


class TargetCredentialResolver:
    """Computes outbound auth headers for a project and caller.

    An ``oauth`` target with no stored token for the caller (or an anonymous
    caller) gets no credential at all and the target decides.
    """

    def __init__(self, resolver: ReadThroughResolver):
        self.resolver = resolver
        self.logger = get_logger("edge.auth.outbound")

    async def resolve(self, project: Project, identity: AuthIdentity) -> Dict[str, str]:
        outbound = project.outbound_auth

        if outbound == AuthType.API_KEY:
            if not project.outbound_static_key:
                self.logger.warning("Outbound api_key configured without a key", project_id=project.project_id)
                return {}
            return {"X-API-Key": project.outbound_static_key}

        if outbound == AuthType.OAUTH:
            return await self._oauth(project, identity)

        return {}

    async def _oauth(self, project: Project, identity: AuthIdentity) -> Dict[str, str]:
        if identity.is_anonymous:
            self.logger.warning("Outbound oauth needs a user, forwarding without credential",
                                project_id=project.project_id)
            return {}

        try:
            token: Optional[OAuthToken] = await self.resolver.resolve_record(
                EntityType.OAUTH_TOKEN, (identity.user_id, project.project_id)
            )
        except StoreUnavailableError as e:
            self.logger.error("Outbound token lookup failed, forwarding without credential",
                              project_id=project.project_id, user_id=identity.user_id,
                              error=str(e.details))
            return {}

        if token is None or not token.access_token:
            self.logger.warning("No outbound token for user, forwarding without credential",
                                project_id=project.project_id, user_id=identity.user_id)
            return {}

        return {"Authorization": f"Bearer {token.access_token}"}
