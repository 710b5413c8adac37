"""
Inbound authentication for proxied requests.
"""

from datetime import datetime
from typing import Callable, Mapping, Optional

from shared.errors import AccessDeniedError, AuthenticationError
from shared.logging import get_logger, mask_secret
from shared.metrics import MetricsCollector

from ..caching.read_through import ReadThroughResolver
from ..keys import hash_api_key
from ..models import AccessGrant, ApiKeyCredential, AuthType, EntityType, Project, utc_now
from .identity import ANONYMOUS, AuthIdentity
from .oauth import TokenClaimsValidator


def bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    authorization = headers.get("authorization") or ""
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization[7:].strip() or None


class InboundAuthEvaluator:
    """Decides whether a request may reach the project's target.

    ``evaluate`` returns the caller identity or raises ``AuthenticationError``
    (401) / ``AccessDeniedError`` (403). Any other failure while looking up
    credentials is logged and reported as a generic 401.
    """

    def __init__(
        self,
        resolver: ReadThroughResolver,
        token_validator: TokenClaimsValidator,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.resolver = resolver
        self.token_validator = token_validator
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("edge.auth.inbound")

    async def evaluate(self, project: Project, headers: Mapping[str, str]) -> AuthIdentity:
        # Unknown auth types surface as InvalidConfigError, not as a 401
        auth_type = project.inbound_auth

        try:
            if auth_type == AuthType.NONE:
                identity = ANONYMOUS
            elif auth_type == AuthType.API_KEY:
                identity = await self._api_key(project, headers)
            else:
                identity = await self._oauth(project, headers)

        except (AuthenticationError, AccessDeniedError) as e:
            self._record(auth_type, "denied" if isinstance(e, AccessDeniedError) else "rejected")
            self.logger.info("Inbound auth refused", auth_type=auth_type.value,
                             project_id=project.project_id, reason=e.message,
                             details=e.details)
            raise

        except Exception as e:
            self._record(auth_type, "error")
            self.logger.error("Inbound auth lookup failed", auth_type=auth_type.value,
                              project_id=project.project_id, error=str(e))
            raise AuthenticationError() from e

        self._record(auth_type, "allowed")
        return identity

    async def _api_key(self, project: Project, headers: Mapping[str, str]) -> AuthIdentity:
        api_key = headers.get("x-api-key") or bearer_token(headers)
        if not api_key:
            raise AuthenticationError("API key required")

        key_hash = hash_api_key(api_key)
        credential: Optional[ApiKeyCredential] = await self.resolver.resolve_record(
            EntityType.API_KEY, (key_hash, project.project_id)
        )
        if credential is None or not credential.is_usable(self.clock()):
            raise AuthenticationError("Invalid API key", details={"key": mask_secret(api_key)})

        return AuthIdentity(auth_type=AuthType.API_KEY, user_id=credential.user_id)

    async def _oauth(self, project: Project, headers: Mapping[str, str]) -> AuthIdentity:
        token = bearer_token(headers)
        if not token:
            raise AuthenticationError("OAuth token required")

        claims = await self.token_validator.validate(token)
        user_id = claims["sub"]

        grant: Optional[AccessGrant] = await self.resolver.resolve_record(
            EntityType.ACCESS_GRANT, (user_id, project.project_id)
        )
        if grant is None or not grant.has_access:
            raise AccessDeniedError(details={"user_id": user_id})

        return AuthIdentity(auth_type=AuthType.OAUTH, user_id=user_id, access_level=grant.access_level)

    def _record(self, auth_type: AuthType, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("auth_decisions_total", auth_type=auth_type.value, outcome=outcome)
